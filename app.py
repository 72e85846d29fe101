import io
import json
import logging

import click
from flask import Blueprint, Flask, current_app, request, send_file
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman

from armazenamento import NotFoundError, ReceiptPublisher
from comprovante import ReceiptRenderer
from config import Config
from log_utils import configure_logging, hmac_hash, mask_ip, sanitize_for_log, set_hash_salt
from orquestrador import BatchOrchestrator, Pacer
from pagamentos import BatchReport
from pagamentos_gateway import AuthError, get_gateway

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)  # Rate limiting
bp = Blueprint('pagamentos', __name__)


class PixServices:
    """Componentes montados uma vez por aplicação e compartilhados entre requisições.
    Sem gateway injetado, cada lote cria o seu (sessão e token próprios) e o fecha ao final."""

    def __init__(self, config, gateway=None, renderer=None, publisher=None, pacer=None):
        self.config = config
        self.gateway = gateway
        self.renderer = renderer or ReceiptRenderer(config)
        self.publisher = publisher or ReceiptPublisher.from_config(config)
        self.pacer = pacer or Pacer(config.payment_interval_seconds)

    def orchestrator(self, gateway, base_url=None) -> BatchOrchestrator:
        receipts = self.config.receipts_enabled
        return BatchOrchestrator(
            gateway=gateway,
            renderer=self.renderer if receipts else None,
            publisher=self.publisher if receipts else None,
            pacer=self.pacer,
            base_url=base_url,
        )

    def run_batch(self, items, base_url=None) -> BatchReport:
        if self.gateway is not None:
            return self.orchestrator(self.gateway, base_url).process_batch(items)
        # Gateway do lote: a sessão é fechada ao final, com ou sem erro
        with get_gateway(self.config) as gateway:
            return self.orchestrator(gateway, base_url).process_batch(items)


def _services() -> PixServices:
    return current_app.extensions['pix']


def _pagar_rate_limit():
    return _services().config.pagar_rate_limit


def _error(message, status_code, details='sem detalhes', status='error'):
    return {'status': status, 'message': message, 'details': details}, status_code


# ----------------------------------------------------------------------
# ROTAS
# ----------------------------------------------------------------------

@bp.route('/pagar', methods=['POST'])
@limiter.limit(_pagar_rate_limit)
def pagar():
    """
    Recebe {"pagamentos": [{valor, chave, tipoChave?, descricao?, dataPagamento?}, ...]}
    e devolve o relatório do lote. HTTP 200 mesmo com falhas parciais.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error('Corpo da requisição deve ser um JSON', 400)
    items = data.get('pagamentos')
    if not isinstance(items, list) or not items:
        return _error('Campo "pagamentos" deve ser uma lista não vazia', 400)

    client = mask_ip(request.remote_addr or '')
    logger.info(f"Lote recebido com {len(items)} item(ns). IP={client}")

    try:
        report = _services().run_batch(items, base_url=request.host_url)
    except AuthError as e:
        logger.error(f"Falha na autenticação com o banco: {sanitize_for_log(e.message)}")
        details = e.details if e.details is not None else 'sem detalhes'
        return _error(e.message, 500, details=details)
    except Exception as e:
        logger.critical(f"Falha inesperada ao processar lote. IP={client}. Erro: {sanitize_for_log(e)}")
        return _error('Erro interno ao processar o lote', 500)

    return report.to_dict(), 200


@bp.route('/health', methods=['GET'])
def health():
    services = _services()
    flags = services.config.health_flags()
    flags['comprovantesLocais'] = services.publisher.local_count()
    return {'status': 'ok', **flags}, 200


@bp.route('/comprovante/<receipt_id>', methods=['GET'])
def comprovante(receipt_id):
    try:
        document = _services().publisher.get(receipt_id)
    except NotFoundError:
        logger.info(f"Comprovante não encontrado. id_hash={hmac_hash(receipt_id)}")
        return _error('Comprovante não encontrado ou expirado', 404, status='not_found')

    download = request.args.get('download', 'false').lower() == 'true'
    return send_file(
        io.BytesIO(document.content),
        mimetype=document.content_type,
        as_attachment=download,
        download_name=document.filename,
    )


# ----------------------------------------------------------------------
# APLICAÇÃO
# ----------------------------------------------------------------------

def create_app(config=None, gateway=None, renderer=None, publisher=None, pacer=None, flask_config=None):
    config = config or Config.from_env()
    configure_logging(config.log_file, config.log_level)
    set_hash_salt(config.client_secret)

    app = Flask(__name__)
    app.json.sort_keys = False
    app.config['RATELIMIT_STORAGE_URI'] = 'memory://'
    if flask_config:
        app.config.update(flask_config)

    app.extensions['pix'] = PixServices(config, gateway=gateway, renderer=renderer,
                                        publisher=publisher, pacer=pacer)

    limiter.init_app(app)
    Talisman(app, content_security_policy={'default-src': "'self'"},
             force_https=config.force_https)

    app.register_blueprint(bp)
    _register_error_handlers(app)
    _register_commands(app)

    logger.info(f"Aplicação iniciada. gateway={config.gateway_provider} "
                f"storage={config.storage_provider or 'local'}")
    return app


def _register_error_handlers(app):
    @app.errorhandler(404)
    def handle_404(e):
        logger.info(f"404 Not Found: {request.path}")
        return _error('Rota não encontrada', 404, status='not_found')

    @app.errorhandler(405)
    def handle_405(e):
        return _error('Método não permitido', 405)

    @app.errorhandler(429)
    def handle_429(e):
        logger.warning(f"429 Rate limit: {request.path} by IP: {mask_ip(request.remote_addr or '')}")
        return _error('Muitas requisições. Tente novamente mais tarde.', 429)

    @app.errorhandler(500)
    def handle_500(e):
        # Log exception details with stack (server-side) but do not expose internals to client.
        logger.exception(f"Unhandled exception while handling request: {request.path}")
        return _error('Erro interno', 500)


def _register_commands(app):
    @app.cli.command("processar-lote")
    @click.argument("arquivo", type=click.File("r", encoding="utf-8"))
    def processar_lote(arquivo):
        """Processa um lote a partir de um arquivo JSON ({"pagamentos": [...]} ou lista)."""
        data = json.load(arquivo)
        items = data.get('pagamentos') if isinstance(data, dict) else data
        if not isinstance(items, list) or not items:
            raise click.ClickException('O arquivo deve conter uma lista de pagamentos não vazia.')

        services = app.extensions['pix']
        try:
            report = services.run_batch(items, base_url=services.config.public_base_url)
        except AuthError as e:
            raise click.ClickException(f"Falha na autenticação: {e.message}")
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))


if __name__ == '__main__':
    # Em produção, use gunicorn (wsgi:app); debug via FLASK_DEBUG
    settings = Config.from_env()
    create_app(settings).run(host='0.0.0.0', port=settings.port, debug=settings.debug)
