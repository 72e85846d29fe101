"""
Orquestração de um lote de pagamentos Pix.

Autentica uma vez por lote e processa os itens em sequência:
pagamento -> comprovante (PDF) -> publicação. Falha de um item nunca afeta
os outros; só a falha de autenticação aborta o lote inteiro.
"""
import logging
import time

from armazenamento import PublishError
from comprovante import RenderError
from log_utils import mask_pix_key, sanitize_for_log
from pagamentos import (
    BatchReport,
    InstructionError,
    PaymentError,
    PaymentFailed,
    PaymentInstruction,
    PaymentSucceeded,
)
from pagamentos_gateway import new_idempotency_key

logger = logging.getLogger(__name__)


class Pacer:
    """Pausa fixa entre pagamentos consecutivos do mesmo lote.

    A API do banco trata chamadas em rajada como suspeitas; a pausa só é
    aplicada entre itens, nunca antes do primeiro.
    """

    def __init__(self, interval_seconds=0.5, sleep=time.sleep):
        self.interval_seconds = max(float(interval_seconds), 0.0)
        self.sleep = sleep

    def wait(self):
        if self.interval_seconds > 0:
            self.sleep(self.interval_seconds)


class BatchOrchestrator:
    def __init__(self, gateway, renderer=None, publisher=None, pacer=None, base_url=None):
        self.gateway = gateway
        self.renderer = renderer
        self.publisher = publisher
        self.pacer = pacer or Pacer(0)
        self.base_url = base_url

    def process_batch(self, items) -> BatchReport:
        # AuthError propaga: sem token nenhum item é tentado
        token = self.gateway.authenticate()
        logger.info(f"Lote iniciado com {len(items)} pagamento(s)")

        outcomes = []
        for index, item in enumerate(items):
            if index > 0:
                self.pacer.wait()
            outcomes.append(self._process_item(index, item, token))

        report = BatchReport(outcomes)
        logger.info(f"Lote concluído. total={report.total} sucessos={report.succeeded} erros={report.failed}")
        return report

    def _process_item(self, index, item, token):
        raw_key = item.key if isinstance(item, PaymentInstruction) else (
            item.get('chave') if isinstance(item, dict) else None)
        try:
            instruction = item if isinstance(item, PaymentInstruction) else PaymentInstruction.from_dict(item)
        except InstructionError as e:
            logger.warning(f"Item {index} inválido: {sanitize_for_log(e.reason)}")
            return PaymentFailed(key=raw_key, reason=e.reason, details=e.details)
        except Exception as e:
            logger.exception(f"Erro inesperado ao ler o item {index}")
            return PaymentFailed(key=raw_key, reason=f"Item de pagamento inválido: {e}")

        idempotency_key = new_idempotency_key()
        try:
            response = self.gateway.pay_pix(instruction, token, idempotency_key=idempotency_key)
        except PaymentError as e:
            logger.warning(f"Pagamento {index} recusado. chave={mask_pix_key(instruction.key)} "
                           f"motivo={sanitize_for_log(e.reason, keys=(instruction.key,))}")
            return PaymentFailed(key=instruction.key, reason=e.reason, details=e.details)
        except Exception as e:
            logger.exception(f"Erro inesperado no pagamento {index}. chave={mask_pix_key(instruction.key)}")
            return PaymentFailed(key=instruction.key, reason=f"Erro inesperado: {e}")

        logger.info(f"Pagamento {index} realizado. chave={mask_pix_key(instruction.key)} "
                    f"valor={instruction.amount_str} idempotencia={idempotency_key}")
        receipt = self._publish_receipt(index, instruction, response)
        return PaymentSucceeded(instruction=instruction, provider_response=response,
                                idempotency_key=idempotency_key, receipt=receipt)

    def _publish_receipt(self, index, instruction, response):
        """Gera e publica o comprovante. Qualquer falha deixa o comprovante vazio,
        o pagamento continua registrado como sucesso."""
        if self.renderer is None or self.publisher is None:
            return None
        try:
            document = self.renderer.render(instruction, response)
            return self.publisher.publish(document, base_url=self.base_url)
        except (RenderError, PublishError) as e:
            logger.warning(f"Comprovante do pagamento {index} não gerado: {sanitize_for_log(e)}")
        except Exception:
            logger.exception(f"Erro inesperado ao gerar comprovante do pagamento {index}")
        return None
