"""
Configuração do serviço de pagamentos Pix.

Todos os valores vêm de variáveis de ambiente (ou de um arquivo .env carregado
com python-dotenv). O objeto Config é montado uma única vez na inicialização e
repassado explicitamente para o gateway, o renderizador, o publicador e o
orquestrador.
"""
import os
import logging
from dataclasses import dataclass
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://cdpj.partners.bancointer.com.br"


def _env_bool(name, default):
    return os.getenv(name, 'true' if default else 'false').strip().lower() == 'true'


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Valor inválido para {name}: {raw!r}. Usando padrão {default}.")
        return default


def _env_float(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Valor inválido para {name}: {raw!r}. Usando padrão {default}.")
        return default


@dataclass(frozen=True)
class Config:
    # Credenciais da API do Banco Inter
    client_id: str = ""
    client_secret: str = ""
    conta_corrente: str = ""
    scope: str = "pagamento-pix.write"
    base_url: str = DEFAULT_BASE_URL
    cert_path: str = "./Inter API_Certificado.crt"
    key_path: str = "./Inter API_Chave.key"
    gateway_provider: str = "inter"
    http_timeout: float = 30.0

    # Espaçamento entre pagamentos do mesmo lote
    payment_interval_ms: int = 500

    # Armazenamento de comprovantes
    storage_provider: str = ""
    github_token: str = ""
    github_repo: str = ""
    github_branch: str = "main"
    github_path_prefix: str = "comprovantes"
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "comprovantes"
    public_base_url: str = ""
    receipt_cache_maxsize: int = 256
    receipt_cache_ttl: int = 3600

    # Dados fixos do pagador impressos no comprovante
    receipts_enabled: bool = True
    sender_name: str = ""
    sender_document: str = ""
    sender_institution: str = "Banco Inter S.A."
    sender_agency: str = "0001"

    # HTTP / operação
    pagar_rate_limit: str = "10 per minute"
    force_https: bool = False
    log_file: str = "pagamentos.log"
    log_level: str = "INFO"
    port: int = 3000
    debug: bool = False

    @classmethod
    def from_env(cls, dotenv=True):
        """Lê a configuração do ambiente. Não falha por credenciais ausentes:
        o /health informa o que está faltando e a autenticação falha no lote."""
        if dotenv:
            load_dotenv()
        return cls(
            client_id=os.getenv("CLIENT_ID", ""),
            client_secret=os.getenv("CLIENT_SECRET", ""),
            conta_corrente=os.getenv("INTER_CONTA_CORRENTE", ""),
            scope=os.getenv("INTER_SCOPE", "pagamento-pix.write"),
            base_url=os.getenv("INTER_BASE_URL", DEFAULT_BASE_URL).rstrip('/'),
            cert_path=os.getenv("INTER_CERT_PATH", "./Inter API_Certificado.crt"),
            key_path=os.getenv("INTER_KEY_PATH", "./Inter API_Chave.key"),
            gateway_provider=os.getenv("GATEWAY_PROVIDER", "inter").lower(),
            http_timeout=_env_float("HTTP_TIMEOUT", 30.0),
            payment_interval_ms=_env_int("PAYMENT_INTERVAL_MS", 500),
            storage_provider=os.getenv("STORAGE_PROVIDER", "").lower(),
            github_token=os.getenv("GITHUB_TOKEN", ""),
            github_repo=os.getenv("GITHUB_REPO", ""),
            github_branch=os.getenv("GITHUB_BRANCH", "main"),
            github_path_prefix=os.getenv("GITHUB_PATH_PREFIX", "comprovantes").strip('/'),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME", ""),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY", ""),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET", ""),
            cloudinary_folder=os.getenv("CLOUDINARY_FOLDER", "comprovantes").strip('/'),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "").rstrip('/'),
            receipt_cache_maxsize=_env_int("RECEIPT_CACHE_MAXSIZE", 256),
            receipt_cache_ttl=_env_int("RECEIPT_CACHE_TTL", 3600),
            receipts_enabled=_env_bool("COMPROVANTE_ENABLED", True),
            sender_name=os.getenv("COMPROVANTE_PAGADOR_NOME", ""),
            sender_document=os.getenv("COMPROVANTE_PAGADOR_DOCUMENTO", ""),
            sender_institution=os.getenv("COMPROVANTE_INSTITUICAO", "Banco Inter S.A."),
            sender_agency=os.getenv("COMPROVANTE_AGENCIA", "0001"),
            pagar_rate_limit=os.getenv("PAGAR_RATE_LIMIT", "10 per minute"),
            force_https=_env_bool("FORCE_HTTPS", False),
            log_file=os.getenv("LOG_FILE", "pagamentos.log"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=_env_int("PORT", 3000),
            debug=_env_bool("FLASK_DEBUG", False),
        )

    @property
    def payment_interval_seconds(self) -> float:
        return max(self.payment_interval_ms, 0) / 1000.0

    def health_flags(self) -> dict:
        """Indica quais configurações estão presentes, sem expor valores."""
        return {
            'clientId': bool(self.client_id),
            'clientSecret': bool(self.client_secret),
            'contaCorrente': bool(self.conta_corrente),
            'certificado': os.path.isfile(self.cert_path),
            'chavePrivada': os.path.isfile(self.key_path),
            'gateway': self.gateway_provider,
            'storage': self.storage_provider or False,
        }
