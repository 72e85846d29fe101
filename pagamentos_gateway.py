"""
Gateway adapter for Pix payments.
Talks to the Banco Inter banking API (OAuth2 client credentials over mutual TLS)
and ships a sandbox implementation for development and tests.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional
import logging
import uuid
import requests

from config import Config
from log_utils import mask_pix_key
from pagamentos import PaymentError, PaymentInstruction, TIMEZONE

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v2/token"
PIX_PAYMENT_PATH = "/banking/v2/pix"


class AuthError(Exception):
    """Token exchange failed. Aborts the whole batch; never retried."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


@dataclass(frozen=True)
class AccessToken:
    value: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    scope: str = ""
    obtained_at: datetime = field(default_factory=lambda: datetime.now(TIMEZONE))

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(seconds=self.expires_in)

    @property
    def authorization(self) -> str:
        return f"Bearer {self.value}"


def new_idempotency_key() -> str:
    # Um identificador novo por chamada: repetir a chamada não é deduplicado pelo banco
    return str(uuid.uuid4())


def _response_details(resp):
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


class BaseGateway:
    def authenticate(self) -> AccessToken:
        raise NotImplementedError()

    def pay_pix(self, instruction: PaymentInstruction, token: AccessToken,
                idempotency_key: Optional[str] = None) -> Dict:
        raise NotImplementedError()

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def build_payload(self, instruction: PaymentInstruction) -> Dict:
        return {
            "valor": instruction.amount_str,
            "dataPagamento": instruction.effective_date().isoformat(),
            "descricao": instruction.description,
            "destinatario": {
                "tipo": "CHAVE",
                "chave": instruction.normalized_key,
            },
        }


class InterGateway(BaseGateway):
    """Banco Inter adapter. Every call goes through one requests session that
    presents the client certificate and key configured for the account."""

    def __init__(self, config: Config, session=None):
        self.config = config
        self.session = session or self._build_session(config)

    @staticmethod
    def _build_session(config):
        session = requests.Session()
        session.cert = (config.cert_path, config.key_path)
        return session

    def close(self):
        # Libera o pool de conexões mTLS da sessão
        self.session.close()

    def authenticate(self) -> AccessToken:
        if not self.config.client_id or not self.config.client_secret:
            raise AuthError("CLIENT_ID e CLIENT_SECRET não configurados")

        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": self.config.scope,
        }
        try:
            resp = self.session.post(
                f"{self.config.base_url}{TOKEN_PATH}",
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.config.http_timeout,
            )
        except (requests.RequestException, OSError) as e:
            # OSError: certificado ou chave do cliente ausente no disco
            raise AuthError(f"Falha de conexão ao obter token: {e}")

        if not resp.ok:
            raise AuthError(
                f"Falha na autenticação (HTTP {resp.status_code})",
                details=_response_details(resp),
            )
        try:
            body = resp.json()
        except ValueError:
            raise AuthError("Resposta de token não é JSON", details=resp.text or None)

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise AuthError("Resposta de token sem access_token", details=body)

        logger.info(f"Token obtido. scope={body.get('scope', self.config.scope)}")
        return AccessToken(
            value=access_token,
            token_type=body.get("token_type", "Bearer"),
            expires_in=int(body.get("expires_in") or 3600),
            scope=body.get("scope", self.config.scope),
        )

    def pay_pix(self, instruction: PaymentInstruction, token: AccessToken,
                idempotency_key: Optional[str] = None) -> Dict:
        idempotency_key = idempotency_key or new_idempotency_key()
        headers = {
            "Authorization": token.authorization,
            "Content-Type": "application/json",
            "x-conta-corrente": self.config.conta_corrente,
            "x-id-idempotente": idempotency_key,
        }
        try:
            resp = self.session.post(
                f"{self.config.base_url}{PIX_PAYMENT_PATH}",
                json=self.build_payload(instruction),
                headers=headers,
                timeout=self.config.http_timeout,
            )
        except (requests.RequestException, OSError) as e:
            raise PaymentError(f"Falha de conexão com a API de pagamentos: {e}")

        if not resp.ok:
            details = _response_details(resp)
            reason = f"Pagamento recusado (HTTP {resp.status_code})"
            if isinstance(details, dict) and details.get("title"):
                reason = f"{reason}: {details['title']}"
            raise PaymentError(reason, details=details)

        try:
            return resp.json()
        except ValueError:
            raise PaymentError("Resposta de pagamento não é JSON", details=resp.text or None)


class SandboxGateway(BaseGateway):
    """Simulates the bank for development and tests. Keys containing
    "invalida" are rejected the way the real API rejects unknown keys."""

    def authenticate(self) -> AccessToken:
        return AccessToken(value="sandbox-token", scope="pagamento-pix.write")

    def pay_pix(self, instruction: PaymentInstruction, token: AccessToken,
                idempotency_key: Optional[str] = None) -> Dict:
        if "invalida" in instruction.key.lower():
            raise PaymentError("Chave Pix não encontrada (sandbox).",
                               details={"title": "Chave não encontrada"})

        payload = self.build_payload(instruction)
        now = datetime.now(TIMEZONE)
        logger.info(f"Pagamento sandbox para chave {mask_pix_key(instruction.key)} valor {payload['valor']}")
        return {
            "tipoRetorno": "PROCESSADO",
            "codigoSolicitacao": str(uuid.uuid4()),
            "endToEndId": f"E00416968{now.strftime('%Y%m%d%H%M')}{uuid.uuid4().hex[:11]}",
            "dataPagamento": payload["dataPagamento"],
            "dataOperacao": now.date().isoformat(),
        }


# Simple factory to select gateway by config (GATEWAY_PROVIDER)
def get_gateway(config: Config, session=None) -> BaseGateway:
    provider = (config.gateway_provider or 'inter').lower()
    if provider == 'sandbox':
        return SandboxGateway()
    if provider != 'inter':
        logger.warning(f"GATEWAY_PROVIDER desconhecido: {provider}. Usando Banco Inter.")
    return InterGateway(config, session=session)
