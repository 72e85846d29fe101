import os
import sys
from datetime import datetime

import pytest

# Ensure project root is on sys.path for module resolution
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from app import create_app
from armazenamento import ReceiptPublisher
from comprovante import ReceiptRenderer
from config import Config
from orquestrador import Pacer
from pagamentos import PaymentError, TIMEZONE
from pagamentos_gateway import AccessToken, AuthError, BaseGateway


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=''):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    """Records calls and replays queued responses (or raises queued exceptions)."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.cert = None
        self.closed = False

    def _next(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def post(self, url, **kwargs):
        return self._next('POST', url, **kwargs)

    def put(self, url, **kwargs):
        return self._next('PUT', url, **kwargs)

    def close(self):
        self.closed = True


class StubGateway(BaseGateway):
    """Gateway em memória: recusa as chaves em `reject` e registra as chamadas."""

    def __init__(self, reject=(), auth_error=None, response=None):
        self.reject = set(reject)
        self.auth_error = auth_error
        self.response = response
        self.auth_calls = 0
        self.payments = []

    def authenticate(self):
        self.auth_calls += 1
        if self.auth_error is not None:
            raise self.auth_error
        return AccessToken(value='stub-token')

    def pay_pix(self, instruction, token, idempotency_key=None):
        self.payments.append((instruction, token, idempotency_key))
        if instruction.key in self.reject:
            raise PaymentError("Chave não encontrada", details={'title': 'Chave não encontrada'})
        if self.response is not None:
            return dict(self.response)
        return {
            'tipoRetorno': 'PROCESSADO',
            'codigoSolicitacao': f'sol-{len(self.payments)}',
            'endToEndId': f'E00416968202601011200abc{len(self.payments):08d}',
            'dataPagamento': instruction.effective_date().isoformat(),
        }


class FailingRenderer:
    def __init__(self, error):
        self.error = error
        self.calls = 0

    def render(self, instruction, provider_response):
        self.calls += 1
        raise self.error


FIXED_NOW = datetime(2026, 1, 15, 10, 30, 0, tzinfo=TIMEZONE)


@pytest.fixture
def config():
    return Config(
        client_id='client-id',
        client_secret='client-secret',
        conta_corrente='123456789',
        base_url='https://inter.test',
        cert_path='/nao/existe.crt',
        key_path='/nao/existe.key',
        payment_interval_ms=0,
        public_base_url='',
        receipt_cache_maxsize=8,
        receipt_cache_ttl=60,
        sender_name='Empresa Teste Ltda',
        sender_document='12.345.678/0001-90',
        log_file='',
    )


@pytest.fixture
def renderer(config):
    return ReceiptRenderer(config, clock=lambda: FIXED_NOW)


@pytest.fixture
def publisher(config):
    return ReceiptPublisher(config)


@pytest.fixture
def gateway():
    return StubGateway(reject={'bad-key'})


@pytest.fixture
def test_app(config, gateway, renderer, publisher):
    return create_app(
        config,
        gateway=gateway,
        renderer=renderer,
        publisher=publisher,
        pacer=Pacer(0),
        flask_config={'TESTING': True, 'RATELIMIT_ENABLED': False},
    )


@pytest.fixture
def client(test_app):
    return test_app.test_client()


@pytest.fixture
def auth_error():
    return AuthError("Falha na autenticação (HTTP 401)", details={'error': 'invalid_client'})
