# pagamentos.py
"""
Modelo de dados dos lotes de pagamento Pix.

Contém a instrução de pagamento (uma por item do lote), a classificação do
tipo de chave Pix, a normalização de valores e o relatório agregado do lote.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

TIMEZONE = ZoneInfo("America/Sao_Paulo")
DEFAULT_DESCRIPTION = "Pagamento Pix via API"
CENTAVOS = Decimal("0.01")

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_UUID_RE = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
_PHONE_RE = re.compile(r'^\+?(?:55)?[0-9]{10,11}$')


class PaymentError(Exception):
    """Falha de um item do lote. Registrada no relatório; não aborta o lote."""

    def __init__(self, reason, details=None):
        super().__init__(reason)
        self.reason = reason
        self.details = details


class InstructionError(PaymentError):
    """Item do lote com dados inválidos (valor, chave, data ou tipo de chave)."""


class KeyType(Enum):
    CPF = "CPF"
    CNPJ = "CNPJ"
    EMAIL = "EMAIL"
    TELEFONE = "TELEFONE"
    CHAVE_ALEATORIA = "CHAVE_ALEATORIA"

    @property
    def label(self) -> str:
        return _KEY_LABELS[self]

    @classmethod
    def parse(cls, value) -> "KeyType":
        if isinstance(value, KeyType):
            return value
        name = str(value).strip().upper().replace('-', '_').replace(' ', '_')
        name = _KEY_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise InstructionError(f"Tipo de chave Pix inválido: {value}")


_KEY_LABELS = {
    KeyType.CPF: "CPF",
    KeyType.CNPJ: "CNPJ",
    KeyType.EMAIL: "E-mail",
    KeyType.TELEFONE: "Telefone",
    KeyType.CHAVE_ALEATORIA: "Chave aleatória",
}

_KEY_ALIASES = {
    "PHONE": "TELEFONE",
    "CELULAR": "TELEFONE",
    "E_MAIL": "EMAIL",
    "EVP": "CHAVE_ALEATORIA",
    "ALEATORIA": "CHAVE_ALEATORIA",
    "RANDOM": "CHAVE_ALEATORIA",
}


def today() -> date:
    return datetime.now(TIMEZONE).date()


def _only_digits(value: str) -> str:
    return re.sub(r'[^0-9]', '', value)


def infer_key_type(key: str) -> KeyType:
    """
    Classifica a chave Pix pelo formato.
    A ordem importa: 11 dígitos é sempre CPF, mesmo que pudesse ser um celular
    sem DDI. Quando nada casa, assume CPF.
    """
    s = str(key).strip()
    if _EMAIL_RE.match(s):
        return KeyType.EMAIL
    if _UUID_RE.match(s):
        return KeyType.CHAVE_ALEATORIA

    document = re.sub(r'[.\-/\s]', '', s)
    if re.fullmatch(r'[0-9]{11}', document):
        return KeyType.CPF
    if re.fullmatch(r'[0-9]{14}', document):
        return KeyType.CNPJ

    if _PHONE_RE.match(re.sub(r'[\s()\-]', '', s)):
        return KeyType.TELEFONE

    return KeyType.CPF


def normalize_key(key: str, key_type: KeyType) -> str:
    """Formata a chave do jeito que a API espera para cada tipo."""
    s = str(key).strip()
    if key_type in (KeyType.CPF, KeyType.CNPJ):
        digits = _only_digits(s)
        return digits or s
    if key_type == KeyType.TELEFONE:
        digits = _only_digits(s)
        if s.startswith('+'):
            return f"+{digits}"
        if digits.startswith('55') and len(digits) in (12, 13):
            return f"+{digits}"
        return f"+55{digits}"
    return s.lower()


def parse_amount(value) -> Decimal:
    """Converte o valor recebido (número ou texto, aceita vírgula) em Decimal com 2 casas."""
    if value is None or isinstance(value, bool):
        raise InstructionError("Valor do pagamento não informado")
    if isinstance(value, str):
        cleaned = value.strip()
        if ',' in cleaned:
            # "1.234,56" -> "1234.56"
            cleaned = cleaned.replace('.', '').replace(',', '.')
    else:
        cleaned = str(value)
    try:
        amount = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        raise InstructionError(f"Valor do pagamento inválido: {value}")
    if not amount.is_finite() or amount <= 0:
        raise InstructionError(f"Valor do pagamento deve ser positivo: {value}")
    try:
        quantized = amount.quantize(CENTAVOS)
    except (InvalidOperation, ValueError):
        # "1e30": mais dígitos do que a precisão do contexto decimal comporta
        raise InstructionError(f"Valor do pagamento fora do limite: {value}")
    if amount != quantized:
        raise InstructionError(f"Valor do pagamento com mais de 2 casas decimais: {value}")
    return quantized


def parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        if '/' in text:
            # dd/MM/yyyy
            d, m, y = text.split('/')
            return date(int(y), int(m), int(d))
        return date.fromisoformat(text)
    except (ValueError, OverflowError):
        raise InstructionError(f"Data de pagamento inválida: {value}")


@dataclass(frozen=True)
class PaymentInstruction:
    amount: Decimal
    key: str
    key_type: Optional[KeyType] = None
    description: str = DEFAULT_DESCRIPTION
    payment_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data) -> "PaymentInstruction":
        """Monta a instrução a partir de um item do JSON de entrada.

        Campos: valor, chave, tipoChave (opcional), descricao (opcional),
        dataPagamento (opcional, yyyy-mm-dd ou dd/mm/yyyy).
        """
        if not isinstance(data, dict):
            raise InstructionError("Item de pagamento deve ser um objeto JSON")
        key = data.get('chave')
        if key is None or str(key).strip() == "":
            raise InstructionError("Chave Pix não informada")
        key_type = data.get('tipoChave')
        return cls(
            amount=parse_amount(data.get('valor')),
            key=str(key).strip(),
            key_type=KeyType.parse(key_type) if key_type else None,
            description=(data.get('descricao') or DEFAULT_DESCRIPTION),
            payment_date=parse_date(data.get('dataPagamento')),
        )

    @property
    def resolved_key_type(self) -> KeyType:
        return self.key_type or infer_key_type(self.key)

    @property
    def normalized_key(self) -> str:
        return normalize_key(self.key, self.resolved_key_type)

    @property
    def amount_str(self) -> str:
        return format(self.amount.quantize(CENTAVOS), 'f')

    def effective_date(self) -> date:
        return self.payment_date or today()


@dataclass(frozen=True)
class PaymentSucceeded:
    instruction: PaymentInstruction
    provider_response: Any
    idempotency_key: str
    receipt: Optional[Any] = None

    status = "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chave': self.instruction.key,
            'status': self.status,
            'idempotencia': self.idempotency_key,
            'response': self.provider_response,
            'comprovante': self.receipt.to_dict() if self.receipt is not None else None,
        }


@dataclass(frozen=True)
class PaymentFailed:
    key: Optional[str]
    reason: str
    details: Any = None

    status = "erro"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chave': self.key,
            'status': self.status,
            'motivo': self.reason,
            'detalhes': self.details,
        }


PaymentOutcome = Union[PaymentSucceeded, PaymentFailed]


@dataclass(frozen=True)
class BatchReport:
    outcomes: List[PaymentOutcome]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, PaymentSucceeded))

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, PaymentFailed))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'success',
            'total': self.total,
            'sucessos': self.succeeded,
            'erros': self.failed,
            'results': [o.to_dict() for o in self.outcomes],
        }
