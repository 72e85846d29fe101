import hmac
import hashlib
import logging

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

_HASH_SALT = 'pix-dev-salt'


def configure_logging(log_file='pagamentos.log', level='INFO'):
    """Configura o logger raiz para arquivo e console (auditoria dos lotes)."""
    handlers = [logging.StreamHandler()]  # Mostra logs no console (terminal)
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))  # Grava logs em arquivo para auditoria
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def set_hash_salt(salt):
    # O segredo do cliente serve de salt para os hashes; nunca é logado
    global _HASH_SALT
    if salt:
        _HASH_SALT = salt


# Ofuscação de dados sensíveis nos logs (IP do cliente, chaves Pix, ids de comprovante)
def hmac_hash(value, length: int = 10) -> str:
    """Identificador estável e não reversível para correlacionar linhas de log."""
    digest = hmac.new(_HASH_SALT.encode('utf-8'), str(value).encode('utf-8'), hashlib.sha256)
    return digest.hexdigest()[:length]


def mask_ip(ip: str) -> str:
    """Oculta o último grupo do IP: 192.0.2.xxx ou 2001:db8::xxxx."""
    if not ip:
        return ''
    if ip.count('.') == 3:
        return ip.rpartition('.')[0] + '.xxx'
    if ':' in ip:
        return ip.rpartition(':')[0] + ':xxxx'
    return ip


def mask_pix_key(key) -> str:
    """Mascara uma chave Pix para log: mantém só o início e o fim."""
    if not key:
        return ''
    s = str(key)
    if '@' in s:
        user, _, domain = s.partition('@')
        return f"{user[:1]}***@{domain}"
    if len(s) <= 4:
        return '*' * len(s)
    return f"{s[:2]}{'*' * (len(s) - 4)}{s[-2:]}"


def sanitize_for_log(value, maxlen: int = 120, keys=()) -> str:
    """Texto em uma linha só, truncado, com as chaves Pix de `keys` mascaradas
    (mensagens do banco costumam repetir a chave recebida)."""
    s = str(value)
    for key in keys:
        if key:
            s = s.replace(str(key), mask_pix_key(key))
    s = ' '.join(s.splitlines()).replace('\t', ' ')
    return s if len(s) <= maxlen else s[:maxlen] + '...'
