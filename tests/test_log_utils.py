import pytest

from log_utils import hmac_hash, mask_ip, mask_pix_key, sanitize_for_log, set_hash_salt


@pytest.mark.parametrize('ip,expected', [
    ('192.0.2.15', '192.0.2.xxx'),
    ('2001:db8::1', '2001:db8::xxxx'),
    ('', ''),
    ('localhost', 'localhost'),
])
def test_mask_ip(ip, expected):
    assert mask_ip(ip) == expected


def test_mask_pix_key():
    assert mask_pix_key('fulano@banco.com') == 'f***@banco.com'
    assert mask_pix_key('12345678901') == '12*******01'
    assert mask_pix_key('abc') == '***'


def test_sanitize_masks_keys_and_flattens_lines():
    text = sanitize_for_log('Chave 12345678901 não encontrada\nlinha forjada', keys=('12345678901',))
    assert '12345678901' not in text
    assert '12*******01' in text
    assert '\n' not in text


def test_sanitize_truncates():
    assert sanitize_for_log('x' * 200, maxlen=10) == 'x' * 10 + '...'


def test_hmac_hash_depends_on_salt():
    set_hash_salt('salt-a')
    first = hmac_hash('abc')
    set_hash_salt('salt-b')
    assert hmac_hash('abc') != first
    assert len(hmac_hash('abc')) == 10
