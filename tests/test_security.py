from datetime import datetime, timedelta, timezone

import pytest

from hr_integrations.core.errors import ConfigurationError
from hr_integrations.core.security import (
    TokenCipher,
    code_challenge_s256,
    compute_expiry,
    generate_code_verifier,
    generate_pkce,
    is_expired,
)

UNRESERVED = set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~")


def test_code_challenge_matches_rfc7636_example():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert code_challenge_s256(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_generated_verifier_uses_unreserved_alphabet():
    verifier = generate_code_verifier()
    assert len(verifier) == 128
    assert set(verifier) <= UNRESERVED
    assert generate_code_verifier() != verifier


@pytest.mark.parametrize("length", [42, 129])
def test_verifier_length_out_of_range(length):
    with pytest.raises(ValueError):
        generate_code_verifier(length)


def test_generate_pkce_pairs_verifier_and_challenge():
    bundle = generate_pkce()
    assert bundle.method == "S256"
    assert bundle.challenge == code_challenge_s256(bundle.verifier)
    assert "=" not in bundle.challenge


def test_cipher_encrypts_and_rejects_foreign_tokens(cipher):
    token = cipher.encrypt("xoxb-secret")
    assert "xoxb-secret" not in token
    assert cipher.decrypt(token) == "xoxb-secret"
    assert TokenCipher("another-key").decrypt(token) is None
    assert cipher.decrypt("garbage") is None
    assert cipher.decrypt(None) is None


def test_cipher_json_only_accepts_objects(cipher):
    blob = cipher.encrypt_json({"providerId": "slack", "timestamp": 1.5})
    assert cipher.decrypt_json(blob) == {"providerId": "slack", "timestamp": 1.5}
    assert cipher.decrypt_json(cipher.encrypt("[1, 2]")) is None
    assert cipher.decrypt_json(cipher.encrypt("not json")) is None


def test_cipher_requires_a_key():
    with pytest.raises(ConfigurationError):
        TokenCipher("")


def test_expiry_helpers():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    expires_at = compute_expiry(3600, now=now)
    assert expires_at == now + timedelta(hours=1)
    assert not is_expired(expires_at, now=now)
    assert is_expired(expires_at, margin_seconds=3601, now=now)
    assert is_expired(None)
    assert is_expired(datetime(2024, 4, 30), now=now)
