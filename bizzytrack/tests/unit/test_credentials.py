from __future__ import annotations

import pytest

from bizzytrack.core.errors import SignatureVerificationError
from bizzytrack.services.api_keys import generate_credentials, hash_secret, ip_allowed, verify_secret
from bizzytrack.services.webhooks import (
    generate_webhook_secret,
    next_retry_delay,
    sign_payload,
    verify_signature,
)


def test_generated_credentials_have_prefix_and_store_only_a_digest() -> None:
    creds = generate_credentials()
    assert creds.key_id.startswith("bizzy_")
    assert len(creds.key_id) == len("bizzy_") + 32
    assert len(creds.secret) == 64
    assert creds.secret_hash == hash_secret(creds.secret)
    assert creds.secret not in creds.secret_hash


def test_generated_credentials_are_unique() -> None:
    assert generate_credentials().key_id != generate_credentials().key_id


def test_custom_prefix_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    from bizzytrack.core.config import get_settings

    monkeypatch.setenv("API_KEY_PREFIX", "test_")
    get_settings.cache_clear()
    assert generate_credentials().key_id.startswith("test_")


def test_verify_secret() -> None:
    creds = generate_credentials()
    assert verify_secret(creds.secret, creds.secret_hash)
    assert not verify_secret("wrong", creds.secret_hash)


@pytest.mark.parametrize(
    ("client_ip", "allowed", "expected"),
    [
        ("10.0.0.5", [], True),
        ("10.0.0.5", ["10.0.0.0/24"], True),
        ("10.0.1.5", ["10.0.0.0/24"], False),
        ("192.168.1.1", ["192.168.1.1"], True),
        (None, ["10.0.0.0/8"], False),
        ("not-an-ip", ["10.0.0.0/8"], False),
    ],
)
def test_ip_allowlist(client_ip, allowed, expected) -> None:
    assert ip_allowed(client_ip, allowed) is expected


def test_webhook_secret_prefix() -> None:
    secret = generate_webhook_secret()
    assert secret.startswith("whsec_")
    assert len(secret) == len("whsec_") + 48


def test_signature_round_trip_with_prefix() -> None:
    signature = sign_payload("whsec_abc", 1_700_000_000, '{"event":"job.created"}')
    verify_signature(
        "whsec_abc",
        timestamp=1_700_000_000,
        payload='{"event":"job.created"}',
        signature=f"sha256={signature}",
        now=1_700_000_010,
    )


def test_tampered_payload_is_rejected() -> None:
    signature = sign_payload("whsec_abc", 1_700_000_000, "original")
    with pytest.raises(SignatureVerificationError, match="mismatch"):
        verify_signature(
            "whsec_abc", timestamp=1_700_000_000, payload="changed", signature=signature, now=1_700_000_000
        )


def test_stale_timestamp_is_rejected() -> None:
    signature = sign_payload("whsec_abc", 1_700_000_000, "body")
    with pytest.raises(SignatureVerificationError, match="tolerance"):
        verify_signature(
            "whsec_abc",
            timestamp=1_700_000_000,
            payload="body",
            signature=signature,
            tolerance_s=300,
            now=1_700_000_301,
        )


def test_missing_signature_is_rejected() -> None:
    with pytest.raises(SignatureVerificationError):
        verify_signature("whsec_abc", timestamp=1, payload="body", signature=None, now=1)


def test_unsupported_algorithm_is_rejected() -> None:
    with pytest.raises(SignatureVerificationError):
        sign_payload("whsec_abc", 1, "body", algorithm="md5")


def test_retry_backoff_stops_at_max_attempts() -> None:
    config = {"max_attempts": 3, "backoff_multiplier": 2}
    assert next_retry_delay(config, 1) == 1.0
    assert next_retry_delay(config, 2) == 2.0
    assert next_retry_delay(config, 3) is None
