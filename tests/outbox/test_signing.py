from __future__ import annotations

import hashlib
import hmac

from payflow.messaging.outbox.signing import sign_payload, verify_signature


def test_signature_is_hex_hmac_sha256_of_body() -> None:
    body = b'{"event_id":"e1"}'
    expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()

    assert sign_payload("secret", body) == f"sha256={expected}"


def test_verify_accepts_only_matching_secret_and_body() -> None:
    body = b'{"event_id":"e1"}'
    header = sign_payload("secret", body)

    assert verify_signature("secret", body, header)
    assert not verify_signature("other", body, header)
    assert not verify_signature("secret", body + b" ", header)


def test_verify_rejects_malformed_headers() -> None:
    body = b"{}"
    digest = sign_payload("secret", body).split("=", 1)[1]

    assert not verify_signature("secret", body, None)
    assert not verify_signature("secret", body, "")
    assert not verify_signature("secret", body, digest)
    assert not verify_signature("secret", body, f"md5={digest}")
    assert not verify_signature("", body, sign_payload("", body))
