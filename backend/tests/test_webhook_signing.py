"""Tests for webhook HMAC signing and verification."""

import hashlib
import hmac

import pytest

from core.webhook_signing import (
    DELIVERY_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
    generate_webhook_secret,
    sign_webhook_payload,
    verify_webhook_signature,
)

NOW = 1_767_600_000
BODY = b'{"event_type": "invoice.created", "entity_id": "INV-77"}'


def _signed(body: bytes = BODY, secret: str = "whsec_unit", timestamp: int = NOW) -> dict:
    return sign_webhook_payload(body, secret, timestamp=timestamp)


@pytest.mark.unit
class TestComputeSignature:
    def test_hmac_over_timestamp_and_body(self):
        expected = hmac.new(b"whsec_unit", f"{NOW}.".encode() + BODY, hashlib.sha256).hexdigest()
        assert compute_signature(BODY, "whsec_unit", NOW) == expected

    def test_timestamp_is_part_of_the_signature(self):
        assert compute_signature(BODY, "whsec_unit", NOW) != compute_signature(BODY, "whsec_unit", NOW + 1)


@pytest.mark.unit
class TestSignWebhookPayload:
    """Outbound signing."""

    def test_headers(self):
        headers = sign_webhook_payload(BODY, "whsec_unit", timestamp=NOW, delivery_id="dlv-1")
        assert headers == {
            SIGNATURE_HEADER: f"sha256={compute_signature(BODY, 'whsec_unit', NOW)}",
            TIMESTAMP_HEADER: str(NOW),
            DELIVERY_HEADER: "dlv-1",
        }

    def test_delivery_id_generated(self):
        first = sign_webhook_payload(BODY, "whsec_unit")
        second = sign_webhook_payload(BODY, "whsec_unit")
        assert first[DELIVERY_HEADER] != second[DELIVERY_HEADER]


@pytest.mark.unit
class TestVerifyWebhookSignature:
    """Inbound verification against a fixed clock."""

    def test_valid(self):
        headers = _signed()
        assert verify_webhook_signature(
            BODY, "whsec_unit", headers[SIGNATURE_HEADER], headers[TIMESTAMP_HEADER], now=NOW,
        ) is True

    def test_wrong_secret(self):
        headers = _signed(secret="whsec_other")
        assert verify_webhook_signature(
            BODY, "whsec_unit", headers[SIGNATURE_HEADER], headers[TIMESTAMP_HEADER], now=NOW,
        ) is False

    def test_tampered_body(self):
        headers = _signed()
        assert verify_webhook_signature(
            BODY.replace(b"INV-77", b"INV-78"), "whsec_unit",
            headers[SIGNATURE_HEADER], headers[TIMESTAMP_HEADER], now=NOW,
        ) is False

    def test_replayed_timestamp_breaks_signature(self):
        headers = _signed()
        assert verify_webhook_signature(
            BODY, "whsec_unit", headers[SIGNATURE_HEADER], str(NOW + 10), now=NOW,
        ) is False

    @pytest.mark.parametrize("now, expected", [
        (NOW + 299, True),
        (NOW - 299, True),
        (NOW + 301, False),
        (NOW - 301, False),
    ])
    def test_tolerance_window(self, now, expected):
        headers = _signed()
        assert verify_webhook_signature(
            BODY, "whsec_unit", headers[SIGNATURE_HEADER], headers[TIMESTAMP_HEADER],
            tolerance=300, now=now,
        ) is expected

    @pytest.mark.parametrize("signature, timestamp", [
        (None, str(NOW)),
        ("", str(NOW)),
        ("sha256=", str(NOW)),
        ("md5=abc", str(NOW)),
        ("use-header", None),
        ("use-header", "not-a-number"),
    ])
    def test_missing_or_malformed_headers(self, signature, timestamp):
        if signature == "use-header":
            signature = _signed()[SIGNATURE_HEADER]
        assert verify_webhook_signature(BODY, "whsec_unit", signature, timestamp, now=NOW) is False


@pytest.mark.unit
class TestGenerateWebhookSecret:
    def test_prefix_and_length(self):
        secret = generate_webhook_secret()
        assert secret.startswith("whsec_")
        assert len(secret) > 40

    def test_secrets_sign_differently(self):
        first, second = generate_webhook_secret(), generate_webhook_secret()
        assert compute_signature(BODY, first, NOW) != compute_signature(BODY, second, NOW)
