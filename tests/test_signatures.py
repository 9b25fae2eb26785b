"""Tests for webhook signature verification across providers."""

import binascii
import json

import pytest

from barter_pos.errors import UnsupportedProviderError
from barter_pos.integrations.adyen.adapter import signing_string
from barter_pos.integrations.registry import build_default_registry
from barter_pos.integrations.signatures import (
    SignatureVerifier,
    hmac_sha256_base64,
    hmac_sha256_hex,
    signatures_match,
)

ADYEN_HMAC_KEY = "44782DEF547AAA06C910C43932B1EB0C71FC68D9D0C057550C48EC2ACF6BA056"
BODY = b'{"id": "evt-1", "amount": 100}'


def adyen_notification(signature=None, in_additional_data=False):
    item = {
        "pspReference": "PSP123",
        "originalReference": "",
        "merchantAccountCode": "BarterMerchant",
        "merchantReference": "order-1",
        "amount": {"value": 2500, "currency": "USD"},
        "eventCode": "AUTHORISATION",
        "success": "true",
    }
    if signature and in_additional_data:
        item["additionalData"] = {"hmacSignature": signature}
    return {"live": "false", "notificationItems": [{"NotificationRequestItem": item}]}


def adyen_signature(item: dict, hex_key: str = ADYEN_HMAC_KEY) -> str:
    return hmac_sha256_base64(binascii.unhexlify(hex_key), signing_string(item).encode())


@pytest.fixture
def verifier(settings):
    return SignatureVerifier(build_default_registry(settings))


class TestSignatureHelpers:
    """Test the HMAC helpers."""

    def test_missing_signature_never_matches(self):
        assert signatures_match("abc", None) is False
        assert signatures_match("abc", "") is False

    def test_match_ignores_surrounding_whitespace(self):
        assert signatures_match("abc", " abc ") is True

    def test_hex_and_base64_differ(self):
        assert hmac_sha256_hex(b"k", b"m") != hmac_sha256_base64(b"k", b"m")


class TestProviderSignatures:
    """Test each provider's scheme."""

    def test_square_valid(self, verifier, settings):
        signature = hmac_sha256_base64(
            settings.square_webhook_signature_key.encode(), b"1700000000." + BODY
        )
        headers = {
            "x-square-hmacsha256-signature": signature,
            "x-square-hmacsha256-timestamp": "1700000000",
        }
        assert verifier.verify("square", BODY, headers) is True

    def test_square_wrong_timestamp(self, verifier, settings):
        signature = hmac_sha256_base64(
            settings.square_webhook_signature_key.encode(), b"1700000000." + BODY
        )
        headers = {
            "x-square-hmacsha256-signature": signature,
            "x-square-hmacsha256-timestamp": "1700000001",
        }
        assert verifier.verify("square", BODY, headers) is False

    def test_square_missing_timestamp(self, verifier, settings):
        signature = hmac_sha256_base64(settings.square_webhook_signature_key.encode(), BODY)
        assert verifier.verify("square", BODY, {"x-square-hmacsha256-signature": signature}) is False

    def test_shopify_valid(self, verifier, settings):
        signature = hmac_sha256_base64(settings.shopify_webhook_secret.encode(), BODY)
        assert verifier.verify("shopify", BODY, {"x-shopify-hmac-sha256": signature}) is True

    def test_shopify_tampered_body(self, verifier, settings):
        signature = hmac_sha256_base64(settings.shopify_webhook_secret.encode(), BODY)
        assert verifier.verify("shopify", BODY + b" ", {"x-shopify-hmac-sha256": signature}) is False

    def test_clover_token_equality(self, verifier, settings):
        token = settings.clover_webhook_verification_token
        assert verifier.verify("clover", BODY, {"x-clover-verification-token": token}) is True
        assert verifier.verify("clover", BODY, {"x-clover-verification-token": "other"}) is False

    def test_toast_hex(self, verifier, settings):
        signature = hmac_sha256_hex(settings.toast_webhook_secret.encode(), BODY)
        assert verifier.verify("toast", BODY, {"toast-signature": signature}) is True
        assert verifier.verify("toast", BODY, {"toast-signature": signature.upper()}) is True

    def test_toast_rejects_base64(self, verifier, settings):
        signature = hmac_sha256_base64(settings.toast_webhook_secret.encode(), BODY)
        assert verifier.verify("toast", BODY, {"toast-signature": signature}) is False

    def test_lightspeed_plain_hex(self, verifier, settings):
        signature = hmac_sha256_hex(settings.lightspeed_webhook_secret.encode(), BODY)
        assert verifier.verify("lightspeed", BODY, {"x-lightspeed-signature": signature}) is True

    def test_lightspeed_structured_header(self, verifier, settings):
        signature = hmac_sha256_hex(settings.lightspeed_webhook_secret.encode(), BODY)
        header = f"signature={signature},algorithm=HMAC-SHA256"
        assert verifier.verify("lightspeed", BODY, {"x-lightspeed-signature": header}) is True

    def test_lightspeed_unknown_algorithm(self, verifier, settings):
        signature = hmac_sha256_hex(settings.lightspeed_webhook_secret.encode(), BODY)
        header = f"signature={signature},algorithm=HMAC-SHA1"
        assert verifier.verify("lightspeed", BODY, {"x-lightspeed-signature": header}) is False

    def test_adyen_header_signature(self, verifier):
        payload = adyen_notification()
        item = payload["notificationItems"][0]["NotificationRequestItem"]
        body = json.dumps(payload).encode()
        assert verifier.verify("adyen", body, {"hmacsignature": adyen_signature(item)}) is True

    def test_adyen_additional_data_signature(self, verifier):
        unsigned = adyen_notification()
        item = unsigned["notificationItems"][0]["NotificationRequestItem"]
        payload = adyen_notification(adyen_signature(item), in_additional_data=True)
        assert verifier.verify("adyen", json.dumps(payload).encode(), {}) is True

    def test_adyen_amount_tampered(self, verifier):
        payload = adyen_notification()
        item = payload["notificationItems"][0]["NotificationRequestItem"]
        signature = adyen_signature(item)
        item["amount"]["value"] = 1
        body = json.dumps(payload).encode()
        assert verifier.verify("adyen", body, {"hmacsignature": signature}) is False

    def test_adyen_malformed_body(self, verifier):
        assert verifier.verify("adyen", b"not json", {"hmacsignature": "x"}) is False

    def test_missing_signature_header_fails(self, verifier):
        assert verifier.verify("shopify", BODY, {}) is False


class TestMissingSecretPolicy:
    """Test fail-closed verification and the sandbox override."""

    def test_fails_closed_without_secret(self, settings):
        settings.shopify_webhook_secret = ""
        settings.shopify_api_secret = ""
        verifier = SignatureVerifier(build_default_registry(settings))
        assert verifier.verify("shopify", BODY, {}) is False

    def test_override_accepts_unsigned(self, settings):
        settings.toast_webhook_secret = ""
        verifier = SignatureVerifier(build_default_registry(settings), allow_unsigned=True)
        assert verifier.verify("toast", BODY, {}) is True

    def test_override_does_not_skip_configured_secret(self, settings):
        verifier = SignatureVerifier(build_default_registry(settings), allow_unsigned=True)
        assert verifier.verify("toast", BODY, {"toast-signature": "bad"}) is False

    def test_shopify_falls_back_to_api_secret(self, settings):
        settings.shopify_webhook_secret = ""
        verifier = SignatureVerifier(build_default_registry(settings))
        signature = hmac_sha256_base64(settings.shopify_api_secret.encode(), BODY)
        assert verifier.verify("shopify", BODY, {"x-shopify-hmac-sha256": signature}) is True

    def test_unknown_provider(self, verifier):
        with pytest.raises(UnsupportedProviderError):
            verifier.verify("paypal", BODY, {})
