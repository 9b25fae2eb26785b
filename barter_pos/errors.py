"""
Error taxonomy for webhook ingestion, settlement and provider calls.
Each error carries a stable code that routers surface to callers.
"""

from typing import Any

from fastapi import HTTPException


class SettlementError(Exception):
    """Base class for all settlement engine errors."""

    code = "settlement_error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class SignatureInvalidError(SettlementError):
    """Webhook signature did not match the provider secret."""

    code = "signature_invalid"

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class UnsupportedProviderError(SettlementError):
    """No adapter is registered for the requested provider (or operation)."""

    code = "unsupported_provider"

    def __init__(self, provider: str, message: str | None = None):
        self.provider = provider
        super().__init__(message or f"Unsupported provider: {provider}")


class IntegrationNotFoundError(SettlementError):
    """No active integration owns the merchant key or id."""

    code = "integration_not_found"
    status_code = 404

    def __init__(self, message: str = "Integration not found"):
        super().__init__(message)


class TransactionNotFoundError(SettlementError):
    """Local transaction does not exist or belongs to another merchant."""

    code = "transaction_not_found"
    status_code = 404

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__("Transaction not found")


class IntegrationInactiveError(SettlementError):
    """Integration exists but has been disconnected or deactivated."""

    code = "integration_inactive"
    status_code = 409

    def __init__(self, integration_id: str):
        self.integration_id = integration_id
        super().__init__("POS integration is not active")


class ProviderAPIError(SettlementError):
    """Raised when a POS provider API returns an error or cannot be reached."""

    code = "provider_api_error"
    status_code = 502

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str,
        body: str | None = None,
        retryable: bool = False,
    ):
        self.provider = provider
        self.provider_status = status_code
        self.body = body
        self.retryable = retryable
        super().__init__(f"{provider} API error {status_code}: {message}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["provider"] = self.provider
        data["provider_status"] = self.provider_status
        data["retryable"] = self.retryable
        return data


class TokenExpiredError(ProviderAPIError):
    """Provider rejected the access token as expired or invalid."""

    code = "token_expired"


class AuthExpiredError(SettlementError):
    """Credentials could not be refreshed; the merchant must reconnect."""

    code = "auth_expired"
    status_code = 401

    def __init__(self, provider: str, message: str = "POS authorization expired, reconnect required"):
        self.provider = provider
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["provider"] = self.provider
        data["reconnect_required"] = True
        return data


class ValidationIssue:
    """Single validation finding produced by checkout payment validation."""

    INSUFFICIENT_CREDITS = "insufficient_credits"
    BARTER_ON_RESTRICTED = "barter_on_restricted"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class CheckoutValidationError(SettlementError):
    """Checkout payment failed validation and must not be settled."""

    code = "validation_error"
    status_code = 422

    def __init__(self, errors: list[ValidationIssue]):
        self.errors = errors
        super().__init__("; ".join(issue.message for issue in errors) or "Validation failed")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = [issue.to_dict() for issue in self.errors]
        return data


class InvalidArgumentError(SettlementError, ValueError):
    """Bad amount or percentage passed to a calculator."""

    code = "invalid_argument"
    status_code = 422


class OAuthStateError(SettlementError):
    """OAuth state token is unknown, already used or expired."""

    code = "invalid_state"

    def __init__(self, message: str = "Invalid or expired OAuth state"):
        super().__init__(message)


class TokenEncryptionError(SettlementError):
    """Token encryption key missing/invalid, or a stored token cannot be decrypted."""

    code = "encryption_error"
    status_code = 500


def to_http_exception(error: SettlementError) -> HTTPException:
    """Convert a settlement error to the HTTPException a merchant-facing router raises."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())
