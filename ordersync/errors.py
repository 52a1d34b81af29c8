from typing import Any, Dict, Optional


class OrderSyncError(Exception):
    code = "internal_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "ok": False,
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        if self.context:
            payload["detail"] = self.context
        return payload


class RequestValidationFailed(OrderSyncError):
    code = "validation_error"
    http_status = 400


class AccountNotFoundError(OrderSyncError):
    code = "account_not_found"
    http_status = 404


class CredentialNotFound(OrderSyncError):
    code = "credential_not_found"
    http_status = 401


class AuthExpiredError(OrderSyncError):
    """Marketplace rejected the token or it could not be refreshed.

    Surfaced to callers as "requires reauthentication" so the account can be
    reconnected.
    """
    code = "requires_reauthentication"
    http_status = 401


class RateLimitedError(OrderSyncError):
    code = "rate_limited"
    http_status = 429
    retryable = True

    def __init__(self, message: str, retry_after: Optional[int] = None, **context: Any):
        super().__init__(message, retry_after=retry_after, **context)
        self.retry_after = retry_after


class MarketplaceAPIError(OrderSyncError):
    code = "marketplace_error"
    http_status = 500

    def __init__(self, message: str, status_code: Optional[int] = None, **context: Any):
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class UpstreamServerError(MarketplaceAPIError):
    retryable = True


class UnknownProviderError(OrderSyncError):
    code = "unsupported_provider"
    http_status = 200


class RecordError(OrderSyncError):
    """Failure scoped to a single order; collected, never fatal to a batch."""

    def __init__(self, message: str, order_id: Optional[str] = None, **context: Any):
        super().__init__(message, order_id=order_id, **context)
        self.order_id = order_id


class TransformError(RecordError):
    code = "transform_error"


class UpsertError(RecordError):
    code = "upsert_error"
