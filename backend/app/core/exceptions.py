class BillingError(Exception):
    """Base exception for the billing integration.

    ``code`` is a stable machine-readable kind; ``message`` is safe to log.
    """

    code = "unknown"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ConfigurationError(BillingError):
    """Raised when a required secret or setting is absent."""

    code = "configuration"


class SignatureInvalidError(BillingError):
    """Raised when a webhook signature does not match the payload."""

    code = "authentication"


class WebhookInvalidError(BillingError):
    """Raised when a webhook payload fails schema validation."""

    code = "webhook-invalid"


class ReconciliationError(BillingError):
    """Raised when Plan/Subscription/User state cannot be applied."""

    code = "subscription-error"


class UserNotFoundError(ReconciliationError):
    """Raised when an event references a user that does not exist."""

    code = "user-not-found"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class UpstreamApiError(BillingError):
    """Raised when the billing provider's API returns an error."""

    code = "api-error"


class CustomerPortalError(BillingError):
    """Raised when no customer portal can be resolved for a user."""

    code = "customer-portal-error"


class InvalidInputError(BillingError):
    """Raised when a caller supplies an unusable argument."""

    code = "invalid-input"
