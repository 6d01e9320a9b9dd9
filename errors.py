"""
Service error taxonomy.

Every failure the service reports on purpose is a ServiceError carrying a
stable error code and the HTTP status it maps to. Anything else is an
unexpected failure and is rendered as an opaque internal error.
"""
from typing import Optional


class ServiceError(Exception):
    code = "service_error"
    status_code = 400
    default_message = "An error occurred"

    def __init__(self, message: Optional[str] = None, data: Optional[dict] = None):
        self.message = message or self.default_message
        self.data = data or {}
        super().__init__(self.message)


class Unauthenticated(ServiceError):
    code = "unauthenticated"
    status_code = 401
    default_message = "No authentication token, access denied"


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class Forbidden(ServiceError):
    code = "forbidden"
    status_code = 403
    default_message = "Access denied"


class AlreadySubscribed(ServiceError):
    code = "already_subscribed"
    status_code = 400
    default_message = "You already have a subscription"


class NoActiveSubscription(ServiceError):
    code = "no_active_subscription"
    status_code = 400
    default_message = "No active subscription found"


class ProviderError(ServiceError):
    """Billing provider call failed. Callers may retry."""
    code = "provider_error"
    status_code = 502
    default_message = "Billing provider request failed"
    retryable = True


class UnverifiableEvent(ServiceError):
    code = "unverifiable_event"
    status_code = 400
    default_message = "Webhook event could not be verified"


class ValidationFailed(ServiceError):
    code = "validation_failed"
    status_code = 400
    default_message = "Invalid request"
