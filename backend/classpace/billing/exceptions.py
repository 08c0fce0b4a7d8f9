"""Billing reconciliation errors."""


class BillingError(Exception):
    """Base class for reconciliation failures raised by this package."""


class ConfigurationError(BillingError):
    """A required credential or setting is missing."""


class AuthenticationError(BillingError):
    """The caller's bearer token is missing or was rejected."""


class CustomerNotFoundError(BillingError):
    """No Stripe customer matches the principal."""


class SubscriptionNotFoundError(BillingError):
    """The customer has no subscription the operation applies to."""
