"""
aegis.exceptions

Custom exceptions shared by the store, the identity adapters, the
controllers and the admission webhook.
"""


class AegisError(Exception):
    """Base exception for all Aegis operator errors."""

    pass


class ConfigurationError(AegisError):
    """Raised when required configuration is missing or invalid."""

    pass


class ValidationError(AegisError):
    """Raised when a pod carries a malformed or incomplete annotation set."""

    pass


class UnknownProviderError(ValidationError):
    """Raised when a resolved provider kind has no injection support."""

    pass


class NotFoundError(AegisError):
    """Raised when a referenced cluster object does not exist."""

    pass


class ProviderNotFoundError(NotFoundError):
    """Raised when no provider kind holds an object with the requested name."""

    pass


class AlreadyExistsError(AegisError):
    """Raised when creating an object that already exists."""

    pass


class ConflictError(AegisError):
    """Raised when an update loses an optimistic-concurrency race."""

    pass


class IdentityProviderError(AegisError):
    """Base exception for identity provider errors."""

    pass


class ExternalSystemError(IdentityProviderError):
    """Raised when a call to an external identity back-end fails."""

    pass


class UnsupportedOperationError(IdentityProviderError):
    """Raised when an adapter does not implement a capability."""

    pass


class TokenNotFoundError(IdentityProviderError):
    """Raised when an identity token cannot be found."""

    pass


class InvalidTokenError(IdentityProviderError):
    """Raised when an identity token is invalid or cannot be parsed."""

    pass
