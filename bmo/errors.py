"""Exception types shared by the stores, pipelines and routes."""
from __future__ import annotations


class BmoError(Exception):
    """Base class for application errors."""
    pass


class ValidationError(BmoError):
    """Raised when input fails a business rule."""
    pass


class NotFoundError(BmoError):
    """Raised when a tenant-scoped record does not exist."""
    pass


class AuthenticationError(BmoError):
    """Raised when the caller cannot be authenticated."""
    pass


class TenantAccessError(BmoError):
    """Raised when a resource belongs to a different company."""
    pass


class PermissionDeniedError(BmoError):
    """Raised when the caller's role lacks a permission."""
    pass
