"""Exceptions raised by the storefront client and services.

Hierarchy:
- StorefrontError (base)
- NotAuthenticatedError
- AuthError
- ValidationError
- NotFoundError
- WishlistOperationError
- RemoteRequestError
- TransientIOError
"""

from typing import Dict, Optional


class StorefrontError(Exception):
    """Base exception for all storefront operations.

    Attributes:
        message: Human-readable error description.
        details: Optional additional context about the error.
    """

    def __init__(self, message: str, *, details: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class NotAuthenticatedError(StorefrontError):
    """Operation requires a signed-in session that does not exist.

    Also raised when the server rejects the bearer token with a 401.
    """

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message)


class AuthError(StorefrontError):
    """The identity provider rejected a credential operation.

    Raised when:
    - Registering an email that already exists or a weak password
    - Signing in with invalid credentials
    - Requesting a password reset the provider refuses

    Attributes:
        code: Provider error code (e.g. ``EMAIL_EXISTS``).
    """

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        details = {"code": code} if code else {}
        super().__init__(message, details=details)
        self.code = code


class ValidationError(StorefrontError):
    """Malformed request payload (missing product id, empty purchase items)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(StorefrontError):
    """Product, wishlist entry or order is absent.

    Attributes:
        resource: Kind of resource that was not found.
        identifier: Identifier that was looked up, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        resource: Optional[str] = None,
        identifier: Optional[str] = None,
    ) -> None:
        details: Dict[str, str] = {}
        if resource:
            details["resource"] = resource
        if identifier is not None:
            details["id"] = str(identifier)
        super().__init__(message, details=details)
        self.resource = resource
        self.identifier = identifier


class WishlistOperationError(StorefrontError):
    """Server rejected a wishlist add/remove; wraps the server message."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        details = {"status": str(status_code)} if status_code else {}
        super().__init__(message, details=details)
        self.status_code = status_code


class RemoteRequestError(StorefrontError):
    """Server answered with an error status not covered by a narrower type."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message, details={"status": str(status_code)})
        self.status_code = status_code


class TransientIOError(StorefrontError):
    """Network or storage failure with no specific server response.

    Attributes:
        cause: The underlying error message, if any.
    """

    def __init__(self, message: str = "Network request failed", *, cause: Optional[str] = None) -> None:
        details = {"cause": cause} if cause else {}
        super().__init__(message, details=details)
        self.cause = cause
