"""
Custom Exception Classes for the PinPrompt API.

This module defines the exception hierarchy used by the service layer, the data
gateway and the HTTP surface. Every error carries a message, a stable error code
and an optional `details` dictionary, so the same failure can be logged,
rendered inline next to the acting control, or mapped to an HTTP status.

Key Components:
- `PinPromptException`: Root of the hierarchy.
- Authentication/authorization errors: `AuthenticationError` (no identity or no
  profile, terminal for the current view) and `PermissionDeniedError` (a
  mutation on a row owned by another profile).
- Lookup errors: `ProfileNotFoundError`, `ContentNotFoundError`.
- Input errors: `ValidationError`.
- Gateway errors: `GatewayError` for failed queries and mutations,
  `RemoteProcedureError` for failed remote procedures, `StorageError` for
  object storage failures.
- `MutationInFlightError`: a per-key reentrancy guard refused a request.
- `to_http_exception`: Maps an exception to FastAPI's `HTTPException`.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class PinPromptException(Exception):
    """Base exception class for PinPrompt"""

    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "PINPROMPT_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(PinPromptException):
    """Raised when there is no authenticated identity or no matching profile"""

    status_code = 401

    def __init__(self, reason: str):
        super().__init__(
            f"Authentication failed: {reason}",
            "AUTHENTICATION_ERROR",
            {"reason": reason},
        )


class PermissionDeniedError(PinPromptException):
    """Raised when a viewer mutates a row they do not own"""

    status_code = 403

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"Not allowed to modify {resource} {resource_id}",
            "PERMISSION_DENIED",
            {"resource": resource, "resource_id": resource_id},
        )


class ProfileNotFoundError(PinPromptException):
    """Raised when a profile cannot be found"""

    status_code = 404

    def __init__(self, handle: str):
        super().__init__(
            f"Profile not found: {handle}",
            "PROFILE_NOT_FOUND",
            {"handle": handle},
        )


class ContentNotFoundError(PinPromptException):
    """Raised when a content item cannot be found"""

    status_code = 404

    def __init__(self, item_id: str):
        super().__init__(
            f"Content item not found: {item_id}",
            "CONTENT_NOT_FOUND",
            {"item_id": item_id},
        )


class ValidationError(PinPromptException):
    """Raised when input validation fails"""

    status_code = 400

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            "VALIDATION_ERROR",
            {"field": field, "value": str(value), "reason": reason},
        )


class MutationInFlightError(PinPromptException):
    """Raised when the same mutation is already being applied"""

    status_code = 409

    def __init__(self, action: str, key: str):
        super().__init__(
            f"A {action} for {key} is already in progress",
            "MUTATION_IN_FLIGHT",
            {"action": action, "key": key},
        )


class GatewayError(PinPromptException):
    """Raised when a query or mutation against the data gateway fails"""

    status_code = 502

    def __init__(self, operation: str, reason: str, error_code: str = "GATEWAY_ERROR"):
        super().__init__(
            f"Gateway operation '{operation}' failed: {reason}",
            error_code,
            {"operation": operation, "reason": reason},
        )


class RemoteProcedureError(GatewayError):
    """Raised when a remote procedure call fails"""

    def __init__(self, procedure: str, reason: str):
        super().__init__(f"rpc:{procedure}", reason, "REMOTE_PROCEDURE_ERROR")
        self.details["procedure"] = procedure


class StorageError(PinPromptException):
    """Raised when object storage operations fail"""

    status_code = 502

    def __init__(self, bucket: str, path: str, reason: str):
        super().__init__(
            f"Storage operation on {bucket}/{path} failed: {reason}",
            "STORAGE_ERROR",
            {"bucket": bucket, "path": path, "reason": reason},
        )


def to_http_exception(exc: PinPromptException) -> HTTPException:
    """Convert PinPromptException to FastAPI HTTPException using the class status code"""
    return HTTPException(
        status_code=exc.status_code,
        detail={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )
