"""Request-path services used by the HTTP layer."""
from services.auth import (
    HttpIdentityVerifier, IdentityVerifier, InvalidCredentialError,
    StaticTokenVerifier, create_identity_verifier,
)
from services.tasks import TaskService, TaskValidationError

__all__ = [
    "HttpIdentityVerifier", "IdentityVerifier", "InvalidCredentialError",
    "StaticTokenVerifier", "create_identity_verifier",
    "TaskService", "TaskValidationError",
]
