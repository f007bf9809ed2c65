from __future__ import annotations

import logging
from enum import Enum

from directory.client import DirectoryClient
from directory.errors import DirectoryError, PermissionDeniedError, TransientError
from directory.models import Principal
from pim_lifecycle.observability import traced_authentication

logger = logging.getLogger(__name__)


class AuthFailure(str, Enum):
    CANCELLED = "cancelled"
    NETWORK = "network"
    TENANT = "tenant"
    PERMISSION = "permission"
    MFA = "mfa"
    UNKNOWN = "unknown"


_MESSAGES = {
    AuthFailure.CANCELLED: (
        "Sign-in was cancelled or no access token was provided. "
        "Sign in again and set PIM_ACCESS_TOKEN."
    ),
    AuthFailure.NETWORK: (
        "Could not reach the directory service. Check your network connection or proxy."
    ),
    AuthFailure.TENANT: (
        "The tenant could not be found or the application is not registered in it."
    ),
    AuthFailure.PERMISSION: (
        "Your account is not allowed to read role management data. "
        "Ask an administrator to grant the required permissions."
    ),
    AuthFailure.MFA: (
        "Multi-factor authentication is required. Complete MFA and sign in again."
    ),
    AuthFailure.UNKNOWN: "Authentication failed.",
}

_MFA_MARKERS = ("aadsts50076", "aadsts50079", "aadsts50074", "claims", "mfa", "multi-factor")
_TENANT_MARKERS = ("aadsts90002", "aadsts700016", "aadsts90072", "tenant")


class AuthenticationError(Exception):
    """Fatal sign-in failure with a user-facing category."""

    def __init__(self, category: AuthFailure, detail: str = "") -> None:
        super().__init__(detail or _MESSAGES[category])
        self.category = category
        self.detail = detail


def classify_auth_failure(exc: BaseException) -> AuthFailure:
    text = str(exc).lower()
    code = (getattr(exc, "code", None) or "").lower()
    if isinstance(exc, AuthenticationError):
        return exc.category
    if isinstance(exc, KeyboardInterrupt):
        return AuthFailure.CANCELLED
    if isinstance(exc, TransientError):
        return AuthFailure.NETWORK
    if any(marker in text or marker in code for marker in _MFA_MARKERS):
        return AuthFailure.MFA
    if any(marker in text or marker in code for marker in _TENANT_MARKERS):
        return AuthFailure.TENANT
    if isinstance(exc, PermissionDeniedError):
        if exc.status == 401:
            return AuthFailure.CANCELLED
        return AuthFailure.PERMISSION
    return AuthFailure.UNKNOWN


def describe_auth_failure(error: AuthenticationError) -> str:
    message = _MESSAGES[error.category]
    if error.detail and error.category is AuthFailure.UNKNOWN:
        message = f"{message} {error.detail}"
    return message


async def authenticate(
    client: DirectoryClient, access_token: str | None, *, base_url: str | None = None
) -> Principal:
    """Resolve the signed-in principal for ``access_token``.

    Token acquisition happens before this tool starts; here the token is
    only checked against the directory and turned into a principal id.
    """
    if not access_token:
        raise AuthenticationError(AuthFailure.CANCELLED)

    async with traced_authentication(base_url=base_url) as span:
        try:
            principal = await client.get_me()
        except DirectoryError as exc:
            category = classify_auth_failure(exc)
            logger.error("Authentication failed (%s): %s", category.value, exc)
            raise AuthenticationError(category, str(exc)) from exc
        span.set_attribute("enduser.id", principal.id)

    logger.info("Signed in as %s (%s)", principal.identity, principal.id)
    return principal
