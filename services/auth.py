"""
Identity verification — bearer credential → user id.

Only the HTTP layer consults this; the event pipeline trusts the userId
carried in each event.
"""
from __future__ import annotations

import abc
import structlog
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import AuthConfig, get_settings

logger = structlog.get_logger()


class InvalidCredentialError(Exception):
    """The bearer credential was missing, unknown, or rejected."""


class IdentityVerifier(abc.ABC):
    @abc.abstractmethod
    async def verify(self, token: str) -> str:
        """Return the user id for ``token`` or raise InvalidCredentialError."""
        ...

    async def close(self) -> None:
        pass


class StaticTokenVerifier(IdentityVerifier):
    """Fixed token → user id map, for development and tests."""

    def __init__(self, tokens: dict[str, str] = None):
        self.tokens = dict(tokens or {})

    async def verify(self, token: str) -> str:
        user_id = self.tokens.get(token or "")
        if not user_id:
            raise InvalidCredentialError("unknown token")
        return user_id


class HttpIdentityVerifier(IdentityVerifier):
    """
    Asks an identity provider's user endpoint who owns the token
    (e.g. Supabase ``/auth/v1/user``). Expects a JSON body with ``id``.
    """

    def __init__(self, user_url: str, api_key: str = "", timeout: float = 10.0):
        self.user_url = user_url
        self.api_key = api_key
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"apikey": self.api_key} if self.api_key else {}
            self._client = httpx.AsyncClient(headers=headers, timeout=self.timeout)
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _fetch_user(self, token: str) -> httpx.Response:
        client = await self._get_client()
        return await client.get(self.user_url, headers={"Authorization": f"Bearer {token}"})

    async def verify(self, token: str) -> str:
        if not token:
            raise InvalidCredentialError("no token")
        response = await self._fetch_user(token)
        if response.status_code in (401, 403):
            raise InvalidCredentialError("token rejected by identity provider")
        response.raise_for_status()
        user_id = (response.json() or {}).get("id")
        if not user_id:
            raise InvalidCredentialError("identity provider returned no user")
        return str(user_id)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_identity_verifier(config: AuthConfig = None) -> IdentityVerifier:
    config = config or get_settings().auth
    if config.provider == "http":
        logger.info("identity_verifier_created", provider="http", url=config.user_url)
        return HttpIdentityVerifier(config.user_url, api_key=config.api_key)
    logger.info("identity_verifier_created", provider="static", tokens=len(config.tokens))
    return StaticTokenVerifier(config.tokens)
