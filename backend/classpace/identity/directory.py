"""Supabase Auth (GoTrue) client: lists principals and verifies bearer tokens."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from classpace.billing.exceptions import AuthenticationError, ConfigurationError
from classpace.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """A registered user. ``email`` is only a lookup key into Stripe."""

    id: str
    email: str | None = None

    @classmethod
    def from_auth_user(cls, payload: dict[str, Any]) -> "Principal":
        """Build a Principal from a GoTrue user object."""
        return cls(
            id=str(payload["id"]),
            email=payload.get("email") or None,
        )


class SupabaseIdentityDirectory:
    """Read-only access to the Supabase user directory.

    The service-role key is needed for listing users; the anon key is enough
    to resolve a user's own access token.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        service_role_key: str,
        timeout: float = 10.0,
        page_size: int = 1000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ConfigurationError("SUPABASE_URL is not set")
        self._auth_url = base_url.rstrip("/") + "/auth/v1"
        self._anon_key = anon_key
        self._service_role_key = service_role_key
        self._timeout = timeout
        self._page_size = page_size
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._auth_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def iter_principals(self) -> AsyncIterator[Principal]:
        """Yield every registered principal, one admin page at a time.

        Paging stops at the first page shorter than the page size.
        """
        if not self._service_role_key:
            raise ConfigurationError("SUPABASE_SERVICE_ROLE_KEY is not set")

        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }
        page = 1
        async with self._client() as client:
            while True:
                response = await client.get(
                    "/admin/users",
                    params={"page": page, "per_page": self._page_size},
                    headers=headers,
                )
                response.raise_for_status()
                users = response.json().get("users") or []
                logger.debug("Directory page %d returned %d users", page, len(users))

                for user in users:
                    yield Principal.from_auth_user(user)

                if len(users) < self._page_size:
                    break
                page += 1

    async def verify_token(self, token: str) -> Principal:
        """Resolve an access token to the principal it was issued to.

        Raises:
            AuthenticationError: If the token is rejected or has no email.
        """
        if not token:
            raise AuthenticationError("No authorization header provided")

        async with self._client() as client:
            response = await client.get(
                "/user",
                headers={
                    "apikey": self._anon_key,
                    "Authorization": f"Bearer {token}",
                },
            )

        if response.status_code in (401, 403, 404):
            message = _error_message(response) or "User not found"
            raise AuthenticationError(f"Authentication error: {message}")
        response.raise_for_status()

        principal = Principal.from_auth_user(response.json())
        if not principal.email:
            raise AuthenticationError("Authentication error: User not found")
        return principal


def _error_message(response: httpx.Response) -> str | None:
    """Pull GoTrue's error text out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    return body.get("msg") or body.get("message") or body.get("error_description") or body.get("error")


def get_identity_directory() -> SupabaseIdentityDirectory:
    """Create a SupabaseIdentityDirectory from application settings."""
    return SupabaseIdentityDirectory(
        settings.supabase_url,
        anon_key=settings.supabase_anon_key,
        service_role_key=settings.supabase_service_role_key,
        timeout=settings.external_call_timeout_seconds,
        page_size=settings.directory_page_size,
    )
