"""Directory service access: Microsoft Graph ``/users`` over httpx.

Three query strategies are exposed, in escalating looseness: exact
display-name match, prefix match, and free-text search.  Search needs the
``ConsistencyLevel: eventual`` header and may be unavailable on some tenants.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import httpx

from meeting_tasks.config import Settings
from meeting_tasks.errors import DirectoryError
from meeting_tasks.identity.models import DirectoryUser

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
USER_FIELDS = "id,displayName,userPrincipalName,mail"
MAX_CANDIDATES = 5
# Refresh tokens this many seconds before Azure AD says they expire.
TOKEN_EXPIRY_MARGIN = 60


class DirectoryService(Protocol):
    async def find_exact(self, name: str) -> list[DirectoryUser]: ...

    async def find_prefix(self, name: str) -> list[DirectoryUser]: ...

    async def search(self, name: str) -> list[DirectoryUser]: ...


def escape_odata(value: str) -> str:
    """Escape a literal for use inside an OData single-quoted string."""
    return value.replace("'", "''")


def _to_user(raw: dict[str, Any]) -> DirectoryUser:
    return DirectoryUser(
        id=str(raw.get("id", "")),
        display_name=str(raw.get("displayName") or ""),
        principal_name=str(raw.get("userPrincipalName") or ""),
        mail=raw.get("mail"),
    )


class GraphDirectory:
    """Directory lookups against Microsoft Graph with app-only credentials."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        base_url: str = "https://graph.microsoft.com/v1.0",
    ) -> None:
        self.client = client
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> GraphDirectory:
        return cls(
            client,
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
            base_url=settings.graph_base_url,
        )

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = await self.client.post(
                TOKEN_URL_TEMPLATE.format(tenant=self.tenant_id),
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": GRAPH_SCOPE,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DirectoryError(
                f"Token request failed: {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Token request failed: {exc}") from exc

        payload = response.json()
        self._token = str(payload["access_token"])
        expires_in = float(payload.get("expires_in", 3600))
        self._token_expires_at = time.monotonic() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN)
        return self._token

    async def _query_users(self, params: dict[str, str], headers: dict[str, str] | None = None) -> list[DirectoryUser]:
        token = await self._access_token()
        try:
            response = await self.client.get(
                f"{self.base_url}/users",
                params={"$select": USER_FIELDS, "$top": str(MAX_CANDIDATES), **params},
                headers={"Authorization": f"Bearer {token}", **(headers or {})},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DirectoryError(
                f"Directory query failed: {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise DirectoryError(f"Directory query failed: {exc}") from exc

        return [_to_user(raw) for raw in response.json().get("value", [])]

    async def find_exact(self, name: str) -> list[DirectoryUser]:
        return await self._query_users({"$filter": f"displayName eq '{escape_odata(name)}'"})

    async def find_prefix(self, name: str) -> list[DirectoryUser]:
        return await self._query_users({"$filter": f"startswith(displayName, '{escape_odata(name)}')"})

    async def search(self, name: str) -> list[DirectoryUser]:
        # $search needs double quotes around the property:value clause.
        term = name.replace('"', "")
        return await self._query_users(
            {"$search": f'"displayName:{term}"'},
            headers={"ConsistencyLevel": "eventual"},
        )
