from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import msgspec

from . import __version__
from .logging import get_logger
from .model import PermissionGrant, RegisteredCommand, decode_registered_commands

logger = get_logger(__name__)

__all__ = [
    "API_BASE",
    "DiscordRestClient",
    "GuildScope",
    "PlatformClient",
    "RateLimited",
    "Scope",
    "SynchronizationError",
]

API_BASE = "https://discord.com/api/v9"
DEFAULT_RETRY_AFTER = 5.0


class SynchronizationError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        method: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.method = method
        self.path = path


class RateLimited(SynchronizationError):
    def __init__(self, retry_after: float, *, method: str, path: str) -> None:
        super().__init__(
            f"rate limited on {method} {path}; retry after {retry_after}s",
            status=429,
            method=method,
            path=path,
        )
        self.retry_after = retry_after


class PlatformClient(Protocol):
    async def application_id(self) -> str: ...

    async def push_declarations(
        self, guild_id: str, declarations: Sequence[dict[str, Any]]
    ) -> list[RegisteredCommand]: ...

    async def fetch_registered_commands(
        self, guild_id: str
    ) -> list[RegisteredCommand]: ...

    async def set_permissions(
        self, guild_id: str, grants: Sequence[PermissionGrant]
    ) -> None: ...


class Scope(Protocol):
    @property
    def id(self) -> str: ...

    async def fetch_commands(self) -> list[RegisteredCommand]: ...

    async def set_permissions(self, grants: Sequence[PermissionGrant]) -> None: ...


def _retry_after(resp: httpx.Response) -> float:
    try:
        payload = resp.json()
    except ValueError:
        return DEFAULT_RETRY_AFTER
    if isinstance(payload, dict):
        value = payload.get("retry_after")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return DEFAULT_RETRY_AFTER


class DiscordRestClient:
    def __init__(
        self,
        token: str,
        *,
        application_id: str | None = None,
        timeout_s: float = 30,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = API_BASE,
    ) -> None:
        if not token:
            raise ValueError("Discord token is empty")
        self._base = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bot {token}",
            "User-Agent": f"DiscordBot (guild-registrar, {__version__})",
        }
        self._application_id = application_id
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, path: str, json_data: Any | None = None
    ) -> bytes:
        logger.debug("discord.request", method=method, path=path, payload=json_data)
        try:
            resp = await self._client.request(
                method,
                f"{self._base}{path}",
                headers=self._headers,
                json=json_data,
            )
        except httpx.HTTPError as e:
            logger.error(
                "discord.network_error",
                method=method,
                path=path,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            raise SynchronizationError(
                f"network error on {method} {path}: {e}", method=method, path=path
            ) from e

        if resp.status_code == 429:
            retry_after = _retry_after(resp)
            logger.warning(
                "discord.rate_limited",
                method=method,
                path=path,
                retry_after=retry_after,
            )
            raise RateLimited(retry_after, method=method, path=path)

        if resp.is_error:
            body = resp.text
            logger.error(
                "discord.http_error",
                method=method,
                path=path,
                status=resp.status_code,
                body=body,
            )
            raise SynchronizationError(
                f"{method} {path} failed with HTTP {resp.status_code}: {body}",
                status=resp.status_code,
                method=method,
                path=path,
            )

        logger.debug("discord.response", method=method, path=path, status=resp.status_code)
        return resp.content

    async def application_id(self) -> str:
        if self._application_id is not None:
            return self._application_id
        raw = await self._request("GET", "/oauth2/applications/@me")
        try:
            payload = msgspec.json.decode(raw)
        except msgspec.DecodeError as e:
            raise SynchronizationError(f"invalid application payload: {e}") from e
        app_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(app_id, str) or not app_id:
            raise SynchronizationError("application payload has no id")
        self._application_id = app_id
        return app_id

    async def _guild_commands_path(self, guild_id: str) -> str:
        app_id = await self.application_id()
        return f"/applications/{app_id}/guilds/{guild_id}/commands"

    def _decode_commands(self, raw: bytes, *, path: str) -> list[RegisteredCommand]:
        try:
            return decode_registered_commands(raw)
        except msgspec.DecodeError as e:
            raise SynchronizationError(
                f"invalid command list from {path}: {e}", path=path
            ) from e

    async def push_declarations(
        self, guild_id: str, declarations: Sequence[dict[str, Any]]
    ) -> list[RegisteredCommand]:
        path = await self._guild_commands_path(guild_id)
        raw = await self._request("PUT", path, list(declarations))
        return self._decode_commands(raw, path=path)

    async def fetch_registered_commands(self, guild_id: str) -> list[RegisteredCommand]:
        path = await self._guild_commands_path(guild_id)
        raw = await self._request("GET", path)
        return self._decode_commands(raw, path=path)

    async def set_permissions(
        self, guild_id: str, grants: Sequence[PermissionGrant]
    ) -> None:
        path = f"{await self._guild_commands_path(guild_id)}/permissions"
        await self._request("PUT", path, [grant.to_wire() for grant in grants])


@dataclass(frozen=True, slots=True)
class GuildScope:
    """A guild addressed through a platform client."""

    client: PlatformClient
    guild_id: str

    @property
    def id(self) -> str:
        return self.guild_id

    async def fetch_commands(self) -> list[RegisteredCommand]:
        return await self.client.fetch_registered_commands(self.guild_id)

    async def set_permissions(self, grants: Sequence[PermissionGrant]) -> None:
        await self.client.set_permissions(self.guild_id, grants)
