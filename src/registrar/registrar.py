from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import anyio

from .client import PlatformClient, Scope, SynchronizationError
from .commands import CommandDeps, CommandTable, InteractionEvent, LoadError
from .errors import failure_message
from .logging import dispatch_context, get_logger
from .model import PermissionGrant, Restricted
from .plugins import (
    PluginSource,
    discover_directory,
    discover_entrypoints,
    load_table,
)
from .settings import RegistrarSettings, resolve_elevated_permission_roles

logger = get_logger(__name__)

__all__ = ["BUILTIN_COMMANDS_DIR", "CommandRegistrar"]

BUILTIN_COMMANDS_DIR = Path(__file__).resolve().parent / "commands_builtin"


class CommandRegistrar:
    """Loads command plugins, syncs them to guilds and dispatches interactions."""

    def __init__(
        self,
        settings: RegistrarSettings,
        client: PlatformClient | None = None,
        *,
        bot: Any = None,
        storage: Any = None,
        callbacks: Any = None,
        commands_dir: Path | None = None,
        use_entrypoints: bool = True,
    ) -> None:
        self.settings = settings
        self.client = client
        self.deps = CommandDeps(
            settings=settings, bot=bot, storage=storage, callbacks=callbacks
        )
        self.commands_dir = (
            commands_dir or settings.commands_dir() or BUILTIN_COMMANDS_DIR
        )
        self.use_entrypoints = use_entrypoints
        self._table: CommandTable | None = None

    @property
    def table(self) -> CommandTable:
        if self._table is None:
            raise LoadError("commands have not been scanned yet")
        return self._table

    def discover(self) -> list[PluginSource]:
        sources = discover_directory(self.commands_dir)
        if self.use_entrypoints:
            sources.extend(
                discover_entrypoints(allowlist=self.settings.plugins.enabled or None)
            )
        return sources

    async def scan(self) -> CommandTable:
        if self._table is not None:
            raise LoadError("commands have already been scanned")
        logger.debug("scan.start", commands_dir=str(self.commands_dir))
        sources = self.discover()
        logger.debug(
            "scan.discovered",
            count=len(sources),
            sources=[source.label for source in sources],
        )
        table = await load_table(sources, self.deps)
        self._table = table
        logger.info("scan.done", commands=sorted(table))
        return table

    def _require_client(self) -> PlatformClient:
        if self.client is None:
            raise SynchronizationError("no platform client configured")
        return self.client

    async def register_commands_for_guild(self, scope: Scope) -> list[PermissionGrant]:
        """Push every declaration to ``scope`` and replace its permission grants.

        Steps run in order: push declarations, fetch the registered commands
        for their ids, push grants for restricted commands. Platform failures
        propagate as ``SynchronizationError``.
        """
        table = self.table
        client = self._require_client()
        guild_id = scope.id
        application_id = await client.application_id()

        logger.debug("sync.start", guild_id=guild_id)
        declarations = table.wire_declarations()
        await client.push_declarations(guild_id, declarations)
        logger.debug("sync.pushed", guild_id=guild_id, count=len(declarations))

        grants: list[PermissionGrant] = []
        for registered in await scope.fetch_commands():
            if registered.application_id != application_id:
                continue
            entry = table.get(registered.name)
            if entry is None:
                logger.warning(
                    "sync.unknown_command",
                    guild_id=guild_id,
                    command=registered.name,
                    command_id=registered.id,
                )
                continue
            access = entry.access
            if not isinstance(access, Restricted):
                logger.debug("sync.unrestricted", command=entry.name)
                continue
            roles = resolve_elevated_permission_roles(self.settings, access.required)
            logger.debug(
                "sync.restricted",
                command=entry.name,
                required=list(access.required),
                roles=roles,
            )
            grants.append(PermissionGrant.for_roles(registered.id, roles))

        logger.debug("sync.permissions", guild_id=guild_id, count=len(grants))
        await scope.set_permissions(grants)
        logger.info(
            "sync.done",
            guild_id=guild_id,
            commands=len(declarations),
            grants=len(grants),
        )
        return grants

    async def register_commands_for_guilds(
        self, scopes: Iterable[Scope]
    ) -> dict[str, Exception]:
        """Register every scope concurrently; return the failures by guild id.

        Any error raised for one scope is recorded for it and does not cancel
        the others.
        """
        failures: dict[str, Exception] = {}

        async def _register(scope: Scope) -> None:
            try:
                await self.register_commands_for_guild(scope)
            except Exception as exc:
                logger.error(
                    "sync.failed",
                    guild_id=scope.id,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                failures[scope.id] = exc

        async with anyio.create_task_group() as tg:
            for scope in scopes:
                tg.start_soon(_register, scope)
        return failures

    async def handle_interaction(self, event: InteractionEvent) -> None:
        command_name = event.command_name
        entry = self.table.get(command_name)
        if entry is None:
            logger.warning(
                "dispatch.unknown_command",
                command=command_name,
                guild_id=event.guild_id,
            )
            return

        with dispatch_context(command=command_name, guild_id=event.guild_id):
            timeout = self.settings.dispatch.timeout_s
            try:
                if timeout is None:
                    await entry.handler.execute(event)
                else:
                    with anyio.fail_after(timeout):
                        await entry.handler.execute(event)
            except Exception as exc:
                logger.exception("dispatch.failed", error_type=exc.__class__.__name__)
                await self._report_failure(event, exc)

    async def _report_failure(self, event: InteractionEvent, exc: Exception) -> None:
        content = failure_message(exc)
        try:
            if event.deferred:
                await event.edit_reply(content, components=[])
            else:
                await event.reply(content, components=[])
        except Exception as report_exc:
            logger.error(
                "dispatch.report_failed",
                error=str(report_exc),
                error_type=report_exc.__class__.__name__,
            )
