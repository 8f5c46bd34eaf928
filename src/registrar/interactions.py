"""Pycord glue: interaction events and client event wiring."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import discord

from .client import GuildScope, SynchronizationError
from .logging import get_logger

if TYPE_CHECKING:
    from .registrar import CommandRegistrar

logger = get_logger(__name__)

__all__ = ["DiscordInteraction", "attach"]


def _view(components: Sequence[Any]) -> discord.ui.View | None:
    if not components:
        return None
    if len(components) == 1 and isinstance(components[0], discord.ui.View):
        return components[0]
    view = discord.ui.View()
    for item in components:
        view.add_item(item)
    return view


class DiscordInteraction:
    """Adapts a ``discord.Interaction`` to the registrar's event interface."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self.interaction = interaction

    @property
    def command_name(self) -> str:
        data = self.interaction.data or {}
        return str(data.get("name", ""))

    @property
    def guild_id(self) -> str | None:
        guild_id = self.interaction.guild_id
        return str(guild_id) if guild_id is not None else None

    @property
    def deferred(self) -> bool:
        return self.interaction.response.is_done()

    async def reply(self, content: str, components: Sequence[Any] = ()) -> None:
        view = _view(components)
        if view is None:
            await self.interaction.response.send_message(content)
        else:
            await self.interaction.response.send_message(content, view=view)

    async def edit_reply(self, content: str, components: Sequence[Any] = ()) -> None:
        await self.interaction.edit_original_response(
            content=content, view=_view(components)
        )


def attach(bot: discord.Client, registrar: CommandRegistrar) -> None:
    """Route application command interactions and guild joins to ``registrar``.

    Replaces the client's ``on_interaction`` handler, so pycord's own
    application command processing is bypassed.
    """

    async def on_interaction(interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.application_command:
            return
        await registrar.handle_interaction(DiscordInteraction(interaction))

    async def on_guild_join(guild: discord.Guild) -> None:
        scope = GuildScope(registrar.client, str(guild.id))
        try:
            await registrar.register_commands_for_guild(scope)
        except SynchronizationError as exc:
            logger.error("sync.guild_join_failed", guild_id=scope.id, error=str(exc))

    bot.event(on_interaction)
    bot.event(on_guild_join)
