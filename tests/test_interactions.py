from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from structlog.testing import capture_logs

from registrar.client import GuildScope, SynchronizationError
from registrar.interactions import DiscordInteraction, attach


def _interaction(**kwargs) -> MagicMock:
    interaction = MagicMock()
    interaction.data = {"name": "ping"}
    interaction.guild_id = 42
    interaction.type = discord.InteractionType.application_command
    interaction.response.is_done = MagicMock(return_value=False)
    interaction.response.send_message = AsyncMock()
    interaction.edit_original_response = AsyncMock()
    for key, value in kwargs.items():
        setattr(interaction, key, value)
    return interaction


class FakeBot:
    def __init__(self) -> None:
        self.handlers: dict[str, object] = {}

    def event(self, coro):
        self.handlers[coro.__name__] = coro
        return coro


def test_interaction_properties() -> None:
    raw = _interaction()
    event = DiscordInteraction(raw)

    assert event.command_name == "ping"
    assert event.guild_id == "42"
    assert event.deferred is False

    raw.response.is_done.return_value = True
    assert event.deferred is True


def test_interaction_outside_guild() -> None:
    event = DiscordInteraction(_interaction(guild_id=None, data=None))

    assert event.guild_id is None
    assert event.command_name == ""


@pytest.mark.anyio
async def test_reply_and_edit_without_components() -> None:
    raw = _interaction()
    event = DiscordInteraction(raw)

    await event.reply("hello", components=[])
    await event.edit_reply("updated", components=[])

    raw.response.send_message.assert_awaited_once_with("hello")
    raw.edit_original_response.assert_awaited_once_with(content="updated", view=None)


@pytest.mark.anyio
async def test_reply_passes_view_through() -> None:
    raw = _interaction()
    view = discord.ui.View(timeout=None)

    await DiscordInteraction(raw).reply("pick one", components=[view])

    raw.response.send_message.assert_awaited_once_with("pick one", view=view)


@pytest.mark.anyio
async def test_attach_routes_application_commands() -> None:
    bot = FakeBot()
    registrar = MagicMock()
    registrar.handle_interaction = AsyncMock()
    attach(bot, registrar)  # type: ignore[arg-type]

    raw = _interaction()
    await bot.handlers["on_interaction"](raw)
    await bot.handlers["on_interaction"](
        _interaction(type=discord.InteractionType.component)
    )

    registrar.handle_interaction.assert_awaited_once()
    [event] = registrar.handle_interaction.await_args.args
    assert isinstance(event, DiscordInteraction)
    assert event.interaction is raw


@pytest.mark.anyio
async def test_guild_join_registers_commands() -> None:
    bot = FakeBot()
    registrar = MagicMock()
    registrar.register_commands_for_guild = AsyncMock(return_value=[])
    attach(bot, registrar)  # type: ignore[arg-type]

    guild = MagicMock()
    guild.id = 42
    await bot.handlers["on_guild_join"](guild)

    [scope] = registrar.register_commands_for_guild.await_args.args
    assert scope == GuildScope(registrar.client, "42")


@pytest.mark.anyio
async def test_guild_join_failure_is_logged() -> None:
    bot = FakeBot()
    registrar = MagicMock()
    registrar.register_commands_for_guild = AsyncMock(
        side_effect=SynchronizationError("Missing Access", status=403)
    )
    attach(bot, registrar)  # type: ignore[arg-type]

    guild = MagicMock()
    guild.id = 42
    with capture_logs() as logs:
        await bot.handlers["on_guild_join"](guild)

    assert logs == [
        {
            "event": "sync.guild_join_failed",
            "log_level": "error",
            "guild_id": "42",
            "error": "Missing Access",
        }
    ]
