from __future__ import annotations

import math

from registrar.commands import Command, CommandDeps, InteractionEvent
from registrar.model import CommandDeclaration


class PingCommand(Command):
    def declare(self) -> CommandDeclaration:
        return CommandDeclaration(name="ping", description="Check that the bot is responsive")

    async def execute(self, event: InteractionEvent) -> None:
        latency = getattr(self.deps.bot, "latency", None)
        if isinstance(latency, float) and math.isfinite(latency):
            await event.reply(f"Pong! ({latency * 1000:.0f} ms)")
        else:
            await event.reply("Pong!")


def create_command(deps: CommandDeps) -> Command:
    return PingCommand(deps)
