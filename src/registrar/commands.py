from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from .model import (
    UNRESTRICTED,
    Access,
    CommandDeclaration,
    DeclarationError,
    Restricted,
    validate_declaration,
)

if TYPE_CHECKING:
    from .settings import RegistrarSettings

__all__ = [
    "Command",
    "CommandDeps",
    "CommandEntry",
    "CommandTable",
    "CommandTableBuilder",
    "DuplicateCommandError",
    "InteractionEvent",
    "LoadError",
    "RestrictedCommand",
]

MAX_GUILD_COMMANDS = 100


class LoadError(RuntimeError):
    pass


class DuplicateCommandError(LoadError):
    def __init__(self, name: str, *, first: str, second: str) -> None:
        super().__init__(
            f"duplicate command name {name!r} declared by {first} and {second}"
        )
        self.name = name
        self.first = first
        self.second = second


@runtime_checkable
class InteractionEvent(Protocol):
    @property
    def command_name(self) -> str: ...

    @property
    def guild_id(self) -> str | None: ...

    @property
    def deferred(self) -> bool: ...

    async def reply(self, content: str, components: Sequence[Any] = ()) -> None: ...

    async def edit_reply(
        self, content: str, components: Sequence[Any] = ()
    ) -> None: ...


@dataclass(frozen=True, slots=True)
class CommandDeps:
    """Shared dependencies handed to every plugin factory."""

    settings: RegistrarSettings
    bot: Any = None
    storage: Any = None
    callbacks: Any = None


class Command:
    """Base class for command plugins.

    Subclasses implement ``declare`` and ``execute``. Commands are
    unrestricted unless they derive from ``RestrictedCommand``.
    """

    def __init__(self, deps: CommandDeps) -> None:
        self.deps = deps

    def declare(self) -> CommandDeclaration:
        raise NotImplementedError

    async def execute(self, event: InteractionEvent) -> None:
        raise NotImplementedError

    def access(self) -> Access:
        return UNRESTRICTED


class RestrictedCommand(Command):
    required_permissions: ClassVar[tuple[str, ...]] = ()

    def access(self) -> Access:
        return Restricted(required=tuple(self.required_permissions))


@dataclass(frozen=True, slots=True)
class CommandEntry:
    name: str
    declaration: CommandDeclaration
    handler: Command
    access: Access
    source: str


class CommandTable(Mapping[str, CommandEntry]):
    """Read-only name -> entry mapping plus declarations in load order."""

    __slots__ = ("_entries", "_declarations")

    def __init__(self, entries: Sequence[CommandEntry] = ()) -> None:
        by_name: dict[str, CommandEntry] = {}
        for entry in entries:
            if entry.name in by_name:
                raise DuplicateCommandError(
                    entry.name, first=by_name[entry.name].source, second=entry.source
                )
            by_name[entry.name] = entry
        self._entries: Mapping[str, CommandEntry] = MappingProxyType(by_name)
        self._declarations: tuple[CommandDeclaration, ...] = tuple(
            entry.declaration for entry in entries
        )

    def __getitem__(self, name: str) -> CommandEntry:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CommandTable({list(self._entries)!r})"

    @property
    def declarations(self) -> tuple[CommandDeclaration, ...]:
        return self._declarations

    def wire_declarations(self) -> list[dict[str, Any]]:
        return [declaration.to_wire() for declaration in self._declarations]


class CommandTableBuilder:
    def __init__(self) -> None:
        self._entries: list[CommandEntry] = []
        self._sources: dict[str, str] = {}
        self._frozen = False

    def add(self, handler: Command, *, source: str) -> CommandEntry:
        if self._frozen:
            raise LoadError("command table is frozen")
        try:
            declaration = handler.declare()
        except Exception as exc:
            raise LoadError(
                f"{source}: declare() failed: {exc.__class__.__name__}: {exc}"
            ) from exc
        if not isinstance(declaration, CommandDeclaration):
            raise LoadError(
                f"{source}: declare() returned {type(declaration).__name__}, "
                "expected CommandDeclaration"
            )
        try:
            validate_declaration(declaration)
        except DeclarationError as exc:
            raise LoadError(f"{source}: {exc}") from exc
        try:
            access = handler.access()
        except Exception as exc:
            raise LoadError(
                f"{source}: access() failed: {exc.__class__.__name__}: {exc}"
            ) from exc
        name = declaration.name
        if name in self._sources:
            raise DuplicateCommandError(name, first=self._sources[name], second=source)
        entry = CommandEntry(
            name=name,
            declaration=declaration,
            handler=handler,
            access=access,
            source=source,
        )
        self._sources[name] = source
        self._entries.append(entry)
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def freeze(self) -> CommandTable:
        if len(self._entries) > MAX_GUILD_COMMANDS:
            raise LoadError(
                f"{len(self._entries)} commands loaded; a guild accepts at most "
                f"{MAX_GUILD_COMMANDS}"
            )
        self._frozen = True
        return CommandTable(self._entries)
