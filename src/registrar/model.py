"""Wire models for Discord application commands (API v9 subset).

Declarations are built by plugins and pushed as-is; registered commands and
permission grants mirror the payloads of the guild command endpoints.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, TypeAlias

import msgspec

__all__ = [
    "Access",
    "CommandDeclaration",
    "CommandOption",
    "DeclarationError",
    "OptionChoice",
    "OptionType",
    "PermissionGrant",
    "RegisteredCommand",
    "Restricted",
    "RolePermission",
    "UNRESTRICTED",
    "Unrestricted",
    "decode_registered_commands",
    "validate_declaration",
]

NAME_RE = re.compile(r"^[-_a-z0-9]{1,32}$")
MAX_DESCRIPTION_LENGTH = 100
MAX_OPTIONS = 25
MAX_CHOICES = 25

ROLE_PERMISSION_TYPE = 1


class DeclarationError(ValueError):
    pass


class OptionType(IntEnum):
    SUB_COMMAND = 1
    SUB_COMMAND_GROUP = 2
    STRING = 3
    INTEGER = 4
    BOOLEAN = 5
    USER = 6
    CHANNEL = 7
    ROLE = 8
    MENTIONABLE = 9
    NUMBER = 10
    ATTACHMENT = 11


class OptionChoice(msgspec.Struct, frozen=True):
    name: str
    value: str | int | float


class CommandOption(msgspec.Struct, frozen=True, omit_defaults=True):
    type: OptionType
    name: str
    description: str
    required: bool = False
    choices: tuple[OptionChoice, ...] = ()
    options: tuple[CommandOption, ...] = ()


class CommandDeclaration(msgspec.Struct, frozen=True, omit_defaults=True):
    name: str
    description: str
    options: tuple[CommandOption, ...] = ()
    default_permission: bool = True

    def to_wire(self) -> dict[str, Any]:
        return msgspec.to_builtins(self)


class RegisteredCommand(msgspec.Struct, forbid_unknown_fields=False):
    id: str
    name: str
    application_id: str
    guild_id: str | None = None
    version: str | None = None


class RolePermission(msgspec.Struct, frozen=True):
    id: str
    type: int = ROLE_PERMISSION_TYPE
    permission: bool = True


class PermissionGrant(msgspec.Struct, frozen=True):
    id: str
    permissions: tuple[RolePermission, ...]

    @classmethod
    def for_roles(cls, command_id: str, role_ids: list[str]) -> PermissionGrant:
        return cls(
            id=command_id,
            permissions=tuple(RolePermission(id=role_id) for role_id in role_ids),
        )

    def to_wire(self) -> dict[str, Any]:
        return msgspec.to_builtins(self)


@dataclass(frozen=True, slots=True)
class Unrestricted:
    pass


@dataclass(frozen=True, slots=True)
class Restricted:
    required: tuple[str, ...]


Access: TypeAlias = Unrestricted | Restricted

UNRESTRICTED = Unrestricted()


def decode_registered_commands(payload: bytes | str) -> list[RegisteredCommand]:
    return msgspec.json.decode(payload, type=list[RegisteredCommand])


def _validate_name(name: str, *, label: str) -> None:
    if not isinstance(name, str):
        raise DeclarationError(
            f"{label} name must be a string, got {type(name).__name__}"
        )
    if not NAME_RE.fullmatch(name):
        raise DeclarationError(
            f"invalid {label} name {name!r}; expected 1-32 lowercase letters, "
            "digits, '-' or '_'"
        )


def _validate_description(description: str, *, label: str) -> None:
    if not isinstance(description, str):
        raise DeclarationError(
            f"{label} description must be a string, got {type(description).__name__}"
        )
    if not description or len(description) > MAX_DESCRIPTION_LENGTH:
        raise DeclarationError(
            f"{label} description must be 1-{MAX_DESCRIPTION_LENGTH} characters"
        )


def _validate_options(options: tuple[CommandOption, ...], *, label: str) -> None:
    if not isinstance(options, (tuple, list)):
        raise DeclarationError(f"{label} options must be a sequence of CommandOption")
    if len(options) > MAX_OPTIONS:
        raise DeclarationError(f"{label} has more than {MAX_OPTIONS} options")
    seen: set[str] = set()
    optional_seen = False
    for option in options:
        if not isinstance(option, CommandOption):
            raise DeclarationError(
                f"{label} option must be a CommandOption, got {type(option).__name__}"
            )
        _validate_name(option.name, label=f"{label} option")
        _validate_description(option.description, label=f"{label} option {option.name!r}")
        if option.name in seen:
            raise DeclarationError(f"{label} has duplicate option {option.name!r}")
        seen.add(option.name)
        if not isinstance(option.choices, (tuple, list)):
            raise DeclarationError(
                f"{label} option {option.name!r} choices must be a sequence"
            )
        if len(option.choices) > MAX_CHOICES:
            raise DeclarationError(
                f"{label} option {option.name!r} has more than {MAX_CHOICES} choices"
            )
        if option.required and optional_seen:
            raise DeclarationError(
                f"{label} option {option.name!r} is required but follows an optional option"
            )
        if not option.required:
            optional_seen = True
        if option.options:
            _validate_options(option.options, label=f"{label} {option.name}")


def validate_declaration(declaration: CommandDeclaration) -> None:
    label = f"command {declaration.name!r}"
    _validate_name(declaration.name, label="command")
    _validate_description(declaration.description, label=label)
    _validate_options(declaration.options, label=label)
