import pytest

from registrar.model import (
    CommandDeclaration,
    CommandOption,
    DeclarationError,
    OptionChoice,
    OptionType,
    PermissionGrant,
    decode_registered_commands,
    validate_declaration,
)


def _option(name: str, *, required: bool = False, **kwargs) -> CommandOption:
    return CommandOption(
        type=OptionType.STRING,
        name=name,
        description=f"{name} option",
        required=required,
        **kwargs,
    )


def test_to_wire_omits_defaults() -> None:
    declaration = CommandDeclaration(
        name="echo",
        description="Echo text back",
        options=(_option("text", required=True),),
    )

    assert declaration.to_wire() == {
        "name": "echo",
        "description": "Echo text back",
        "options": [
            {
                "type": 3,
                "name": "text",
                "description": "text option",
                "required": True,
            }
        ],
    }


def test_to_wire_keeps_disabled_default_permission() -> None:
    declaration = CommandDeclaration(
        name="kick", description="Kick a member", default_permission=False
    )

    assert declaration.to_wire()["default_permission"] is False


def test_permission_grant_for_roles() -> None:
    grant = PermissionGrant.for_roles("11", ["R1", "R2"])

    assert grant.to_wire() == {
        "id": "11",
        "permissions": [
            {"id": "R1", "type": 1, "permission": True},
            {"id": "R2", "type": 1, "permission": True},
        ],
    }


def test_decode_registered_commands_ignores_unknown_fields() -> None:
    payload = (
        b'[{"id": "1", "name": "ping", "application_id": "9", "type": 1,'
        b' "version": "5", "default_member_permissions": null}]'
    )

    [command] = decode_registered_commands(payload)

    assert (command.id, command.name, command.application_id) == ("1", "ping", "9")
    assert command.version == "5"
    assert command.guild_id is None


def test_valid_nested_declaration_passes() -> None:
    validate_declaration(
        CommandDeclaration(
            name="config",
            description="Configure things",
            options=(
                CommandOption(
                    type=OptionType.SUB_COMMAND,
                    name="set",
                    description="Set a value",
                    options=(
                        _option("key", required=True),
                        _option(
                            "mode",
                            choices=(OptionChoice(name="fast", value="fast"),),
                        ),
                    ),
                ),
            ),
        )
    )


@pytest.mark.parametrize(
    ("declaration", "message"),
    [
        (CommandDeclaration(name="Ping", description="x"), "invalid command name"),
        (CommandDeclaration(name="a" * 33, description="x"), "invalid command name"),
        (CommandDeclaration(name="ping", description=""), "description"),
        (CommandDeclaration(name="ping", description="d" * 101), "description"),
        (
            CommandDeclaration(
                name="ping",
                description="x",
                options=tuple(_option(f"o{i}") for i in range(26)),
            ),
            "more than 25 options",
        ),
        (
            CommandDeclaration(
                name="ping",
                description="x",
                options=(_option("first"), _option("second", required=True)),
            ),
            "follows an optional option",
        ),
        (
            CommandDeclaration(
                name="ping", description="x", options=(_option("a"), _option("a"))
            ),
            "duplicate option",
        ),
        (
            CommandDeclaration(
                name="ping",
                description="x",
                options=(
                    _option(
                        "pick",
                        choices=tuple(
                            OptionChoice(name=str(i), value=i) for i in range(26)
                        ),
                    ),
                ),
            ),
            "more than 25 choices",
        ),
    ],
)
def test_invalid_declarations(declaration: CommandDeclaration, message: str) -> None:
    with pytest.raises(DeclarationError, match=message):
        validate_declaration(declaration)
