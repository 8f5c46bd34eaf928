from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import anyio
import typer

from . import __version__
from .client import DiscordRestClient, GuildScope
from .commands import CommandTable, LoadError
from .config import ConfigError
from .logging import setup_logging
from .model import Restricted
from .registrar import CommandRegistrar
from .settings import RegistrarSettings, load_settings

_CONFIG_PATH_OPTION = typer.Option(
    None,
    "--config",
    help="Path to registrar.toml (defaults to ~/.registrar/registrar.toml).",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _exit_error(exc: Exception) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


def _load(config_path: Path | None) -> tuple[RegistrarSettings, Path]:
    try:
        return load_settings(config_path)
    except ConfigError as exc:
        _exit_error(exc)


def _build_registrar(
    settings: RegistrarSettings, cfg_path: Path, client: DiscordRestClient | None
) -> CommandRegistrar:
    return CommandRegistrar(
        settings,
        client,
        commands_dir=settings.commands_dir(config_path=cfg_path),
    )


def _describe(table: CommandTable) -> list[str]:
    lines: list[str] = []
    for name in sorted(table):
        entry = table[name]
        if isinstance(entry.access, Restricted):
            access = f"restricted [{', '.join(entry.access.required)}]"
        else:
            access = "unrestricted"
        lines.append(f"  /{name} - {entry.declaration.description} ({access}; {entry.source})")
    return lines


def commands_cmd(
    config_path: Path | None = _CONFIG_PATH_OPTION,
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Log debug output."),
) -> None:
    """Scan command plugins and list them."""
    setup_logging(debug=debug)
    settings, cfg_path = _load(config_path)
    registrar = _build_registrar(settings, cfg_path, None)
    try:
        table = anyio.run(registrar.scan)
    except LoadError as exc:
        _exit_error(exc)
    typer.echo(f"commands ({len(table)}):")
    for line in _describe(table):
        typer.echo(line)


async def _sync(
    settings: RegistrarSettings, cfg_path: Path, guild_ids: list[str]
) -> dict[str, Exception]:
    client = DiscordRestClient(
        settings.require_token(cfg_path),
        application_id=settings.application_id,
    )
    try:
        registrar = _build_registrar(settings, cfg_path, client)
        await registrar.scan()
        scopes = [GuildScope(client, guild_id) for guild_id in guild_ids]
        return await registrar.register_commands_for_guilds(scopes)
    finally:
        await client.close()


def sync_cmd(
    config_path: Path | None = _CONFIG_PATH_OPTION,
    guild: list[str] | None = typer.Option(
        None,
        "--guild",
        "-g",
        help="Guild id to sync (repeatable; defaults to `guild_ids` from config).",
    ),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Log debug output."),
) -> None:
    """Push command declarations and permissions to guilds."""
    setup_logging(debug=debug)
    settings, cfg_path = _load(config_path)
    guild_ids = [value.strip() for value in guild or [] if value.strip()]
    if not guild_ids:
        guild_ids = list(settings.guild_ids)
    if not guild_ids:
        _exit_error(ConfigError(f"No guilds to sync; pass --guild or set `guild_ids` in {cfg_path}."))

    try:
        failures = anyio.run(_sync, settings, cfg_path, guild_ids)
    except (ConfigError, LoadError) as exc:
        _exit_error(exc)

    for guild_id in guild_ids:
        failure = failures.get(guild_id)
        if failure is None:
            typer.echo(f"synced guild {guild_id}")
        else:
            typer.echo(f"failed guild {guild_id}: {failure}", err=True)
    if failures:
        raise typer.Exit(code=1)


def create_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        no_args_is_help=True,
        help="Discover command plugins and sync them to Discord guilds.",
    )

    @app.callback()
    def _main(
        version: bool = typer.Option(
            False,
            "--version",
            help="Show the version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ) -> None:
        _ = version

    app.command(name="commands")(commands_cmd)
    app.command(name="sync")(sync_cmd)
    return app


def main() -> None:
    app = create_app()
    app()


if __name__ == "__main__":
    main()
