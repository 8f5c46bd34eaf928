from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path

import pytest
import structlog

from registrar import plugins
from registrar.commands import Command
from registrar.registrar import CommandRegistrar
from registrar.settings import RegistrarSettings
from tests.fakes import APP_ID, FakePlatformClient
from tests.plugin_fixtures import command_entrypoint, install_entrypoints


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def _reset_plugin_state() -> Iterator[None]:
    plugins.reset_plugin_state()
    yield
    plugins.reset_plugin_state()


@pytest.fixture
def settings() -> RegistrarSettings:
    return RegistrarSettings(
        application_id=APP_ID,
        elevated_permissions={"MODERATE": ["R1"], "ADMIN": ["R2", "R1"]},
    )


@pytest.fixture
def fake_client() -> FakePlatformClient:
    return FakePlatformClient()


@pytest.fixture
def commands_dir(tmp_path: Path) -> Path:
    path = tmp_path / "commands"
    path.mkdir()
    return path


@pytest.fixture
def make_registrar(
    monkeypatch, commands_dir: Path, settings: RegistrarSettings, fake_client
) -> Callable[..., Awaitable[CommandRegistrar]]:
    async def _factory(
        *commands: type[Command],
        registrar_settings: RegistrarSettings | None = None,
    ) -> CommandRegistrar:
        install_entrypoints(
            monkeypatch,
            [command_entrypoint(cls.__name__.lower(), cls) for cls in commands],
        )
        registrar = CommandRegistrar(
            registrar_settings or settings,
            fake_client,
            commands_dir=commands_dir,
        )
        await registrar.scan()
        return registrar

    return _factory
