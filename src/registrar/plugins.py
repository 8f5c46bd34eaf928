"""Command plugin discovery.

Plugins come from two places: ``*.py`` files in a commands directory, and
installed distributions advertising the ``registrar.commands`` entry point
group. Either way the plugin resolves to a factory ``create_command(deps)``
returning a :class:`~registrar.commands.Command`.
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import re
import sys
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from importlib.metadata import EntryPoint, entry_points
from pathlib import Path
from types import ModuleType

import anyio
import anyio.to_thread

from .commands import (
    Command,
    CommandDeps,
    CommandTable,
    CommandTableBuilder,
    LoadError,
)
from .logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "COMMAND_GROUP",
    "FACTORY_NAME",
    "PluginLoadError",
    "PluginSource",
    "discover_directory",
    "discover_entrypoints",
    "entrypoint_distribution_name",
    "get_load_errors",
    "is_entrypoint_allowed",
    "load_table",
    "normalize_allowlist",
    "reset_plugin_state",
]

COMMAND_GROUP = "registrar.commands"
FACTORY_NAME = "create_command"

CommandFactory = Callable[[CommandDeps], Command | Awaitable[Command]]

_CANONICAL_RE = re.compile(r"[-_.]+")


@dataclass(frozen=True, slots=True)
class PluginLoadError:
    source: str
    error: str
    distribution: str | None = None


@dataclass(frozen=True, slots=True)
class PluginSource:
    """One discoverable plugin: a file in the commands directory or an entry point."""

    label: str
    path: Path | None = None
    entrypoint: EntryPoint | None = None

    def resolve_factory(self) -> CommandFactory:
        if self.entrypoint is not None:
            loaded = self.entrypoint.load()
            if isinstance(loaded, ModuleType):
                return _factory_from_module(loaded, self.label)
            if not callable(loaded):
                raise LoadError(f"{self.label}: entry point is not callable")
            return loaded
        assert self.path is not None
        return _factory_from_module(_import_path(self.path), self.label)


_LOAD_ERRORS: list[PluginLoadError] = []


def get_load_errors() -> tuple[PluginLoadError, ...]:
    return tuple(_LOAD_ERRORS)


def reset_plugin_state() -> None:
    _LOAD_ERRORS.clear()


def _record_error(source: PluginSource, error: str) -> None:
    distribution = (
        entrypoint_distribution_name(source.entrypoint)
        if source.entrypoint is not None
        else None
    )
    _LOAD_ERRORS.append(
        PluginLoadError(source=source.label, error=error, distribution=distribution)
    )


def _canonicalize_distribution(name: str) -> str:
    return _CANONICAL_RE.sub("-", name).lower()


def normalize_allowlist(allowlist: Iterable[str] | None) -> set[str] | None:
    if allowlist is None:
        return None
    cleaned = {
        _canonicalize_distribution(item.strip()) for item in allowlist if item.strip()
    }
    return cleaned or None


def entrypoint_distribution_name(ep: EntryPoint) -> str | None:
    dist = getattr(ep, "dist", None)
    if dist is None:
        return None
    name = getattr(dist, "name", None)
    if name is None:
        metadata = getattr(dist, "metadata", None)
        if metadata is not None:
            name = metadata.get("Name")
    return name


def is_entrypoint_allowed(ep: EntryPoint, allowlist: set[str] | None) -> bool:
    if allowlist is None:
        return True
    dist_name = entrypoint_distribution_name(ep)
    if dist_name is None:
        return False
    return _canonicalize_distribution(dist_name) in allowlist


def _select_entrypoints(group: str) -> list[EntryPoint]:
    eps = entry_points()
    if hasattr(eps, "select"):
        return list(eps.select(group=group))
    return list(eps.get(group, []))


def discover_entrypoints(
    *, allowlist: Iterable[str] | None = None
) -> list[PluginSource]:
    allowed = normalize_allowlist(allowlist)
    by_name: dict[str, list[EntryPoint]] = {}
    for ep in _select_entrypoints(COMMAND_GROUP):
        if not is_entrypoint_allowed(ep, allowed):
            continue
        by_name.setdefault(ep.name, []).append(ep)

    sources: list[PluginSource] = []
    for name in sorted(by_name):
        eps = by_name[name]
        if len(eps) > 1:
            dists = ", ".join(
                sorted(entrypoint_distribution_name(ep) or "unknown" for ep in eps)
            )
            message = f"duplicate plugin id {name!r} from {dists}"
            for ep in eps:
                _record_error(
                    PluginSource(label=f"entrypoint:{name}", entrypoint=ep), message
                )
            raise LoadError(message)
        sources.append(PluginSource(label=f"entrypoint:{name}", entrypoint=eps[0]))
    return sources


def discover_directory(commands_dir: Path) -> list[PluginSource]:
    try:
        entries = sorted(commands_dir.iterdir())
    except OSError as exc:
        raise LoadError(f"cannot enumerate commands in {commands_dir}: {exc}") from exc
    return [
        PluginSource(label=path.name, path=path)
        for path in entries
        if path.suffix == ".py" and not path.name.startswith("_") and path.is_file()
    ]


def _import_path(path: Path) -> ModuleType:
    digest = hashlib.sha1(str(path.resolve()).encode()).hexdigest()[:10]
    module_name = f"registrar_plugin_{path.stem}_{digest}"
    cached = sys.modules.get(module_name)
    if cached is not None:
        return cached
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise LoadError(f"{path.name}: not an importable module")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def _factory_from_module(module: ModuleType, label: str) -> CommandFactory:
    factory = getattr(module, FACTORY_NAME, None)
    if factory is None or not callable(factory):
        raise LoadError(f"{label}: missing `{FACTORY_NAME}(deps)` factory")
    return factory


async def _instantiate(source: PluginSource, deps: CommandDeps) -> Command:
    factory = await anyio.to_thread.run_sync(source.resolve_factory)
    command = factory(deps)
    if inspect.isawaitable(command):
        command = await command
    if not isinstance(command, Command):
        raise LoadError(
            f"{source.label}: factory returned {type(command).__name__}, expected Command"
        )
    return command


async def load_table(
    sources: list[PluginSource], deps: CommandDeps
) -> CommandTable:
    """Instantiate every source concurrently and build the frozen table.

    Raises ``LoadError`` for the first failing source (all failures are kept
    in ``get_load_errors()``) and ``DuplicateCommandError`` when two plugins
    declare the same name.
    """
    results: list[Command | None] = [None] * len(sources)
    failures: list[tuple[int, Exception]] = []

    async def _load(index: int, source: PluginSource) -> None:
        try:
            results[index] = await _instantiate(source, deps)
        except Exception as exc:
            failures.append((index, exc))

    async with anyio.create_task_group() as tg:
        for index, source in enumerate(sources):
            tg.start_soon(_load, index, source)

    logger.debug(
        "scan.instantiated",
        count=len(sources) - len(failures),
        failed=len(failures),
    )

    if failures:
        failures.sort(key=lambda item: item[0])
        for index, exc in failures:
            source = sources[index]
            _record_error(source, f"{exc.__class__.__name__}: {exc}")
            logger.error(
                "scan.plugin_failed",
                source=source.label,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
        index, exc = failures[0]
        source = sources[index]
        if isinstance(exc, LoadError):
            message = str(exc)
        else:
            message = f"{source.label}: {exc.__class__.__name__}: {exc}"
        if len(failures) > 1:
            message = f"{message} (and {len(failures) - 1} more failing plugins)"
        raise LoadError(message) from exc

    builder = CommandTableBuilder()
    for source, command in zip(sources, results, strict=True):
        assert command is not None
        try:
            builder.add(command, source=source.label)
        except LoadError as exc:
            _record_error(source, str(exc))
            raise
    return builder.freeze()
