"""Locate, read and write the sync configuration file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml

from .models import SyncConfig

CONFIG_FILENAME = "sync_config.yaml"
HOME_ENV_VAR = "INVENTORY_SYNC_HOME"


def _dump_yaml(payload: dict[str, Any]) -> str:
    return yaml.safe_dump(payload, allow_unicode=True, sort_keys=False)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


# suffix -> (parse, render)
CODECS: dict[str, tuple[Callable[[str], Any], Callable[[dict[str, Any]], str]]] = {
    ".yaml": (yaml.safe_load, _dump_yaml),
    ".yml": (yaml.safe_load, _dump_yaml),
    ".json": (json.loads, _dump_json),
}
CONFIG_EXTENSIONS = tuple(CODECS)


def home_directory(explicit: Path | None = None) -> Path:
    """Project home: ``explicit``, else ``$INVENTORY_SYNC_HOME``, else the cwd."""

    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env_root = os.environ.get(HOME_ENV_VAR)
    return (Path(env_root).expanduser() if env_root else Path.cwd()).resolve()


def _codec(path: Path):
    try:
        return CODECS[path.suffix.lower()]
    except KeyError:
        raise ValueError(f"Unsupported configuration format: {path.suffix or path.name}") from None


def read_config_file(path: Path) -> SyncConfig:
    parse, _render = _codec(path)
    try:
        payload = parse(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot parse {path}: {exc}") from exc
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return SyncConfig.model_validate(payload)


def write_config_file(config: SyncConfig, path: Path) -> Path:
    _parse, render = _codec(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render(config.model_dump(mode="json")), encoding="utf-8")
    return path


@dataclass(slots=True)
class ConfigLocator:
    """Project home layout: ``data/`` holds config and snapshots, ``logs/`` the logs."""

    project_root: Path | None = None

    def __post_init__(self) -> None:
        self.project_root = home_directory(self.project_root)
        self.ensure_directories()

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def outputs_dir(self) -> Path:
        return self.data_dir / "outputs"

    @property
    def logs_dir(self) -> Path:
        return self.project_root / "logs"

    def ensure_directories(self) -> None:
        for directory in (self.outputs_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILENAME


class ConfigRepository:
    """Load and save :class:`SyncConfig`; the default file is cached once read."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cache: SyncConfig | None = None

    def load(self, path: Path | None = None) -> SyncConfig:
        """Load ``path`` (or the default file); defaults are written out when absent."""

        if path is not None:
            if not path.exists():
                raise FileNotFoundError(f"Configuration not found: {path}")
            return read_config_file(path)
        if self._cache is None:
            default_path = self.locator.config_path()
            if default_path.exists():
                self._cache = read_config_file(default_path)
            else:
                self.save(SyncConfig())
        return self._cache

    def save(self, config: SyncConfig, path: Path | None = None) -> Path:
        target = write_config_file(config, path or self.locator.config_path())
        if path is None:
            self._cache = config
        return target

    def resolve_outputs(self, config: SyncConfig) -> SyncConfig:
        """Anchor relative output paths at the project root."""

        output = config.output.resolved(self.locator.project_root)
        return config.model_copy(update={"output": output})


__all__ = [
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "HOME_ENV_VAR",
    "home_directory",
    "read_config_file",
    "write_config_file",
]
