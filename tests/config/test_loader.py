from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from inventory_sync.config import ConfigLocator, ConfigRepository, SyncConfig
from inventory_sync.config.loader import home_directory


def test_config_locator_uses_env_and_creates_directories(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("INVENTORY_SYNC_HOME", str(tmp_path))
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    assert locator.config_path() == tmp_path.resolve() / "data" / "sync_config.yaml"
    for path in (locator.data_dir, locator.outputs_dir, locator.logs_dir):
        assert path.exists()


def test_missing_config_writes_defaults(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load()
    path = temp_config_repository.locator.config_path()
    assert path.exists()
    assert config == SyncConfig()
    assert yaml.safe_load(path.read_text(encoding="utf-8"))["source"]["per_page"] == 100


def test_config_roundtrip(temp_config_repository: ConfigRepository) -> None:
    config = SyncConfig.model_validate(
        {"source": {"base_url": "https://api.test", "per_page": 50}, "destination": {"batch_size": 25}}
    )
    temp_config_repository.save(config)
    fresh = ConfigRepository(temp_config_repository.locator)
    loaded = fresh.load()
    assert loaded.source.per_page == 50
    assert loaded.destination.batch_size == 25
    assert loaded == config


def test_explicit_json_config(tmp_path: Path, temp_config_repository: ConfigRepository) -> None:
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"images": {"max_images": 2}}), encoding="utf-8")
    assert temp_config_repository.load(path).images.max_images == 2


def test_explicit_config_errors(tmp_path: Path, temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(FileNotFoundError):
        temp_config_repository.load(tmp_path / "missing.yaml")
    bad = tmp_path / "config.toml"
    bad.write_text("x = 1", encoding="utf-8")
    with pytest.raises(ValueError):
        temp_config_repository.load(bad)
    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        temp_config_repository.load(scalar)


def test_resolve_outputs_anchors_at_project_root(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.resolve_outputs(SyncConfig())
    root = temp_config_repository.locator.project_root
    assert config.output.raw_path == (root / "data/outputs/inventory.raw.ndjson").resolve()


def test_unparseable_config_raises_value_error(tmp_path: Path, temp_config_repository: ConfigRepository) -> None:
    broken = tmp_path / "broken.yaml"
    broken.write_text("source: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Cannot parse"):
        temp_config_repository.load(broken)


def test_explicit_root_wins_over_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INVENTORY_SYNC_HOME", str(tmp_path / "env-home"))
    assert home_directory(tmp_path / "explicit") == (tmp_path / "explicit").resolve()
    assert home_directory() == (tmp_path / "env-home").resolve()
