from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from dirindex.config import AppConfig


def write_config(path: Path, body: object) -> Path:
    path.write_text(yaml.safe_dump(body), encoding="utf-8")
    return path


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    cfg = AppConfig(
        db_path=tmp_path / "store" / "index.db",
        max_workers=8,
        max_inflight=32,
        chunk_size=4096,
        batch_size=50,
        hash_size_limit=1024,
        include_hidden=True,
        cache_ttl=12.5,
    )
    path = tmp_path / "dirindex.yaml"

    cfg.save(path)

    assert AppConfig.load(path) == cfg


def test_missing_keys_take_defaults(tmp_path: Path) -> None:
    path = write_config(tmp_path / "dirindex.yaml", {"config": {"max_workers": 3}})

    cfg = AppConfig.load(path)

    assert cfg.max_workers == 3
    assert cfg.batch_size == AppConfig().batch_size
    assert cfg.db_path == tmp_path / "dirindex.db"


def test_relative_db_path_resolves_next_to_the_config(tmp_path: Path) -> None:
    path = write_config(tmp_path / "dirindex.yaml", {"config": {"db_path": "data/index.db"}})

    assert AppConfig.load(path).db_path == tmp_path / "data" / "index.db"


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    path = write_config(tmp_path / "dirindex.yaml", {"config": {"max_workers": 2, "colour": "blue"}})

    with pytest.raises(ValueError, match="colour"):
        AppConfig.load(path)


@pytest.mark.parametrize(
    "raw",
    [
        {"max_workers": "four"},
        {"include_hidden": "yes"},
        {"cache_ttl": "soon"},
        {"db_path": 12},
    ],
)
def test_wrong_types_are_rejected(tmp_path: Path, raw: dict[str, object]) -> None:
    path = write_config(tmp_path / "dirindex.yaml", {"config": raw})

    with pytest.raises(TypeError):
        AppConfig.load(path)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        AppConfig.load(tmp_path / "nope.yaml")


def test_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "dirindex.yaml"
    path.write_text("", encoding="utf-8")

    with pytest.raises(ValueError):
        AppConfig.load(path)


def test_config_section_must_be_a_mapping(tmp_path: Path) -> None:
    path = write_config(tmp_path / "dirindex.yaml", {"config": ["not", "a", "mapping"]})

    with pytest.raises(TypeError):
        AppConfig.load(path)


def test_scan_options_use_config_defaults() -> None:
    cfg = AppConfig(include_hidden=True, hash_size_limit=2048)

    options = cfg.scan_options(recurse=False, max_depth=3)

    assert options.recurse is False
    assert options.max_depth == 3
    assert options.include_hidden is True
    assert options.hash_size_limit == 2048
    assert cfg.scan_options(include_hidden=False).include_hidden is False


def test_lock_file_sits_next_to_the_store(tmp_path: Path) -> None:
    cfg = AppConfig(db_path=tmp_path / "index.db")

    assert cfg.lock_file == tmp_path / "index.db.lock"
