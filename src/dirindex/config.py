from dataclasses import dataclass, fields
from pathlib import Path
from typing import NoReturn, TypedDict, cast

import yaml

from .models import HASH_SIZE_LIMIT, ScanOptions


class RawAppConfig(TypedDict, total=False):
    db_path: str
    max_workers: int
    max_inflight: int
    chunk_size: int
    batch_size: int
    hash_size_limit: int
    hash_algorithm: str
    include_hidden: bool
    cache_ttl: float


class RawConfigFile(TypedDict):
    config: RawAppConfig


CONFIG_FILENAME: Path = Path("dirindex.yaml")


def type_error(value: object) -> NoReturn:
    raise TypeError(f"Unexpected value of wrong type: {value!r}")


@dataclass(slots=True)
class AppConfig:
    db_path: Path = Path("dirindex.db")
    max_workers: int = 0
    max_inflight: int = 256
    chunk_size: int = 1024 * 1024
    batch_size: int = 500
    hash_size_limit: int = HASH_SIZE_LIMIT
    hash_algorithm: str = "md5"
    include_hidden: bool = False
    cache_ttl: float = 300.0

    @staticmethod
    def load(path: Path = CONFIG_FILENAME) -> "AppConfig":
        if not path.exists():
            raise FileNotFoundError("Missing config file. Run dirindex init first.")

        with path.open("r", encoding="UTF-8") as f:
            raw_loaded_obj: object | None = cast(object, yaml.safe_load(f))

        if not raw_loaded_obj:
            raise ValueError("Config file is empty or invalid YAML.")

        if not isinstance(raw_loaded_obj, dict):
            type_error(raw_loaded_obj)

        raw_dict: dict[str, object] = cast(dict[str, object], raw_loaded_obj)

        cfg_raw: object | None = raw_dict.get("config")
        if not isinstance(cfg_raw, dict):
            type_error(cfg_raw)

        cfg: RawAppConfig = cast(RawAppConfig, cast(object, cfg_raw))
        return AppConfig.from_raw(cfg, base_dir=path.parent)

    @staticmethod
    def from_raw(cfg: RawAppConfig, base_dir: Path = Path(".")) -> "AppConfig":
        defaults: AppConfig = AppConfig()
        known: set[str] = {f.name for f in fields(AppConfig)}

        unknown: set[str] = set(cfg) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        for key, expected in (
            ("max_workers", int),
            ("max_inflight", int),
            ("chunk_size", int),
            ("batch_size", int),
            ("hash_size_limit", int),
            ("hash_algorithm", str),
            ("include_hidden", bool),
            ("db_path", str),
        ):
            value: object | None = cfg.get(key)
            if value is not None and not isinstance(value, expected):
                type_error(value)

        cache_ttl: object = cfg.get("cache_ttl", defaults.cache_ttl)
        if not isinstance(cache_ttl, (int, float)) or isinstance(cache_ttl, bool):
            type_error(cache_ttl)

        db_path: Path = Path(cfg.get("db_path", str(defaults.db_path)))
        if not db_path.is_absolute():
            db_path = base_dir / db_path

        return AppConfig(
            db_path=db_path,
            max_workers=cfg.get("max_workers", defaults.max_workers),
            max_inflight=cfg.get("max_inflight", defaults.max_inflight),
            chunk_size=cfg.get("chunk_size", defaults.chunk_size),
            batch_size=cfg.get("batch_size", defaults.batch_size),
            hash_size_limit=cfg.get("hash_size_limit", defaults.hash_size_limit),
            hash_algorithm=cfg.get("hash_algorithm", defaults.hash_algorithm),
            include_hidden=cfg.get("include_hidden", defaults.include_hidden),
            cache_ttl=float(cache_ttl),
        )

    def save(self, path: Path = CONFIG_FILENAME) -> None:
        raw: RawConfigFile = {"config": self.to_raw()}
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(raw, f, sort_keys=False)

    def to_raw(self) -> RawAppConfig:
        return {
            "db_path": str(self.db_path),
            "max_workers": self.max_workers,
            "max_inflight": self.max_inflight,
            "chunk_size": self.chunk_size,
            "batch_size": self.batch_size,
            "hash_size_limit": self.hash_size_limit,
            "hash_algorithm": self.hash_algorithm,
            "include_hidden": self.include_hidden,
            "cache_ttl": self.cache_ttl,
        }

    @property
    def lock_file(self) -> Path:
        return self.db_path.with_name(self.db_path.name + ".lock")

    def scan_options(
        self, *, recurse: bool = True, max_depth: int | None = None, include_hidden: bool | None = None
    ) -> ScanOptions:
        return ScanOptions(
            recurse=recurse,
            max_depth=max_depth,
            include_hidden=self.include_hidden if include_hidden is None else include_hidden,
            hash_size_limit=self.hash_size_limit,
        )
