"""Configuration for the syncstore engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

import pydantic
import yaml

from syncstore.errors import ValidationError

# Effectively "never expires"; matches the largest ttl accepted from clients.
MAX_TTL = 2100000000


@dataclass
class SyncStoreConfig:
    """Tunables for storage, batching, quota and the expiry reaper."""

    default_ttl_seconds: int = MAX_TTL
    batch_ttl_seconds: int = 7200
    max_payload_bytes: int = 2 * 1024 * 1024
    max_post_records: int = 100
    max_batch_records: int = 10000
    quota_bytes: int | None = None
    reaper_chunk_size: int = 1000
    reaper_interval_seconds: float = 60.0
    max_transaction_attempts: int = 5
    retry_backoff_base_ms: int = 10
    busy_timeout_ms: int = 5000
    seed_standard_collections: bool = True


# Coerces option values by field type and rejects values that do not fit.
_CONFIG_ADAPTER = pydantic.TypeAdapter(SyncStoreConfig)


def _field_types() -> dict[str, str]:
    return {f.name: str(f.type) for f in fields(SyncStoreConfig)}


def _coerce(name: str, raw: str) -> Any:
    kind = _field_types()[name]
    if kind.startswith("bool"):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if kind.startswith("int | None"):
        return None if raw.strip().lower() in ("", "none", "null") else int(raw)
    if kind.startswith("int"):
        return int(raw)
    if kind.startswith("float"):
        return float(raw)
    return raw


def config_from_mapping(data: dict[str, Any], base: SyncStoreConfig | None = None) -> SyncStoreConfig:
    """Overlay a mapping of option names onto a config, rejecting unknown keys."""
    known = _field_types()
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValidationError(f"Unknown config option(s): {unknown}")
    values = {f.name: getattr(base or SyncStoreConfig(), f.name) for f in fields(SyncStoreConfig)}
    values.update(data)
    try:
        return _CONFIG_ADAPTER.validate_python(values)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid config: {problems}") from e


def load_config(path: str, base: SyncStoreConfig | None = None) -> SyncStoreConfig:
    """Load a YAML config file.

    The file must contain a mapping; a top-level ``syncstore:`` key is also accepted
    so the options can live in a shared application config.
    """
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path!r} must contain a mapping")
    if set(data) == {"syncstore"}:
        data = data["syncstore"] or {}
    return config_from_mapping(data, base)


def config_from_env(base: SyncStoreConfig | None = None) -> SyncStoreConfig:
    """Apply ``SYNCSTORE_<OPTION>`` environment overrides."""
    overrides: dict[str, Any] = {}
    for name in _field_types():
        raw = os.getenv(f"SYNCSTORE_{name.upper()}")
        if raw is not None:
            try:
                overrides[name] = _coerce(name, raw)
            except ValueError as e:
                raise ValidationError(f"Invalid value for SYNCSTORE_{name.upper()}: {raw!r}") from e
    return config_from_mapping(overrides, base)
