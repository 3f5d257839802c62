"""CLI helpers for config resolution and opening the store."""

from __future__ import annotations

import os
from dataclasses import replace

from syncstore.config import SyncStoreConfig, config_from_env, load_config
from syncstore.storage import StorageTarget, SyncStorage, open_storage, parse_storage_target
from syncstore.types import Tenant


def resolve_storage_binding() -> tuple[str | None, str | None]:
    """Return (db_path, storage_uri) from CLI state."""
    from syncstore.cli import state

    if state.storage_uri:
        return None, state.storage_uri
    return state.db, None


def resolve_target() -> StorageTarget:
    db_path, storage_uri = resolve_storage_binding()
    return parse_storage_target(db_path=db_path, storage_uri=storage_uri)


def resolve_config() -> SyncStoreConfig:
    """Config file (``--config``) first, then ``SYNCSTORE_*`` environment overrides."""
    from syncstore.cli import state

    base = load_config(state.config) if state.config else None
    return config_from_env(base)


def open_store(*, create: bool = False, seed: bool | None = None) -> SyncStorage:
    """Open the store selected by the global CLI options.

    Unless ``create`` is set, a missing database file is an error rather than
    being created empty. ``seed`` overrides ``seed_standard_collections``.
    """
    target = resolve_target()
    if not create and target.db_path != ":memory:" and not os.path.exists(target.db_path):
        raise FileNotFoundError(f"Database not found: {target.db_path}")
    config = resolve_config()
    if seed is not None:
        config = replace(config, seed_standard_collections=seed)
    db_path, storage_uri = resolve_storage_binding()
    return open_storage(db_path, storage_uri=storage_uri, config=config)


def tenant_from_options(uid: str, kid: str) -> Tenant:
    return Tenant(fxa_uid=uid, fxa_kid=kid)
