"""provider-rbac entrypoint."""

from __future__ import annotations

import logging

from .controller import Controller
from .db import assert_tables_exist, build_engine, build_sessionmaker
from .events import LoggingEventRecorder
from .reconciler import Reconciler, ReconcilerConfig
from .schema import REQUIRED_TABLES
from .settings import Settings, get_settings
from .store import SqlObjectStore


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    )


def build_store(settings: Settings) -> SqlObjectStore:
    engine = build_engine(settings)
    assert_tables_exist(engine, REQUIRED_TABLES)
    return SqlObjectStore(build_sessionmaker(engine))


def build_reconciler(settings: Settings, store: SqlObjectStore) -> Reconciler:
    config = ReconcilerConfig.from_settings(
        settings,
        store=store,
        recorder=LoggingEventRecorder(),
    )
    return Reconciler(config)


def main() -> int:
    settings = get_settings()
    _setup_logging(settings.log_level)

    store = build_store(settings)
    Controller(
        reconciler=build_reconciler(settings, store),
        store=store,
        settings=settings,
    ).start()
    return 0


__all__ = ["build_reconciler", "build_store", "main"]
