"""Test session configuration.

Loads the project `.env` so integration tests can read `SINGLESTORE_*`
settings, and provides a settings factory for unit tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv

from singlestore_cdc.config import Settings


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # Load once per test session; no error if .env is absent.
    load_dotenv()


def build_settings(tmp_path: Path, **overrides) -> Settings:
    base = {
        "host": "localhost",
        "port": 3306,
        "user": "root",
        "password": "secret",
        "database": "inventory",
        "table": "orders",
        "connect_timeout_ms": 30000,
        "ssl_mode": "disable",
        "ssl_ca": "",
        "ssl_cert": "",
        "ssl_key": "",
        "driver_parameters": (),
        "connector_name": "orders-connector",
        "snapshot_mode": "initial",
        "populate_internal_id": False,
        "poll_interval_seconds": 0.01,
        "checkpoint_backend": "file",
        "offsets_path": tmp_path / "offsets.json",
        "offsets_fsync": False,
        "checkpoint_interval": 1,
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture()
def settings_factory(tmp_path):
    def _factory(**overrides) -> Settings:
        return build_settings(tmp_path, **overrides)

    return _factory
