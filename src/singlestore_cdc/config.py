"""Runtime configuration helpers for the SingleStore CDC streaming client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

SSL_MODES = ("disable", "trust", "verify_ca", "verify_full")
SNAPSHOT_MODES = ("initial", "initial_only", "when_needed", "never", "no_data")


@dataclass(frozen=True)
class Settings:
    """Immutable container for service configuration."""

    host: str
    port: int
    user: str
    password: str
    database: str
    table: str
    connect_timeout_ms: int
    ssl_mode: str
    ssl_ca: str
    ssl_cert: str
    ssl_key: str
    driver_parameters: Tuple[Tuple[str, str], ...]
    connector_name: str
    snapshot_mode: str
    populate_internal_id: bool
    poll_interval_seconds: float
    checkpoint_backend: str
    offsets_path: Path
    offsets_fsync: bool
    checkpoint_interval: int
    write_jsonl: bool = False
    jsonl_path: Path = Path("cdc_records.jsonl")

    @property
    def ssl_enabled(self) -> bool:
        return self.ssl_mode != "disable"


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _coerce_choice(value: Optional[str], choices: Tuple[str, ...], default: str) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in choices:
        return normalized
    return default


def _coerce_checkpoint_backend(value: Optional[str]) -> str:
    return _coerce_choice(value, ("memory", "file"), "file")


def _parse_driver_parameters(value: Optional[str]) -> Tuple[Tuple[str, str], ...]:
    """Parse ``key=value;key=value`` driver parameter strings."""
    if not value:
        return ()
    pairs = []
    for entry in value.split(";"):
        if not entry.strip():
            continue
        key, sep, raw = entry.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"invalid driver parameter {entry!r}; expected key=value")
        pairs.append((key.strip(), raw.strip()))
    return tuple(pairs)


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    host = os.getenv("SINGLESTORE_HOST", "localhost")
    port = int(os.getenv("SINGLESTORE_PORT", "3306"))
    user = os.getenv("SINGLESTORE_USER", "root")
    password = os.getenv("SINGLESTORE_PASSWORD", "")
    database = os.getenv("SINGLESTORE_DATABASE", "")
    table = os.getenv("SINGLESTORE_TABLE", "")
    connect_timeout_ms = int(os.getenv("SINGLESTORE_CONNECT_TIMEOUT_MS", "30000"))

    ssl_mode = _coerce_choice(os.getenv("SINGLESTORE_SSL_MODE"), SSL_MODES, "disable")
    ssl_ca = os.getenv("SINGLESTORE_SSL_CA", "").strip()
    ssl_cert = os.getenv("SINGLESTORE_SSL_CERT", "").strip()
    ssl_key = os.getenv("SINGLESTORE_SSL_KEY", "").strip()
    driver_parameters = _parse_driver_parameters(
        os.getenv("SINGLESTORE_DRIVER_PARAMETERS")
    )

    connector_name = os.getenv("CDC_CONNECTOR_NAME", "singlestore-cdc").strip()
    snapshot_mode = _coerce_choice(
        os.getenv("CDC_SNAPSHOT_MODE"), SNAPSHOT_MODES, "initial"
    )
    populate_internal_id = _as_bool(os.getenv("CDC_POPULATE_INTERNAL_ID"), False)
    poll_interval_seconds = float(os.getenv("CDC_POLL_INTERVAL_SECONDS", "1.0"))
    checkpoint_backend = _coerce_checkpoint_backend(
        os.getenv("CDC_CHECKPOINT_BACKEND")
    )
    offsets_path = Path(os.getenv("CDC_OFFSETS_PATH", "cdc_offsets.json"))
    offsets_fsync = _as_bool(os.getenv("CDC_OFFSETS_FSYNC"), False)
    checkpoint_interval = int(os.getenv("CDC_CHECKPOINT_INTERVAL", "100"))

    write_jsonl = _as_bool(os.getenv("WRITE_JSONL"), False)
    jsonl_path = Path(os.getenv("JSONL_PATH", "cdc_records.jsonl"))

    if poll_interval_seconds <= 0:
        raise ValueError("CDC_POLL_INTERVAL_SECONDS must be positive")

    return Settings(
        host=host,
        port=port,
        user=user,
        password=password,
        database=database,
        table=table,
        connect_timeout_ms=connect_timeout_ms,
        ssl_mode=ssl_mode,
        ssl_ca=ssl_ca,
        ssl_cert=ssl_cert,
        ssl_key=ssl_key,
        driver_parameters=driver_parameters,
        connector_name=connector_name or "singlestore-cdc",
        snapshot_mode=snapshot_mode,
        populate_internal_id=populate_internal_id,
        poll_interval_seconds=poll_interval_seconds,
        checkpoint_backend=checkpoint_backend,
        offsets_path=offsets_path,
        offsets_fsync=offsets_fsync,
        checkpoint_interval=max(1, checkpoint_interval),
        write_jsonl=write_jsonl,
        jsonl_path=jsonl_path,
    )
