"""Command line runtime for streaming SingleStore change records."""

from __future__ import annotations

import argparse
import base64
import json
import logging
import signal
import sys
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Optional, TextIO

from .cdc import ChangeRecord, StreamingError, build_streaming_service
from .config import load_settings
from .db import ObserveQueryError

logger = logging.getLogger(__name__)


def _json_default(value: object) -> object:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class JsonlRecordSink:
    """Writes each change record as one JSON line to a file or stream."""

    def __init__(self, path: Optional[Path] = None, stream: Optional[TextIO] = None) -> None:
        self._path = path
        self._stream = stream if stream is not None else sys.stdout

    def __call__(self, record: ChangeRecord) -> None:
        line = json.dumps(record.to_dict(), default=_json_default, ensure_ascii=False)
        if self._path is not None:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        else:
            self._stream.write(line + "\n")
            self._stream.flush()
        logger.debug("change record emitted: %s", line)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SingleStore OBSERVE change stream")
    parser.add_argument(
        "--reset-offsets",
        action="store_true",
        help="Forget the stored offsets for the configured connector and exit",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entrypoint used by both python -m and the console script hook."""
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )
    args = _build_parser().parse_args(argv)
    try:
        settings = load_settings()
        sink = JsonlRecordSink(settings.jsonl_path if settings.write_jsonl else None)
        service = build_streaming_service(settings, sink=sink)
    except ValueError as exc:
        logger.error("invalid configuration: %s", exc)
        return 1

    if args.reset_offsets:
        service.reset_offsets(force=True)
        logger.info("offsets for %s cleared", settings.connector_name)
        return 0

    def _request_stop(signum, _frame) -> None:
        logger.info("received signal %s; stopping stream", signum)
        service.stop()

    previous = {
        signum: signal.signal(signum, _request_stop)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        service.run()
    except StreamingError as exc:
        logger.error("stream for %s failed: %s", settings.connector_name, exc)
        return 1
    except ObserveQueryError as exc:
        logger.error(
            "stream for %s could not start: %s Error code: %s; SQLSTATE: %s.",
            settings.connector_name,
            exc.message,
            exc.code,
            exc.sqlstate,
        )
        return 1
    except ValueError as exc:
        logger.error("stream for %s rejected: %s", settings.connector_name, exc)
        return 1
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    logger.info("stream for %s stopped", settings.connector_name)
    return 0
