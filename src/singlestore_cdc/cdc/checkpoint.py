"""Offset store implementations for OBSERVE resume positions."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock, RLock
from typing import Dict, Optional

from .offsets import OffsetContext

logger = logging.getLogger(__name__)


def _check_reset(
    current: Optional[OffsetContext],
    expected: Optional[OffsetContext],
    force: bool,
) -> None:
    if force:
        return
    if current is None:
        if expected is not None:
            raise ValueError("stored offsets missing; supply force=True to reset")
        return
    if expected is None or expected.offsets() != current.offsets():
        raise ValueError("unexpected stored offsets")


class InMemoryCheckpointStore:
    """Volatile store keeping offset contexts in-memory."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._contexts: Dict[str, Dict[str, object]] = {}

    def load(self, name: str) -> Optional[OffsetContext]:
        with self._lock:
            data = self._contexts.get(name)
        return OffsetContext.from_dict(data) if data is not None else None

    def save(self, name: str, context: OffsetContext) -> None:
        with self._lock:
            self._contexts[name] = context.to_dict()

    def reset(
        self,
        name: str,
        *,
        expected: Optional[OffsetContext] = None,
        force: bool = False,
    ) -> None:
        """Forget the stored offsets so the next stream starts from a snapshot."""
        with self._lock:
            data = self._contexts.get(name)
            current = OffsetContext.from_dict(data) if data is not None else None
            _check_reset(current, expected, force)
            self._contexts.pop(name, None)


class PersistentCheckpointStore:
    """Durable store that persists offset contexts to a JSON file atomically."""

    def __init__(self, path: Path | str, *, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        self._lock = RLock()
        self._contexts: Dict[str, Dict[str, object]] = {}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load_from_disk()

    def load(self, name: str) -> Optional[OffsetContext]:
        with self._lock:
            data = self._contexts.get(name)
        return OffsetContext.from_dict(data) if data is not None else None

    def save(self, name: str, context: OffsetContext) -> None:
        with self._lock:
            data = context.to_dict()
            if self._contexts.get(name) == data:
                return
            self._contexts[name] = data
            self._write_locked()

    def reset(
        self,
        name: str,
        *,
        expected: Optional[OffsetContext] = None,
        force: bool = False,
    ) -> None:
        with self._lock:
            data = self._contexts.get(name)
            current = OffsetContext.from_dict(data) if data is not None else None
            _check_reset(current, expected, force)
            if current is None:
                return
            self._contexts.pop(name, None)
            self._write_locked()

    def _load_from_disk(self) -> None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("cannot read offsets file %s: %s", self._path, exc)
            return
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            logger.warning("offsets file %s is not valid JSON: %s", self._path, exc)
            return
        if not isinstance(data, dict):
            logger.warning("offsets file %s does not hold a mapping; ignoring", self._path)
            return
        contexts: Dict[str, Dict[str, object]] = {}
        for connector, entry in data.items():
            if not isinstance(entry, dict):
                logger.warning("ignoring offsets for %s: not a mapping", connector)
                continue
            try:
                OffsetContext.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("ignoring offsets for %s: %s", connector, exc)
                continue
            contexts[str(connector)] = entry
        with self._lock:
            self._contexts = contexts

    def _write_locked(self) -> None:
        payload = json.dumps(self._contexts, sort_keys=True)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            delete=False,
        )
        try:
            with handle:
                handle.write(payload)
                handle.flush()
                if self._fsync:
                    os.fsync(handle.fileno())
            os.replace(handle.name, self._path)
        except OSError as exc:
            logger.error("failed to persist offsets file %s: %s", self._path, exc)
            Path(handle.name).unlink(missing_ok=True)
            raise
        if self._fsync:
            self._fsync_directory()

    def _fsync_directory(self) -> None:
        # Flushes the directory entry written by os.replace.
        dir_fd = os.open(self._path.parent, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


__all__ = ["InMemoryCheckpointStore", "PersistentCheckpointStore"]
