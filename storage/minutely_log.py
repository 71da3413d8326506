from __future__ import annotations

import logging
import os
from bisect import bisect_left, insort
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Protocol, Set, Tuple
from urllib.parse import quote, unquote

from pydantic import ValidationError

from models.records import MinutelySample, SensorType
from services.errors import StorageError
from settings import get_settings

logger = logging.getLogger(__name__)

_SUFFIX = ".jsonl"


class MinutelyStore(Protocol):

    def append(self, sample: MinutelySample) -> None: ...

    def query_range(
        self, kiosk_id: str, from_inclusive: datetime, to_exclusive: datetime
    ) -> List[MinutelySample]: ...

    def list_active_kiosk_ids(self) -> Set[str]: ...


class MinutelySampleLog:
    """Append-only sample store with one JSON Lines file per kiosk.

    Each kiosk has its own lock, so writers for one kiosk never hold up
    readers of another. A sample becomes visible only after its line has
    been flushed and fsynced.
    """

    def __init__(self, name: str, root_path: Optional[Path] = None) -> None:
        self.name = name
        self.root_path = root_path
        self._samples: Dict[str, List[MinutelySample]] = {}
        self._identities: Dict[str, Set[Tuple[str, datetime, SensorType]]] = {}
        self._kiosk_locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)
            self._load_existing()

    def append(self, sample: MinutelySample) -> None:
        kiosk_lock = self._lock_for(sample.kiosk_id)
        with kiosk_lock:
            identities = self._identities.setdefault(sample.kiosk_id, set())
            if sample.identity in identities:
                raise StorageError(
                    f"Sample for kiosk {sample.kiosk_id!r} at {sample.timestamp.isoformat()} "
                    f"from {sample.sensor_type.value!r} already exists."
                )
            if self.root_path:
                self._write_line(sample)
            insort(
                self._samples.setdefault(sample.kiosk_id, []),
                sample,
                key=lambda item: item.timestamp,
            )
            identities.add(sample.identity)

    def query_range(
        self, kiosk_id: str, from_inclusive: datetime, to_exclusive: datetime
    ) -> List[MinutelySample]:
        """Return the kiosk's samples in ``[from_inclusive, to_exclusive)``, oldest first."""
        if from_inclusive.tzinfo is None or to_exclusive.tzinfo is None:
            raise ValueError("Range bounds must be timezone-aware.")
        with self._registry_lock:
            kiosk_lock = self._kiosk_locks.get(kiosk_id)
        if kiosk_lock is None:
            return []
        with kiosk_lock:
            samples = self._samples.get(kiosk_id, [])
            start = bisect_left(samples, from_inclusive, key=lambda item: item.timestamp)
            end = bisect_left(samples, to_exclusive, key=lambda item: item.timestamp)
            return list(samples[start:end])

    def list_active_kiosk_ids(self) -> Set[str]:
        with self._registry_lock:
            kiosk_ids = list(self._kiosk_locks)
        return {kiosk_id for kiosk_id in kiosk_ids if self._samples.get(kiosk_id)}

    def _lock_for(self, kiosk_id: str) -> Lock:
        with self._registry_lock:
            lock = self._kiosk_locks.get(kiosk_id)
            if lock is None:
                lock = Lock()
                self._kiosk_locks[kiosk_id] = lock
            return lock

    def _path_for(self, kiosk_id: str) -> Path:
        assert self.root_path is not None
        return self.root_path / f"{quote(kiosk_id, safe='')}{_SUFFIX}"

    def _write_line(self, sample: MinutelySample) -> None:
        path = self._path_for(sample.kiosk_id)
        line = sample.model_dump_json() + "\n"
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            raise StorageError(
                f"Could not persist sample for kiosk {sample.kiosk_id!r}: {exc}"
            ) from exc

    def _load_existing(self) -> None:
        assert self.root_path is not None
        for path in sorted(self.root_path.glob(f"*{_SUFFIX}")):
            kiosk_id = unquote(path.name[: -len(_SUFFIX)])
            samples: List[MinutelySample] = []
            identities: Set[Tuple[str, datetime, SensorType]] = set()
            text = path.read_text(encoding="utf-8")
            if text and not text.endswith("\n"):
                # Interrupted write; the unterminated tail never committed.
                text = text[: text.rfind("\n") + 1]
                path.write_text(text, encoding="utf-8")
            for line_number, line in enumerate(text.splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    sample = MinutelySample.model_validate_json(line)
                except ValidationError:
                    logger.warning(
                        "Skipping unreadable sample line %d in %s",
                        line_number,
                        path.name,
                        extra={"kiosk_id": kiosk_id},
                    )
                    continue
                if sample.identity in identities:
                    continue
                identities.add(sample.identity)
                samples.append(sample)
            samples.sort(key=lambda item: item.timestamp)
            self._samples[kiosk_id] = samples
            self._identities[kiosk_id] = identities
            self._kiosk_locks[kiosk_id] = Lock()


@lru_cache
def build_default_log(
    name: Optional[str] = None,
    root_path: Optional[str] = None,
) -> MinutelySampleLog:
    settings = get_settings()
    log_root = settings.minutely_root_path if root_path is None else root_path
    path = Path(log_root) if log_root else None
    return MinutelySampleLog(name=name or "minutely", root_path=path)
