from __future__ import annotations

import json
import os
from datetime import date
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Protocol, Tuple

from models.records import DailyStatistic
from services.errors import StorageError
from settings import get_settings


class DailyStore(Protocol):

    def upsert(self, statistic: DailyStatistic) -> None: ...

    def get_by_kiosk(self, kiosk_id: str) -> List[DailyStatistic]: ...

    def get_all(self) -> Dict[str, List[DailyStatistic]]: ...


class DailyStatisticTable:

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[Tuple[str, date], DailyStatistic] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def upsert(self, statistic: DailyStatistic) -> None:
        """Insert or replace the record for ``(kiosk_id, date)``."""
        with self._lock:
            previous = self._items.get(statistic.key)
            self._items[statistic.key] = statistic
            try:
                self._persist()
            except OSError as exc:
                if previous is None:
                    del self._items[statistic.key]
                else:
                    self._items[statistic.key] = previous
                raise StorageError(
                    f"Could not persist daily statistic for kiosk {statistic.kiosk_id!r} "
                    f"on {statistic.date.isoformat()}: {exc}"
                ) from exc

    def get_by_kiosk(self, kiosk_id: str) -> List[DailyStatistic]:
        with self._lock:
            items = [item for key, item in self._items.items() if key[0] == kiosk_id]
        return sorted(items, key=lambda item: item.date)

    def get_all(self) -> Dict[str, List[DailyStatistic]]:
        """Group every record by kiosk; kiosks without records never appear."""
        with self._lock:
            items = list(self._items.values())
        grouped: Dict[str, List[DailyStatistic]] = {}
        for item in sorted(items, key=lambda item: (item.kiosk_id, item.date)):
            grouped.setdefault(item.kiosk_id, []).append(item)
        return grouped

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = [
            item.model_dump(mode="json")
            for _, item in sorted(self._items.items(), key=lambda pair: pair[0])
        ]
        scratch = self.persistence_path.with_name(self.persistence_path.name + ".tmp")
        scratch.write_text(json.dumps(payload, indent=2, sort_keys=True))
        os.replace(scratch, self.persistence_path)

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = []

        for payload in data:
            item = DailyStatistic.model_validate(payload)
            self._items[item.key] = item


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> DailyStatisticTable:
    settings = get_settings()
    table_path = settings.daily_persistence_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return DailyStatisticTable(name=name or "daily_statistics", persistence_path=persistence)
