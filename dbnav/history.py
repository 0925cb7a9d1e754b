from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from pathlib import Path

from dbnav.config import history_path

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


@dataclass(frozen=True)
class HistoryEntry:
    query: str
    success: bool
    database: str
    executed_at: str


class HistoryManager:
    def __init__(
        self,
        path: Path | None = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self._path = path or history_path()
        self._max_entries = max_entries
        self._entries = self._load()

    def _load(self) -> list[HistoryEntry]:
        if not self._path.exists():
            return []
        data = json.loads(self._path.read_text(encoding="utf-8"))
        return [
            HistoryEntry(
                query=item["query"],
                success=bool(item.get("success", True)),
                database=item.get("database", ""),
                executed_at=item.get("executed_at", ""),
            )
            for item in data.get("entries", [])
        ]

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "entries": [
                {
                    "query": entry.query,
                    "success": entry.success,
                    "database": entry.database,
                    "executed_at": entry.executed_at,
                }
                for entry in self._entries
            ]
        }
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def record(self, query: str, success: bool = True, database: str = "") -> None:
        query_text = query.strip()
        if not query_text:
            return
        self._entries.append(
            HistoryEntry(
                query=query_text,
                success=success,
                database=database,
                executed_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            )
        )
        self._entries = self._entries[-self._max_entries :]
        self._save()
        logger.debug("Recorded query in history (success=%s)", success)

    def entries(self) -> list[HistoryEntry]:
        return list(reversed(self._entries))

    def clear(self) -> None:
        self._entries = []
        self._save()
