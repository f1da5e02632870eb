"""Persisted relay state (last change, trigger and series)."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from .models.relay_state import RelayStateSnapshot

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def _parse_timestamp(raw: object) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class RelayStateStore:
    """Holds the single `RelayStateSnapshot` and mirrors it to a JSON file.

    The snapshot is replaced as a whole on every change and written to disk
    before `record_relay_change` returns. A missing or unreadable file means
    an empty snapshot. `path=None` keeps the store in memory only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._snapshot = RelayStateSnapshot()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def snapshot(self) -> RelayStateSnapshot:
        return self._snapshot

    def record_relay_change(
        self, state: bool, trigger: str | None, series: str | None
    ) -> RelayStateSnapshot:
        self._snapshot = RelayStateSnapshot(
            last_state=bool(state),
            last_trigger=_clean(trigger),
            last_series=_clean(series),
            last_updated_utc=datetime.now(timezone.utc),
        )
        self._save_state()
        return self._snapshot

    def _save_state(self) -> None:
        """Persist the snapshot to disk."""
        if self._path is None:
            return
        snap = self._snapshot
        data = {
            "last_state": snap.last_state,
            "last_trigger": snap.last_trigger,
            "last_series": snap.last_series,
            "last_updated_utc": (
                snap.last_updated_utc.isoformat() if snap.last_updated_utc else None
            ),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, indent=2))
        except Exception:
            logger.exception("Failed to save relay state to %s", self._path)

    def load_state(self) -> RelayStateSnapshot:
        """Load the persisted snapshot from disk (empty on any problem)."""
        self._snapshot = RelayStateSnapshot()
        if self._path is None or not self._path.exists():
            return self._snapshot
        try:
            data = json.loads(self._path.read_text())
            if not isinstance(data, dict):
                raise ValueError("state file does not contain an object")
            last_state = data.get("last_state")
            self._snapshot = RelayStateSnapshot(
                last_state=last_state if isinstance(last_state, bool) else None,
                last_trigger=_clean(data.get("last_trigger")),
                last_series=_clean(data.get("last_series")),
                last_updated_utc=_parse_timestamp(data.get("last_updated_utc")),
            )
            logger.info("Loaded relay state from %s", self._path)
        except Exception:
            logger.warning(
                "Unable to read %s; starting with an empty state",
                self._path,
                exc_info=True,
            )
            self._snapshot = RelayStateSnapshot()
        return self._snapshot
