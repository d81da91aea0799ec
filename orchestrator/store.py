"""In-memory run store: per-run state plus an ordered progress event log."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from core import ProgressEvent, RunRecord, RunState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_run_id() -> str:
    return f"run_{_utcnow().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"


class InMemoryRunStore:
    """Thread-safe store for dispatched runs and their events."""

    def __init__(self) -> None:
        self._runs: Dict[str, RunRecord] = {}
        self._idempotency_keys: Dict[str, str] = {}
        self._lock = Lock()

    def create_or_get(
        self,
        *,
        trigger: str = "manual",
        provider: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """Create a queued run, or return the run already holding ``idempotency_key``."""
        with self._lock:
            if idempotency_key:
                existing = self._idempotency_keys.get(idempotency_key)
                if existing:
                    return existing, False

            run_id = _new_run_id()
            self._runs[run_id] = RunRecord(
                run_id=run_id,
                trigger=trigger,
                provider=provider,
                idempotency_key=idempotency_key,
            )
            if idempotency_key:
                self._idempotency_keys[idempotency_key] = run_id
            return run_id, True

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            record = self._runs.get(run_id)
            return record.model_copy(deep=True) if record else None

    def list_runs(self, limit: int = 20) -> List[RunRecord]:
        with self._lock:
            records = sorted(self._runs.values(), key=lambda r: r.timestamps.created_at, reverse=True)
            return [record.model_copy(deep=True) for record in records[: max(0, limit)]]

    def update_running(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return None
            now = _utcnow()
            record.state = RunState.RUNNING
            record.timestamps.started_at = record.timestamps.started_at or now
            record.timestamps.updated_at = now
            return record.model_copy(deep=True)

    def append_event(self, run_id: str, event: ProgressEvent) -> bool:
        with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return False
            record.events.append(event.model_copy(deep=True))
            episode_id = event.detail.get("episode_id")
            if episode_id:
                record.episode_id = str(episode_id)
            record.timestamps.updated_at = _utcnow()
            return True

    def list_events(self, run_id: str, start: int = 0) -> List[ProgressEvent]:
        with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return []
            return [event.model_copy(deep=True) for event in record.events[max(0, start):]]

    def event_count(self, run_id: str) -> int:
        with self._lock:
            record = self._runs.get(run_id)
            return len(record.events) if record else 0

    def is_finished(self, run_id: str) -> bool:
        with self._lock:
            record = self._runs.get(run_id)
            return record is None or record.state.is_finished

    def update_finished(
        self,
        run_id: str,
        state: RunState,
        *,
        episode_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[RunRecord]:
        with self._lock:
            record = self._runs.get(run_id)
            if not record:
                return None
            now = _utcnow()
            record.state = state
            if episode_id:
                record.episode_id = episode_id
            if error:
                record.error = str(error)
            record.timestamps.completed_at = now
            record.timestamps.updated_at = now
            return record.model_copy(deep=True)
