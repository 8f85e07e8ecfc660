"""Per-(source, category) accuracy records updated incrementally as markets resolve."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Iterable, Iterator, Protocol

import structlog

from predconsensus.accuracy.brier import is_correct, running_mean
from predconsensus.errors import NotFound
from predconsensus.models import AccuracyRecord, PredictionScore

log = structlog.get_logger(__name__)

RecordKey = tuple[str, str | None]


def _order(key: RecordKey) -> tuple[str, int, str]:
    # Global (None) sorts after any category for the same source
    source_id, category_id = key
    return (source_id, 1 if category_id is None else 0, category_id or "")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Registry(Protocol):
    """What the tracker needs to validate score references."""

    def has_source(self, source_id: str) -> bool: ...
    def has_category(self, category_id: str) -> bool: ...


class AccuracyStore:
    """Keyed AccuracyRecord store with one exclusive update transaction per key.

    Two different (source, category) keys update fully in parallel. A transaction over
    several keys takes their locks in a fixed order and publishes all staged records at once.
    """

    def __init__(self) -> None:
        self._records: dict[RecordKey, AccuracyRecord] = {}
        self._locks: dict[RecordKey, Lock] = {}
        self._scored: set[tuple[str, str]] = set()
        self._guard = Lock()

    def _lock_for(self, key: RecordKey) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            return lock

    @contextmanager
    def transaction(self, *keys: RecordKey) -> Iterator[dict[RecordKey, AccuracyRecord]]:
        """Lock the keys, yield a staging dict, commit staged records on clean exit."""
        ordered = sorted(set(keys), key=_order)
        locks = [self._lock_for(k) for k in ordered]
        for lock in locks:
            lock.acquire()
        try:
            staged: dict[RecordKey, AccuracyRecord] = {}
            yield staged
            with self._guard:
                self._records.update(staged)
        finally:
            for lock in reversed(locks):
                lock.release()

    def get(self, key: RecordKey) -> AccuracyRecord | None:
        with self._guard:
            return self._records.get(key)

    def put(self, record: AccuracyRecord) -> None:
        with self.transaction(record.key) as staged:
            staged[record.key] = record

    def snapshot(self) -> dict[RecordKey, AccuracyRecord]:
        with self._guard:
            return dict(self._records)

    def claim_score(self, source_market_id: str, market_id: str) -> bool:
        """Mark a (source market, market) pair as scored. False if it already was."""
        with self._guard:
            key = (source_market_id, market_id)
            if key in self._scored:
                return False
            self._scored.add(key)
            return True

    def release_score(self, source_market_id: str, market_id: str) -> None:
        with self._guard:
            self._scored.discard((source_market_id, market_id))

    def is_scored(self, source_market_id: str, market_id: str) -> bool:
        with self._guard:
            return (source_market_id, market_id) in self._scored


def _apply(previous: AccuracyRecord | None, key: RecordKey, score: PredictionScore, now: datetime) -> AccuracyRecord:
    total = (previous.total_resolved if previous else 0) + 1
    correct = (previous.correct_predictions if previous else 0) + int(
        is_correct(score.predicted_probability, score.actual_outcome)
    )
    brier = running_mean(previous.brier_score if previous else None, score.brier_score, total)
    return AccuracyRecord(
        source_id=key[0],
        category_id=key[1],
        total_resolved=total,
        correct_predictions=correct,
        brier_score=min(1.0, max(0.0, brier)),
        accuracy_pct=100.0 * correct / total,
        last_calculated_at=now,
    )


def _fallback_lookup(
    get: Callable[[RecordKey], AccuracyRecord | None],
    source_id: str,
    category_id: str | None,
) -> AccuracyRecord | None:
    if category_id is not None:
        rec = get((source_id, category_id))
        if rec is not None and rec.total_resolved >= 1:
            return rec
    rec = get((source_id, None))
    if rec is not None and rec.total_resolved >= 1:
        return rec
    return None


class AccuracyView:
    """Read-only snapshot of accuracy records with the tracker's lookup fallback."""

    def __init__(self, records: dict[RecordKey, AccuracyRecord]) -> None:
        self._records = records

    def lookup(self, source_id: str, category_id: str | None = None) -> AccuracyRecord | None:
        return _fallback_lookup(self._records.get, source_id, category_id)


class AccuracyTracker:
    """Maintains AccuracyRecord per (source, category) and per source globally."""

    def __init__(
        self,
        registry: Registry | None = None,
        store: AccuracyStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.registry = registry
        self.store = store or AccuracyStore()
        self._clock = clock

    def _validate(self, score: PredictionScore) -> None:
        if self.registry is None:
            return
        if not self.registry.has_source(score.source_id):
            raise NotFound(f"unknown source: {score.source_id}")
        if score.category_id is not None and not self.registry.has_category(score.category_id):
            raise NotFound(f"unknown category: {score.category_id}")

    def record(
        self,
        score: PredictionScore,
        publish: Callable[[PredictionScore, list[AccuracyRecord]], None] | None = None,
    ) -> list[AccuracyRecord]:
        """Apply one score to the category record and the global record, atomically.

        Returns the updated records (category first, global last; just the global one when
        the market has no category). A score already applied for the same
        (source market, market) is not counted again; the current records are returned.

        ``publish`` runs with the staged records before they are committed. If it raises,
        nothing is committed and the score stays unclaimed, so a retry scores it again.
        """
        self._validate(score)
        keys: list[RecordKey] = [(score.source_id, None)]
        if score.category_id is not None:
            keys.insert(0, (score.source_id, score.category_id))
        with self.store.transaction(*keys) as staged:
            if not self.store.claim_score(score.source_market_id, score.market_id):
                log.info(
                    "accuracy_score_already_recorded",
                    source_market_id=score.source_market_id,
                    market_id=score.market_id,
                )
                return [r for r in (self.store.get(k) for k in keys) if r is not None]
            try:
                now = self._clock()
                for key in keys:
                    staged[key] = _apply(self.store.get(key), key, score, now)
                if publish is not None:
                    publish(score, [staged[k] for k in keys])
            except Exception:
                self.store.release_score(score.source_market_id, score.market_id)
                staged.clear()
                raise
        records = [staged[k] for k in keys]
        log.debug(
            "accuracy_recorded",
            source_id=score.source_id,
            category_id=score.category_id,
            brier=records[0].brier_score,
            total_resolved=records[0].total_resolved,
        )
        return records

    def record_resolution(self, score: PredictionScore) -> AccuracyRecord:
        """Apply a score; return the matching (source, category) record."""
        return self.record(score)[0]

    def get(self, source_id: str, category_id: str | None = None) -> AccuracyRecord | None:
        """Exact record for the key, no fallback."""
        return self.store.get((source_id, category_id))

    def lookup(self, source_id: str, category_id: str | None = None) -> AccuracyRecord | None:
        """Per-category record if it has resolutions, else the source's global record, else None."""
        return _fallback_lookup(self.store.get, source_id, category_id)

    def view(self) -> AccuracyView:
        """Consistent point-in-time view for one aggregation cycle."""
        return AccuracyView(self.snapshot())

    def is_scored(self, source_market_id: str, market_id: str) -> bool:
        return self.store.is_scored(source_market_id, market_id)

    def snapshot(self) -> dict[RecordKey, AccuracyRecord]:
        return self.store.snapshot()

    def restore(self, records: Iterable[AccuracyRecord], scored: Iterable[tuple[str, str]] = ()) -> int:
        """Reload persisted records (and already-scored pairs) at startup. Returns record count."""
        n = 0
        for rec in records:
            self.store.put(rec)
            n += 1
        for source_market_id, market_id in scored:
            self.store.claim_score(source_market_id, market_id)
        return n

    def leaderboard(
        self,
        category_id: str | None = None,
        min_resolved: int = 30,
        limit: int = 20,
    ) -> list[AccuracyRecord]:
        """Records with enough resolutions, best accuracy first (ties: lower Brier, then source id)."""
        rows = [
            r
            for (_, cat), r in self.snapshot().items()
            if cat == category_id and r.total_resolved >= min_resolved
        ]
        rows.sort(
            key=lambda r: (
                -(r.accuracy_pct or 0.0),
                r.brier_score if r.brier_score is not None else 1.0,
                r.source_id,
            )
        )
        return rows[:limit]
