"""In-process catalog: sources, categories, markets, source markets and observation history."""

from __future__ import annotations

import bisect
from datetime import datetime
from threading import RLock

import structlog

from predconsensus.errors import InvalidInput, NotFound
from predconsensus.models import (
    Category,
    Market,
    MarketStatus,
    Observation,
    Source,
    SourceMarket,
)

log = structlog.get_logger(__name__)

_TERMINAL = {MarketStatus.RESOLVED, MarketStatus.CLOSED, MarketStatus.CANCELLED}


class Catalog:
    """Thread-safe registry of reference entities plus append-only observation history.

    Readers get copies, so a caller aggregating a market never sees a list mutate under it;
    a reading recorded mid-aggregation is picked up on the next cycle.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._sources: dict[str, Source] = {}
        self._source_slugs: dict[str, str] = {}
        self._categories: dict[str, Category] = {}
        self._markets: dict[str, Market] = {}
        self._source_markets: dict[str, SourceMarket] = {}
        self._external: dict[tuple[str, str], str] = {}
        self._by_market: dict[str, list[str]] = {}
        self._history: dict[str, list[Observation]] = {}

    # --- registration ---

    def add_source(self, source: Source) -> Source:
        with self._lock:
            existing = self._source_slugs.get(source.slug)
            if existing is not None and existing != source.id:
                raise InvalidInput(f"source slug already registered: {source.slug}")
            self._sources[source.id] = source
            self._source_slugs[source.slug] = source.id
            return source

    def add_category(self, category: Category) -> Category:
        with self._lock:
            self._categories[category.id] = category
            return category

    def add_market(self, market: Market) -> Market:
        with self._lock:
            if market.category_id is not None and market.category_id not in self._categories:
                raise NotFound(f"unknown category: {market.category_id}")
            current = self._markets.get(market.id)
            if current is not None and current.status == MarketStatus.RESOLVED:
                return current
            self._markets[market.id] = market
            self._by_market.setdefault(market.id, [])
            return market

    def bind_source_market(self, source_market: SourceMarket) -> SourceMarket:
        """Register a source's listing. Exactly one SourceMarket per (source_id, external_id)."""
        with self._lock:
            if source_market.source_id not in self._sources:
                raise NotFound(f"unknown source: {source_market.source_id}")
            if source_market.market_id is not None and source_market.market_id not in self._markets:
                raise NotFound(f"unknown market: {source_market.market_id}")
            key = (source_market.source_id, source_market.external_id)
            bound = self._external.get(key)
            if bound is not None and bound != source_market.id:
                raise InvalidInput(
                    f"source {source_market.source_id} already lists {source_market.external_id} as {bound}"
                )
            previous = self._source_markets.get(source_market.id)
            if previous is not None and previous.market_id and previous.market_id != source_market.market_id:
                self._by_market[previous.market_id].remove(source_market.id)
            self._source_markets[source_market.id] = source_market
            self._external[key] = source_market.id
            self._history.setdefault(source_market.id, [])
            if source_market.market_id is not None:
                ids = self._by_market.setdefault(source_market.market_id, [])
                if source_market.id not in ids:
                    ids.append(source_market.id)
            return source_market

    def set_source_active(self, source_id: str, active: bool) -> Source:
        with self._lock:
            source = self.get_source(source_id)
            updated = source.model_copy(update={"active": active})
            self._sources[source_id] = updated
            return updated

    def set_market_status(self, market_id: str, status: MarketStatus) -> Market:
        """Move an active market to closed/cancelled. Transitions are one-directional."""
        if status == MarketStatus.RESOLVED:
            raise InvalidInput("use mark_resolved to resolve a market")
        with self._lock:
            market = self.get_market(market_id)
            if market.status == status:
                return market
            if market.status != MarketStatus.ACTIVE:
                raise InvalidInput(f"market {market_id} is {market.status.value}; cannot become {status.value}")
            market.status = status
            return market.model_copy()

    def mark_resolved(self, market_id: str, resolution_value: float, resolved_at: datetime) -> Market:
        """Set status=resolved once. The resolution value is immutable afterwards."""
        with self._lock:
            market = self.get_market(market_id)
            if market.status == MarketStatus.RESOLVED:
                return market.model_copy()
            if market.status in _TERMINAL:
                raise InvalidInput(f"market {market_id} is {market.status.value}; cannot resolve")
            market.status = MarketStatus.RESOLVED
            market.resolution_value = resolution_value
            market.resolution_date = resolved_at
            return market.model_copy()

    # --- lookups ---

    def has_source(self, source_id: str) -> bool:
        return source_id in self._sources

    def has_category(self, category_id: str) -> bool:
        return category_id in self._categories

    def get_source(self, source_id: str) -> Source:
        try:
            return self._sources[source_id]
        except KeyError:
            raise NotFound(f"unknown source: {source_id}") from None

    def source_by_slug(self, slug: str) -> Source:
        source_id = self._source_slugs.get(slug)
        if source_id is None:
            raise NotFound(f"unknown source slug: {slug}")
        return self._sources[source_id]

    def get_market(self, market_id: str) -> Market:
        try:
            return self._markets[market_id]
        except KeyError:
            raise NotFound(f"unknown market: {market_id}") from None

    def market(self, market_id: str) -> Market:
        """Copy of the market (safe to hand to other threads)."""
        with self._lock:
            return self.get_market(market_id).model_copy()

    def get_source_market(self, source_market_id: str) -> SourceMarket:
        try:
            return self._source_markets[source_market_id]
        except KeyError:
            raise NotFound(f"unknown source market: {source_market_id}") from None

    def find_source_market(self, source_id: str, external_id: str) -> SourceMarket:
        sm_id = self._external.get((source_id, external_id))
        if sm_id is None:
            raise NotFound(f"no listing {external_id} for source {source_id}")
        return self._source_markets[sm_id]

    def source_markets_for(self, market_id: str) -> list[SourceMarket]:
        with self._lock:
            self.get_market(market_id)
            return [self._source_markets[i].model_copy() for i in self._by_market.get(market_id, [])]

    def active_market_ids(self) -> list[str]:
        with self._lock:
            return [m.id for m in self._markets.values() if m.status == MarketStatus.ACTIVE]

    # --- observations ---

    def record_observation(self, obs: Observation) -> Observation | None:
        """Append a reading and update the listing's latest state.

        Returns the previous latest reading (None for the first one). Readings must arrive
        with non-decreasing observed_at; an exact duplicate is ignored and returns the
        stored reading itself, so a caller diffing against it sees no change.
        """
        with self._lock:
            sm = self.get_source_market(obs.source_market_id)
            if sm.source_id != obs.source_id:
                raise InvalidInput(
                    f"observation source {obs.source_id} does not own source market {sm.id}"
                )
            history = self._history[sm.id]
            previous = history[-1] if history else None
            if previous is not None:
                if obs.observed_at < previous.observed_at:
                    raise InvalidInput(
                        f"out-of-order reading for {sm.id}: {obs.observed_at} < {previous.observed_at}"
                    )
                if obs.observed_at == previous.observed_at:
                    if obs.probability == previous.probability:
                        log.debug("observation_duplicate", source_market_id=sm.id)
                        return previous
                    raise InvalidInput(f"conflicting readings for {sm.id} at {obs.observed_at}")
            if obs.market_id is None and sm.market_id is not None:
                obs = obs.model_copy(update={"market_id": sm.market_id})
            history.append(obs)
            sm.current_probability = obs.probability
            if obs.volume is not None:
                sm.volume = obs.volume
            sm.last_observed_at = obs.observed_at
            return previous

    def latest_observation(self, source_market_id: str) -> Observation | None:
        with self._lock:
            history = self._history.get(source_market_id)
            if history is None:
                raise NotFound(f"unknown source market: {source_market_id}")
            return history[-1] if history else None

    def latest_observations(self, market_id: str) -> list[Observation]:
        """Latest reading per source market bound to the market (listings without data omitted)."""
        with self._lock:
            self.get_market(market_id)
            out = []
            for sm_id in self._by_market.get(market_id, []):
                history = self._history.get(sm_id)
                if history:
                    out.append(history[-1])
            return out

    def observation_at_or_before(self, source_market_id: str, when: datetime) -> Observation | None:
        """Most recent reading with observed_at <= when (the listing's last known call)."""
        with self._lock:
            history = self._history.get(source_market_id)
            if history is None:
                raise NotFound(f"unknown source market: {source_market_id}")
            idx = bisect.bisect_right(history, when, key=lambda o: o.observed_at)
            return history[idx - 1] if idx > 0 else None

    def history(self, source_market_id: str) -> list[Observation]:
        with self._lock:
            return list(self._history.get(source_market_id, []))
