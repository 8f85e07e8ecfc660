"""Abstract event feed: anything that yields engine feed records in order."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterator

# Record kinds understood by the replay driver
FEED_KINDS = (
    "source",
    "category",
    "market",
    "source_market",
    "reading",
    "resolution",
    "aggregate",
    "status",
)


class EventFeed(ABC):
    """Ordered source of feed records (dicts with a ``kind`` key). Implement per transport."""

    feed_id: str = ""

    @abstractmethod
    def records(self) -> Iterator[tuple[int, dict[str, Any]]]:
        """Yield (sequence number, record) in feed order."""
        ...
