from __future__ import annotations

import logging
from typing import Iterable, Protocol

from doujin_api.errors import StatsUpdateError
from doujin_api.models import STAT_KINDS, UsageStats

log = logging.getLogger(__name__)


class StatsStore(Protocol):
    def load_stats(self) -> UsageStats: ...

    def save_stats(self, stats: UsageStats) -> None: ...


def apply_operation(
    stats: UsageStats,
    kind: str,
    positive: Iterable[str] = (),
    negative: Iterable[str] = (),
) -> UsageStats:
    if kind not in STAT_KINDS:
        raise ValueError(f"Unknown operation kind: {kind!r}")

    stats.total_use += 1
    attr = f"{kind}_use"
    setattr(stats, attr, getattr(stats, attr) + 1)
    for tag in positive:
        stats.positive_tags[tag] += 1
    for tag in negative:
        stats.negative_tags[tag] += 1
    return stats


def record_operation(
    store: StatsStore,
    kind: str,
    positive: Iterable[str] = (),
    negative: Iterable[str] = (),
) -> UsageStats:
    """One read-modify-write cycle against the stats store.

    Not atomic: concurrent callers may overwrite each other's increments.
    """
    if kind not in STAT_KINDS:
        raise ValueError(f"Unknown operation kind: {kind!r}")
    try:
        stats = store.load_stats()
        apply_operation(stats, kind, positive, negative)
        store.save_stats(stats)
    except Exception as e:
        raise StatsUpdateError(f"Could not record {kind} operation: {e!r}") from e
    log.debug("Recorded %s operation (total_use=%s)", kind, stats.total_use)
    return stats
