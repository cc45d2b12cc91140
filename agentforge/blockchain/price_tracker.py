"""
Price Tracker — Rolling oracle price history with trend analysis.

Snapshots are kept in a bounded per-pair ring buffer (288 entries, ~24h at
5-minute cron intervals). The cache sits behind `PriceHistoryCache` so a
shared backend can replace the in-process one for multi-worker deployments.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

MAX_SNAPSHOTS_PER_PAIR = 288
FLAT_THRESHOLD_PERCENT = 0.01


@dataclass
class PriceSnapshot:
    pair: str
    rate: float
    inverse: float
    timestamp: datetime
    source: str = "sorted_oracles"


@dataclass
class PriceTrend:
    pair: str
    current_rate: float
    previous_rate: float
    change: float
    change_percent: float
    direction: str  # "up" | "down" | "flat"
    period: str
    snapshots: int

    @property
    def icon(self) -> str:
        return {"up": "📈", "down": "📉"}.get(self.direction, "➡️")


class PriceHistoryCache(Protocol):
    def append(self, snapshot: PriceSnapshot) -> None: ...

    def history(self, pair: str, limit: Optional[int] = None) -> List[PriceSnapshot]: ...

    def pairs(self) -> List[str]: ...


class RingBufferPriceCache:
    """In-process cache: one bounded deque per pair."""

    def __init__(self, max_per_pair: int = MAX_SNAPSHOTS_PER_PAIR):
        self._max = max_per_pair
        self._data: Dict[str, Deque[PriceSnapshot]] = {}

    def append(self, snapshot: PriceSnapshot) -> None:
        if snapshot.pair not in self._data:
            self._data[snapshot.pair] = deque(maxlen=self._max)
        self._data[snapshot.pair].append(snapshot)

    def history(self, pair: str, limit: Optional[int] = None) -> List[PriceSnapshot]:
        items = list(self._data.get(pair, ()))
        if limit:
            return items[-limit:]
        return items

    def pairs(self) -> List[str]:
        return list(self._data.keys())


def format_period(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 1440:
        return f"{round(minutes / 60)}h"
    return f"{round(minutes / 1440)}d"


def _build_trend(pair: str, current: PriceSnapshot, previous: PriceSnapshot, count: int, period: str) -> PriceTrend:
    change = current.rate - previous.rate
    change_percent = (change / previous.rate) * 100 if previous.rate else 0.0
    if abs(change_percent) < FLAT_THRESHOLD_PERCENT:
        direction = "flat"
    else:
        direction = "up" if change > 0 else "down"
    return PriceTrend(
        pair=pair,
        current_rate=current.rate,
        previous_rate=previous.rate,
        change=change,
        change_percent=change_percent,
        direction=direction,
        period=period,
        snapshots=count,
    )


class PriceTracker:
    """Records oracle snapshots and answers trend questions from the cache."""

    def __init__(self, cache: Optional[PriceHistoryCache] = None):
        self.cache = cache or RingBufferPriceCache()

    async def record_all(self, wallet) -> List[PriceSnapshot]:
        """Fetch every oracle rate and append one snapshot per pair."""
        snapshots = []
        now = datetime.utcnow()
        for rate in await wallet.get_all_oracle_rates():
            snapshot = PriceSnapshot(pair=rate.pair, rate=rate.rate, inverse=rate.inverse,
                                     timestamp=now, source=rate.source)
            self.cache.append(snapshot)
            snapshots.append(snapshot)
        logger.debug(f"[PRICES] Recorded {len(snapshots)} snapshots")
        return snapshots

    async def record(self, wallet, symbol: str) -> PriceSnapshot:
        rate = await wallet.get_oracle_rate(symbol)
        snapshot = PriceSnapshot(pair=rate.pair, rate=rate.rate, inverse=rate.inverse,
                                 timestamp=datetime.utcnow(), source=rate.source)
        self.cache.append(snapshot)
        return snapshot

    def history(self, pair: str, limit: Optional[int] = None) -> List[PriceSnapshot]:
        return self.cache.history(pair, limit)

    def trend(self, pair: str, period_minutes: int = 60, now: Optional[datetime] = None) -> Optional[PriceTrend]:
        """
        Change between the oldest and newest snapshot inside the window.

        With fewer than two in-window points, the last two snapshots are used.
        Returns None with fewer than two snapshots overall.
        """
        history = self.cache.history(pair)
        if len(history) < 2:
            return None

        cutoff = (now or datetime.utcnow()) - timedelta(minutes=period_minutes)
        window = [s for s in history if s.timestamp >= cutoff]
        period = format_period(period_minutes)
        if len(window) < 2:
            return _build_trend(pair, history[-1], history[-2], 2, period)
        return _build_trend(pair, window[-1], window[0], len(window), period)

    def all_trends(self, period_minutes: int = 60, now: Optional[datetime] = None) -> List[PriceTrend]:
        trends = []
        for pair in self.cache.pairs():
            trend = self.trend(pair, period_minutes, now=now)
            if trend:
                trends.append(trend)
        return trends


# ── Singleton ──
_tracker: Optional[PriceTracker] = None


def get_price_tracker() -> PriceTracker:
    global _tracker
    if _tracker is None:
        _tracker = PriceTracker()
    return _tracker
