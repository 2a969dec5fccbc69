"""
Market Data - Bars and the market-data collaborator interface

The evolver only reads what the simulation needs: an ordered window of OHLC
bars (most recent first, as trading platforms return them) and the current
price. `DataFrameMarketData` serves them from a pandas DataFrame, which is
what the CLI replay and the tests use.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Protocol, Sequence
import logging

import numpy as np
import pandas as pd

_LOG = logging.getLogger(__name__)

OHLC_COLUMNS = ['open', 'high', 'low', 'close']


@dataclass(frozen=True)
class Bar:
    """Single OHLC bar"""
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class MarketDataProvider(Protocol):
    """Collaborator supplying historical bars and the live price"""

    def get_bars(self, count: int) -> List[Bar]:
        """Up to `count` bars, most recent first"""
        ...

    def get_current_price(self) -> float:
        ...


class DataUnavailableError(Exception):
    """Not enough history to serve a request"""


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    """
    Convert provider bars (most recent first) to a chronological DataFrame

    Returns:
        DataFrame indexed by time with open/high/low/close/volume columns
    """
    if not bars:
        return pd.DataFrame(columns=OHLC_COLUMNS + ['volume'])

    chronological = list(reversed(bars))
    df = pd.DataFrame({
        'time': [b.time for b in chronological],
        'open': [b.open for b in chronological],
        'high': [b.high for b in chronological],
        'low': [b.low for b in chronological],
        'close': [b.close for b in chronological],
        'volume': [b.volume for b in chronological],
    })
    return df.set_index('time')


class DataFrameMarketData:
    """
    Market data provider backed by a chronological DataFrame

    A cursor marks the "present": `advance()` reveals one more bar, which
    lets a replay feed the event loop bar by bar without look-ahead.
    """

    def __init__(self, df: pd.DataFrame, start: Optional[int] = None):
        missing = [c for c in OHLC_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"DataFrame missing columns: {missing}")

        self.df = df.sort_index()
        self.position = len(self.df) if start is None else max(0, min(start, len(self.df)))

    @classmethod
    def from_csv(cls, path: str, start: Optional[int] = None) -> DataFrameMarketData:
        """Load bars from CSV (time column + OHLC, header names case-insensitive)"""
        df = pd.read_csv(Path(path))
        df.columns = [c.strip().lower() for c in df.columns]
        time_col = next((c for c in ('time', 'timestamp', 'date', 'datetime') if c in df.columns), None)
        if time_col is not None:
            df[time_col] = pd.to_datetime(df[time_col])
            df = df.set_index(time_col)
        else:
            df.index = pd.date_range("2020-01-01", periods=len(df), freq="h")
        if 'volume' not in df.columns:
            df['volume'] = 0.0
        _LOG.info(f"📂 Loaded {len(df)} bars from {path}")
        return cls(df, start=start)

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.df)

    def advance(self) -> Optional[Bar]:
        """Reveal the next bar; None when the series is exhausted"""
        if self.exhausted:
            return None
        self.position += 1
        return self._bar_at(self.position - 1)

    def latest_bar(self) -> Optional[Bar]:
        if self.position == 0:
            return None
        return self._bar_at(self.position - 1)

    def get_bars(self, count: int) -> List[Bar]:
        if count <= 0 or self.position == 0:
            return []
        start = max(0, self.position - count)
        return [self._bar_at(i) for i in range(self.position - 1, start - 1, -1)]

    def get_current_price(self) -> float:
        if self.position == 0:
            raise DataUnavailableError("No bars revealed yet")
        return float(self.df['close'].iloc[self.position - 1])

    def _bar_at(self, i: int) -> Bar:
        row = self.df.iloc[i]
        ts = self.df.index[i]
        return Bar(
            time=ts.to_pydatetime() if hasattr(ts, 'to_pydatetime') else ts,
            open=float(row['open']),
            high=float(row['high']),
            low=float(row['low']),
            close=float(row['close']),
            volume=float(row.get('volume', 0.0)),
        )


def synthetic_trend_frame(
    n_bars: int = 600,
    start_price: float = 100.0,
    seed: int = 7,
    freq: str = "h",
) -> pd.DataFrame:
    """
    Deterministic synthetic price series (alternating trend and range legs)

    Used by the CLI demo when no CSV is given and by the tests.
    """
    rng = np.random.default_rng(seed)
    drift = np.zeros(n_bars)
    leg = 60
    for i in range(0, n_bars, leg):
        phase = (i // leg) % 4
        drift[i:i + leg] = {0: 0.15, 1: 0.0, 2: -0.15, 3: 0.0}[phase]

    closes = start_price + np.cumsum(drift + rng.normal(0.0, 0.4, n_bars))
    opens = np.concatenate([[start_price], closes[:-1]])
    spread = np.abs(rng.normal(0.0, 0.3, n_bars)) + 0.1
    highs = np.maximum(opens, closes) + spread
    lows = np.minimum(opens, closes) - spread

    index = pd.date_range("2024-01-01", periods=n_bars, freq=freq)
    return pd.DataFrame({
        'open': opens,
        'high': highs,
        'low': lows,
        'close': closes,
        'volume': rng.integers(100, 1000, n_bars).astype(float),
    }, index=index)
