"""
Market Regime Classifier - Trending vs ranging

Uses ADX (Wilder smoothing) as trend-strength indicator: values at or above
the threshold mean a trending market. When per-regime separation is on, the
scheduler keeps one evolved best candidate per regime and swaps to it as
soon as the regime changes.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from adaptive_optimizer.live_state import EvolutionContext
from adaptive_optimizer.market_data import Bar, DataUnavailableError, bars_to_frame


class Regime(Enum):
    TRENDING = "trending"
    RANGING = "ranging"


@dataclass(frozen=True)
class RegimeTransition:
    previous: Optional[Regime]
    current: Regime
    trend_strength: float
    time: datetime


def compute_trend_strength(bars: Union[Sequence[Bar], pd.DataFrame], period: int = 14) -> float:
    """
    Latest ADX value of a bar series

    Args:
        bars: Provider bars (most recent first) or chronological DataFrame
        period: ADX period

    Returns:
        ADX in [0, 100]

    Raises:
        DataUnavailableError: fewer than 2 × period bars
    """
    df = bars.sort_index() if isinstance(bars, pd.DataFrame) else bars_to_frame(bars)
    if len(df) < 2 * period:
        raise DataUnavailableError(f"ADX({period}) needs {2 * period} bars, have {len(df)}")

    high, low, close = df['high'], df['low'], df['close']

    prev_close = close.shift(1)
    tr = pd.concat([
        (high - low),
        (high - prev_close).abs(),
        (low - prev_close).abs(),
    ], axis=1).max(axis=1)

    up_move = high.diff()
    down_move = -low.diff()
    plus_dm = np.where((up_move > down_move) & (up_move > 0.0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0.0), down_move, 0.0)

    tr_sm = tr.ewm(alpha=1 / period, adjust=False).mean()
    plus_sm = pd.Series(plus_dm, index=df.index).ewm(alpha=1 / period, adjust=False).mean()
    minus_sm = pd.Series(minus_dm, index=df.index).ewm(alpha=1 / period, adjust=False).mean()

    plus_di = 100.0 * (plus_sm / tr_sm.replace(0.0, np.nan))
    minus_di = 100.0 * (minus_sm / tr_sm.replace(0.0, np.nan))

    dx = 100.0 * ((plus_di - minus_di).abs() / (plus_di + minus_di).replace(0.0, np.nan))
    adx = dx.ewm(alpha=1 / period, adjust=False).mean().fillna(0.0)

    return float(adx.iloc[-1])


class RegimeClassifier:
    """Classifies the market and records the regime on the shared context"""

    def __init__(self, context: EvolutionContext, threshold: float = 25.0, period: int = 14):
        self.context = context
        self.threshold = threshold
        self.period = period

    @classmethod
    def from_context(cls, context: EvolutionContext) -> RegimeClassifier:
        cfg = context.config
        return cls(context, threshold=cfg.regime_trend_threshold, period=cfg.regime_adx_period)

    @property
    def current(self) -> Optional[Regime]:
        return Regime(self.context.regime) if self.context.regime else None

    def classify(self, trend_strength: float, now: datetime) -> Optional[RegimeTransition]:
        """
        Record the regime for a trend-strength reading

        Returns:
            RegimeTransition when the regime changed, else None
        """
        regime = Regime.TRENDING if trend_strength >= self.threshold else Regime.RANGING
        previous = self.current

        self.context.regime = regime.value
        self.context.regime_updated = now
        self.context.trend_strength = trend_strength

        if regime == previous:
            return None

        logging.info(f"🌊 Regime: {previous.value if previous else 'unknown'} → {regime.value} (ADX {trend_strength:.1f})")
        return RegimeTransition(previous, regime, trend_strength, now)

    def update_from_bars(self, bars: Union[Sequence[Bar], pd.DataFrame], now: datetime) -> Optional[RegimeTransition]:
        """Compute ADX from bars and classify; keeps the last regime when data is short"""
        try:
            trend_strength = compute_trend_strength(bars, self.period)
        except DataUnavailableError as e:
            logging.debug(f"Regime unchanged, {e}")
            return None
        return self.classify(trend_strength, now)
