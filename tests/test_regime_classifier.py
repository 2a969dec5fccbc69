from __future__ import annotations

from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from adaptive_optimizer.market_data import DataUnavailableError
from adaptive_optimizer.regime_classifier import Regime, RegimeClassifier, compute_trend_strength


def _frame(closes) -> pd.DataFrame:
    closes = np.asarray(closes, dtype=float)
    index = pd.date_range("2024-01-01", periods=len(closes), freq="h")
    return pd.DataFrame({
        'open': closes,
        'high': closes + 0.5,
        'low': closes - 0.5,
        'close': closes,
    }, index=index)


def test_steady_trend_is_strong():
    adx = compute_trend_strength(_frame(100.0 + np.arange(120)))

    assert adx > 25.0


def test_choppy_market_is_weak():
    adx = compute_trend_strength(_frame(100.0 + np.arange(120) % 2))

    assert adx < 25.0


def test_too_few_bars_raise():
    with pytest.raises(DataUnavailableError):
        compute_trend_strength(_frame(np.arange(20)), period=14)


def test_classify_reports_transitions_only(context):
    classifier = RegimeClassifier(context, threshold=25.0)
    now = datetime(2024, 3, 1)

    first = classifier.classify(40.0, now)
    repeat = classifier.classify(35.0, now)
    change = classifier.classify(10.0, now)

    assert first.previous is None and first.current == Regime.TRENDING
    assert repeat is None
    assert change.previous == Regime.TRENDING and change.current == Regime.RANGING
    assert context.regime == "ranging"
    assert context.trend_strength == 10.0


def test_short_data_keeps_last_regime(context):
    classifier = RegimeClassifier(context)
    classifier.classify(30.0, datetime(2024, 3, 1))

    assert classifier.update_from_bars(_frame(np.arange(10)), datetime(2024, 3, 2)) is None
    assert classifier.current == Regime.TRENDING


def test_provider_bars_are_accepted(market, context):
    classifier = RegimeClassifier.from_context(context)

    classifier.update_from_bars(market.get_bars(60), datetime(2024, 3, 1))

    assert classifier.current in (Regime.TRENDING, Regime.RANGING)
