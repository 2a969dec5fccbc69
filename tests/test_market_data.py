from __future__ import annotations

import pytest

from adaptive_optimizer.market_data import DataFrameMarketData, DataUnavailableError, bars_to_frame


def test_replay_reveals_one_bar_at_a_time(frame):
    market = DataFrameMarketData(frame, start=0)

    with pytest.raises(DataUnavailableError):
        market.get_current_price()
    assert market.get_bars(10) == []

    first = market.advance()
    second = market.advance()

    assert market.get_bars(10) == [second, first]
    assert market.get_current_price() == second.close


def test_bars_are_most_recent_first(market, frame):
    bars = market.get_bars(5)

    assert bars[0].time > bars[-1].time
    assert bars_to_frame(bars).index.is_monotonic_increasing
    assert bars[0].close == pytest.approx(frame['close'].iloc[-1])


def test_exhausted_series_returns_none(frame):
    market = DataFrameMarketData(frame.iloc[:2], start=1)

    assert market.advance() is not None
    assert market.exhausted
    assert market.advance() is None


def test_csv_loading_normalizes_headers(tmp_path, frame):
    path = tmp_path / "bars.csv"
    export = frame.iloc[:50].drop(columns=['volume'])
    export.columns = [c.upper() for c in export.columns]
    export.rename_axis("Time").to_csv(path)

    market = DataFrameMarketData.from_csv(str(path))

    assert len(market.get_bars(100)) == 50
    assert market.get_bars(1)[0].volume == 0.0


def test_missing_columns_are_rejected(frame):
    with pytest.raises(ValueError):
        DataFrameMarketData(frame.drop(columns=['low']))
