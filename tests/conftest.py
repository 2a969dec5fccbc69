from __future__ import annotations

from datetime import datetime, timedelta

import pandas as pd
import pytest

from adaptive_optimizer.backtest_simulator import BacktestSimulator
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.evolution_config import EvolutionConfig, GeneBounds
from adaptive_optimizer.live_state import EvolutionContext
from adaptive_optimizer.market_data import DataFrameMarketData, synthetic_trend_frame
from adaptive_optimizer.trade_history import ClosedDeal


@pytest.fixture
def bounds() -> GeneBounds:
    return GeneBounds()


@pytest.fixture
def small_cfg() -> EvolutionConfig:
    return EvolutionConfig(population_size=8, generations=3, simulation_bars=400)


@pytest.fixture
def frame() -> pd.DataFrame:
    return synthetic_trend_frame(n_bars=600, seed=7)


@pytest.fixture
def history(frame):
    return BacktestSimulator.prepare(frame)


@pytest.fixture
def market(frame) -> DataFrameMarketData:
    return DataFrameMarketData(frame)


@pytest.fixture
def context(small_cfg, tmp_path) -> EvolutionContext:
    return EvolutionContext.create(small_cfg, state_dir=str(tmp_path / "state"))


@pytest.fixture
def make_deal():
    def _make(ticket, profit, candidate=None, position_id=None, direction='BUY'):
        opened = datetime(2024, 1, 1) + timedelta(hours=ticket)
        return ClosedDeal(
            ticket=ticket,
            position_id=position_id or f"P{ticket}",
            open_time=opened,
            close_time=opened + timedelta(minutes=30),
            realized_profit=profit,
            direction=direction,
            parameter_set=candidate,
        )
    return _make


@pytest.fixture
def flat_frame() -> pd.DataFrame:
    index = pd.date_range("2024-01-01", periods=120, freq="h")
    return pd.DataFrame({
        'open': 100.0,
        'high': 100.5,
        'low': 99.5,
        'close': 100.0,
        'volume': 0.0,
    }, index=index)


@pytest.fixture
def live() -> Candidate:
    return Candidate()
