"""
Backtest Simulator - Replays one Candidate over historical bars

Strategy evaluator of the evolver: applies a candidate's moving-average
windows and stop-loss/take-profit distances to a fixed window of bars and
scores the result. The replay is deterministic so the same candidate always
gets the same simulated fitness within a cycle.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.evolution_config import EvolutionConfig, GeneBounds, SignalMode
from adaptive_optimizer.market_data import Bar, DataUnavailableError, bars_to_frame

_LOG = logging.getLogger(__name__)

# Fixed scores for candidates that cannot be (meaningfully) simulated
SENTINEL_FITNESS = -1_000_000.0
NO_TRADE_FITNESS = -1.0

# Weights of the simulated fitness components
PROFIT_WEIGHT = 0.40
WIN_RATE_WEIGHT = 0.25
DRAWDOWN_WEIGHT = 0.25
TRADE_COUNT_WEIGHT = 0.10

BUY = 'BUY'
SELL = 'SELL'


@dataclass
class SimulatedTrade:
    """One trade of the replay"""
    direction: str
    entry_index: int
    exit_index: int
    entry_price: float
    exit_price: float
    profit: float
    exit_reason: str  # 'SL', 'TP', 'END'


@dataclass
class SimulationResult:
    """Outcome of one replay"""
    total_trades: int = 0
    winning_trades: int = 0
    win_rate: float = 0.0
    net_profit: float = 0.0
    final_balance: float = 0.0
    max_drawdown: float = 0.0          # fraction of peak balance
    profit_score: float = 0.0
    trade_count_score: float = 0.0
    stability_penalty: float = 0.0
    fitness: float = SENTINEL_FITNESS
    valid: bool = False
    reason: str = ""
    trades: List[SimulatedTrade] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('trades')
        return data


class PreparedHistory:
    """
    Chronological bar arrays shared by every simulation of a cycle

    Moving averages are computed once per window length and cached, since
    a population revisits the same windows many times.
    """

    def __init__(self, frame: pd.DataFrame):
        self.frame = frame
        self.high = frame['high'].to_numpy(dtype=float)
        self.low = frame['low'].to_numpy(dtype=float)
        self.close = frame['close'].to_numpy(dtype=float)
        self._ma_cache: Dict[int, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self.close)

    @property
    def has_gaps(self) -> bool:
        return bool(np.isnan(self.close).any() or np.isnan(self.high).any() or np.isnan(self.low).any())

    def moving_average(self, window: int) -> np.ndarray:
        if window not in self._ma_cache:
            if window > len(self):
                raise DataUnavailableError(f"MA({window}) needs {window} bars, have {len(self)}")
            ma = self.frame['close'].rolling(window=window, min_periods=window).mean()
            self._ma_cache[window] = ma.to_numpy(dtype=float)
        return self._ma_cache[window]


class BacktestSimulator:
    """
    Simulates the trend strategy for one Candidate

    Input:
        - PreparedHistory (or bars, most recent first)
        - Candidate to test
        - Live candidate (for the stability penalty)

    Output:
        - SimulationResult with the simulated fitness
    """

    def __init__(
        self,
        bounds: GeneBounds = None,
        signal_mode: SignalMode = SignalMode.BOTH,
        initial_balance: float = 10_000.0,
        lot_size: float = 1.0,
        spread: float = 0.02,
        target_trades: int = 30,
        stability_weight: float = 0.05,
    ):
        """
        Args:
            bounds: Gene bounds (validity check and distance normalization)
            signal_mode: Entry rule (touch, breakout or both)
            initial_balance: Synthetic starting balance
            lot_size: Units traded per position
            spread: Cost per trade in price units
            target_trades: Trade count that earns the full count score
            stability_weight: Penalty per unit of distance from the live candidate
        """
        self.bounds = bounds or GeneBounds()
        self.signal_mode = signal_mode
        self.initial_balance = initial_balance
        self.lot_size = lot_size
        self.spread = spread
        self.target_trades = target_trades
        self.stability_weight = stability_weight

    @classmethod
    def from_evolution_config(cls, cfg: EvolutionConfig) -> BacktestSimulator:
        return cls(
            bounds=cfg.bounds,
            signal_mode=cfg.signal_mode,
            initial_balance=cfg.initial_balance,
            lot_size=cfg.lot_size,
            spread=cfg.spread,
            target_trades=cfg.target_trades,
            stability_weight=cfg.stability_weight,
        )

    @staticmethod
    def prepare(bars: Union[Sequence[Bar], pd.DataFrame]) -> PreparedHistory:
        """Bars from the provider (most recent first) or a chronological frame"""
        if isinstance(bars, pd.DataFrame):
            return PreparedHistory(bars.sort_index())
        return PreparedHistory(bars_to_frame(bars))

    def simulated_fitness(
        self,
        candidate: Candidate,
        history: PreparedHistory,
        live: Optional[Candidate] = None,
    ) -> float:
        return self.simulate(candidate, history, live).fitness

    def simulate(
        self,
        candidate: Candidate,
        history: PreparedHistory,
        live: Optional[Candidate] = None,
    ) -> SimulationResult:
        """
        Replay the strategy bar by bar

        Invalid candidates and data shortfalls return a sentinel result
        instead of raising.
        """
        if not candidate.is_valid(self.bounds):
            _LOG.debug(f"Invalid candidate sentinel-scored: {candidate}")
            return SimulationResult(final_balance=self.initial_balance, reason="invalid candidate")

        if len(history) < candidate.long_window + 2 or history.has_gaps:
            _LOG.debug(f"Data shortfall for {candidate}: {len(history)} bars")
            return SimulationResult(final_balance=self.initial_balance, reason="insufficient data")

        try:
            short_ma = history.moving_average(candidate.short_window)
            long_ma = history.moving_average(candidate.long_window)
        except DataUnavailableError as e:
            _LOG.warning(f"Moving averages unavailable for {candidate}: {e}")
            return SimulationResult(final_balance=self.initial_balance, reason="indicator unavailable")

        trades = self._replay(candidate, history, short_ma, long_ma)
        return self._score(candidate, trades, live)

    def _replay(
        self,
        candidate: Candidate,
        history: PreparedHistory,
        short_ma: np.ndarray,
        long_ma: np.ndarray,
    ) -> List[SimulatedTrade]:
        high, low, close = history.high, history.low, history.close
        sl = candidate.stop_loss_distance
        tp = candidate.take_profit_distance
        cost = self.spread * self.lot_size

        trades: List[SimulatedTrade] = []
        position = None  # (direction, entry_price, entry_index)

        for i in range(candidate.long_window, len(history)):
            if position is not None:
                direction, entry, entry_idx = position
                if direction == BUY:
                    stop_price, target_price = entry - sl, entry + tp
                    hit_sl, hit_tp = low[i] <= stop_price, high[i] >= target_price
                else:
                    stop_price, target_price = entry + sl, entry - tp
                    hit_sl, hit_tp = high[i] >= stop_price, low[i] <= target_price

                # Both levels inside one bar: assume the stop filled first
                if hit_sl or hit_tp:
                    exit_price = stop_price if hit_sl else target_price
                    trades.append(self._close(direction, entry_idx, i, entry, exit_price,
                                              'SL' if hit_sl else 'TP', cost))
                    position = None
                continue

            direction = self.entry_signal(i, short_ma, long_ma, high, low, close)
            if direction is not None:
                position = (direction, close[i], i)

        if position is not None:
            direction, entry, entry_idx = position
            last = len(history) - 1
            trades.append(self._close(direction, entry_idx, last, entry, close[last], 'END', cost))

        return trades

    def entry_signal(self, i, short_ma, long_ma, high, low, close) -> Optional[str]:
        """
        Entry rule for bar i (decided on the bar's close)

        TOUCH: trend defined by short MA vs long MA; the bar trades through
               the short MA and closes back on the trend side
        BREAKOUT: short MA crosses the long MA
        """
        s_prev, s_now = short_ma[i - 1], short_ma[i]
        l_prev, l_now = long_ma[i - 1], long_ma[i]
        if np.isnan(s_prev) or np.isnan(l_prev):
            return None

        if self.signal_mode in (SignalMode.BREAKOUT, SignalMode.BOTH):
            if s_prev <= l_prev and s_now > l_now:
                return BUY
            if s_prev >= l_prev and s_now < l_now:
                return SELL

        if self.signal_mode in (SignalMode.TOUCH, SignalMode.BOTH):
            touched = low[i] <= s_now <= high[i]
            if touched and s_now > l_now and close[i] > s_now:
                return BUY
            if touched and s_now < l_now and close[i] < s_now:
                return SELL

        return None

    def _close(self, direction, entry_idx, exit_idx, entry, exit_price, reason, cost) -> SimulatedTrade:
        sign = 1.0 if direction == BUY else -1.0
        profit = (exit_price - entry) * sign * self.lot_size - cost
        return SimulatedTrade(
            direction=direction,
            entry_index=entry_idx,
            exit_index=exit_idx,
            entry_price=float(entry),
            exit_price=float(exit_price),
            profit=float(profit),
            exit_reason=reason,
        )

    def _score(
        self,
        candidate: Candidate,
        trades: List[SimulatedTrade],
        live: Optional[Candidate],
    ) -> SimulationResult:
        """
        Fitness = profit×0.40 + win_rate×0.25 + (1 − drawdown)×0.25
                  + trade_count×0.10 − stability_penalty
        """
        if not trades:
            return SimulationResult(
                final_balance=self.initial_balance,
                fitness=NO_TRADE_FITNESS,
                valid=True,
                reason="no trades",
            )

        profits = np.array([t.profit for t in trades])
        equity = self.initial_balance + np.concatenate([[0.0], np.cumsum(profits)])
        running_peak = np.maximum.accumulate(equity)  # >= initial_balance > 0
        drawdowns = (running_peak - equity) / running_peak
        max_drawdown = float(min(1.0, drawdowns.max()))

        total_trades = len(trades)
        winning_trades = int((profits > 0).sum())
        win_rate = winning_trades / total_trades
        net_profit = float(profits.sum())

        profit_score = net_profit / self.initial_balance
        trade_count_score = min(total_trades / self.target_trades, 1.0)
        stability_penalty = 0.0
        if live is not None:
            stability_penalty = self.stability_weight * candidate.distance(live, self.bounds)

        fitness = (
            profit_score * PROFIT_WEIGHT +
            win_rate * WIN_RATE_WEIGHT +
            (1.0 - max_drawdown) * DRAWDOWN_WEIGHT +
            trade_count_score * TRADE_COUNT_WEIGHT -
            stability_penalty
        )

        return SimulationResult(
            total_trades=total_trades,
            winning_trades=winning_trades,
            win_rate=win_rate,
            net_profit=net_profit,
            final_balance=float(equity[-1]),
            max_drawdown=max_drawdown,
            profit_score=profit_score,
            trade_count_score=trade_count_score,
            stability_penalty=stability_penalty,
            fitness=float(fitness),
            valid=True,
            trades=trades,
        )
