"""
Fitness Evaluator - Blends simulated and real trade performance

The simulated score comes from the BacktestSimulator. When enough live
trades were taken with parameters at or near the candidate, their results
are folded in:

    fitness = (1 - w) * simulated + w * real

Closer historical configurations count more than distant ones.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional, Tuple
import logging

from adaptive_optimizer.backtest_simulator import BacktestSimulator, PreparedHistory, SENTINEL_FITNESS
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.evolution_config import EvolutionConfig, GeneBounds
from adaptive_optimizer.trade_history import TradeHistoryTracker, TradeRecord

_LOG = logging.getLogger(__name__)

# Profit factor of a matched set without losses
PROFIT_FACTOR_CAP = 10.0

# Weights of the real performance components
PROFIT_FACTOR_WEIGHT = 0.5
REAL_WIN_RATE_WEIGHT = 0.5


@dataclass
class FitnessBreakdown:
    """How a fitness value was obtained"""
    simulated: float
    real: Optional[float]
    matched_trades: int
    blend_weight: float
    fitness: float

    @property
    def used_real_trades(self) -> bool:
        return self.real is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def real_performance_score(
    matched: List[Tuple[TradeRecord, float]],
    tolerance: float,
) -> float:
    """
    Real performance from matched live trades

    Each trade is weighted by 1 - distance/tolerance (exact matches weigh 1),
    then the weighted profit factor (capped) and win rate are combined.

    Args:
        matched: (record, distance) pairs
        tolerance: Match radius used to select the records

    Returns:
        Score in [0, 1]
    """
    weighted_profit = 0.0
    weighted_loss = 0.0
    weighted_wins = 0.0
    total_weight = 0.0

    for record, distance in matched:
        weight = 1.0 if tolerance <= 0 else max(0.0, 1.0 - distance / tolerance)
        if weight <= 0.0:
            continue
        total_weight += weight
        if record.is_win:
            weighted_profit += weight * record.realized_profit
            weighted_wins += weight
        else:
            weighted_loss += weight * abs(record.realized_profit)

    if total_weight == 0.0:
        return 0.0

    if weighted_loss > 0:
        profit_factor = min(weighted_profit / weighted_loss, PROFIT_FACTOR_CAP)
    elif weighted_profit > 0:
        profit_factor = PROFIT_FACTOR_CAP
    else:
        profit_factor = 0.0

    win_rate = weighted_wins / total_weight
    return (
        PROFIT_FACTOR_WEIGHT * profit_factor / PROFIT_FACTOR_CAP +
        REAL_WIN_RATE_WEIGHT * win_rate
    )


class FitnessEvaluator:
    """
    Fitness function of the GA

    Wraps the simulator and the trade history for one cycle: the history
    window, the live candidate and the regime filter are fixed at
    construction so every candidate is judged on the same ground.
    """

    def __init__(
        self,
        simulator: BacktestSimulator,
        history: PreparedHistory,
        trade_history: Optional[TradeHistoryTracker] = None,
        live: Optional[Candidate] = None,
        real_performance_weight: float = 0.3,
        min_trade_samples: int = 5,
        tolerance: float = 0.10,
        regime: Optional[str] = None,
    ):
        """
        Args:
            simulator: Strategy evaluator
            history: Bars replayed for every candidate
            trade_history: Live trade log (None = simulation only)
            live: Live candidate (stability penalty reference)
            real_performance_weight: Blend weight w in [0, 1]
            min_trade_samples: Matched trades required before blending
            tolerance: Normalized distance radius for matching trades
            regime: Only match trades taken in this regime (None = all)
        """
        self.simulator = simulator
        self.history = history
        self.trade_history = trade_history
        self.live = live
        self.real_performance_weight = real_performance_weight
        self.min_trade_samples = min_trade_samples
        self.tolerance = tolerance
        self.regime = regime
        self.evaluations = 0

    @classmethod
    def for_cycle(
        cls,
        cfg: EvolutionConfig,
        history: PreparedHistory,
        trade_history: Optional[TradeHistoryTracker],
        live: Optional[Candidate],
        regime: Optional[str] = None,
    ) -> FitnessEvaluator:
        return cls(
            simulator=BacktestSimulator.from_evolution_config(cfg),
            history=history,
            trade_history=trade_history,
            live=live,
            real_performance_weight=cfg.real_performance_weight,
            min_trade_samples=cfg.min_trade_samples,
            tolerance=cfg.parameter_tolerance,
            regime=regime,
        )

    @property
    def bounds(self) -> GeneBounds:
        return self.simulator.bounds

    def simulated_fitness(self, candidate: Candidate) -> float:
        return self.simulator.simulated_fitness(candidate, self.history, self.live)

    def __call__(self, candidate: Candidate) -> float:
        return self.evaluate(candidate)

    def evaluate(self, candidate: Candidate) -> float:
        return self.evaluate_detailed(candidate).fitness

    def evaluate_detailed(self, candidate: Candidate) -> FitnessBreakdown:
        self.evaluations += 1
        simulated = self.simulated_fitness(candidate)

        if simulated <= SENTINEL_FITNESS:
            return FitnessBreakdown(simulated, None, 0, 0.0, simulated)

        matched = []
        if self.trade_history is not None:
            matched = self.trade_history.records_near(candidate, self.tolerance, self.bounds, self.regime)

        # Zero matches always fall through to the simulated score, whatever the threshold
        if not matched or len(matched) < self.min_trade_samples:
            return FitnessBreakdown(simulated, None, len(matched), 0.0, simulated)

        real = real_performance_score(matched, self.tolerance)
        w = self.real_performance_weight
        fitness = (1.0 - w) * simulated + w * real

        _LOG.debug(
            f"Fitness {candidate.short_window}/{candidate.long_window}: "
            f"sim={simulated:.4f} real={real:.4f} ({len(matched)} trades) → {fitness:.4f}"
        )
        return FitnessBreakdown(simulated, real, len(matched), w, fitness)

    def compare(self, baseline: Candidate, optimized: Candidate) -> str:
        """Formatted comparison of two candidates on this cycle's data"""
        before = self.evaluate_detailed(baseline)
        after = self.evaluate_detailed(optimized)
        sim_before = self.simulator.simulate(baseline, self.history, self.live)
        sim_after = self.simulator.simulate(optimized, self.history, self.live)

        def delta(val1, val2):
            diff = val2 - val1
            sign = "+" if diff > 0 else ""
            return f"{sign}{diff:.4f}"

        return f"""
=== PERFORMANCE COMPARISON ===

Fitness:        {before.fitness:.4f} → {after.fitness:.4f} ({delta(before.fitness, after.fitness)})
Simulated:      {before.simulated:.4f} → {after.simulated:.4f}
Real trades:    {before.matched_trades} → {after.matched_trades}

Simulation:
  Trades:       {sim_before.total_trades} → {sim_after.total_trades}
  Win Rate:     {sim_before.win_rate:.1%} → {sim_after.win_rate:.1%}
  Net Profit:   {sim_before.net_profit:+.2f} → {sim_after.net_profit:+.2f}
  Max DD:       {sim_before.max_drawdown:.1%} → {sim_after.max_drawdown:.1%}

Parameters:     {baseline.short_window}/{baseline.long_window} → {optimized.short_window}/{optimized.long_window}
  SL / TP:      {baseline.stop_loss_distance:.2f}/{baseline.take_profit_distance:.2f} → {optimized.stop_loss_distance:.2f}/{optimized.take_profit_distance:.2f}
"""
