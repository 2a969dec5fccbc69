"""
Evolution Config - Hyperparameters and gene bounds for the evolver

Groups the GA hyperparameters, the legal range of every gene and the
feedback/scheduling knobs into one validated object shared by the
Population Manager, the Fitness Evaluator and the Evolution Scheduler.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum, Flag, auto
from typing import Dict, Any, Tuple


class EvolutionError(Exception):
    """Base error of the evolver (configuration and programming errors only)"""


class GeneGroup(Flag):
    """Gene groups the GA is allowed to touch"""
    WINDOWS = auto()   # short_window, long_window
    RISK = auto()      # stop_loss_distance, take_profit_distance
    ALL = WINDOWS | RISK

    @classmethod
    def parse(cls, text: str) -> GeneGroup:
        """Parse "windows,risk" style strings"""
        groups = cls(0)
        for token in text.split(","):
            token = token.strip().upper()
            if not token:
                continue
            if token not in cls.__members__:
                raise EvolutionError(f"Unknown gene group: {token}")
            groups |= cls[token]
        return groups


class SignalMode(Enum):
    """Entry rule replayed by the strategy evaluator"""
    TOUCH = "touch"
    BREAKOUT = "breakout"
    BOTH = "both"


@dataclass(frozen=True)
class GeneBounds:
    """Legal range of every gene plus the structural invariants"""
    short_window: Tuple[int, int] = (5, 50)
    long_window: Tuple[int, int] = (20, 200)
    min_gap: int = 5
    stop_loss: Tuple[float, float] = (0.5, 10.0)
    take_profit: Tuple[float, float] = (0.5, 30.0)
    risk_reward: Tuple[float, float] = (1.0, 4.0)

    def __post_init__(self):
        assert self.short_window[0] >= 1, "short_window minimum must be >= 1"
        assert self.short_window[0] <= self.short_window[1], "Invalid short_window range"
        assert self.long_window[0] <= self.long_window[1], "Invalid long_window range"
        assert self.min_gap >= 0, "min_gap must be >= 0"
        # The largest short window must still leave room for a legal long window
        assert self.short_window[1] + self.min_gap < self.long_window[1], \
            "long_window max too small for short_window max + min_gap"
        assert 0.0 < self.stop_loss[0] <= self.stop_loss[1], "Invalid stop_loss range"
        assert 0.0 < self.take_profit[0] <= self.take_profit[1], "Invalid take_profit range"
        assert 0.0 < self.risk_reward[0] <= self.risk_reward[1], "Invalid risk_reward range"

    @property
    def risk_reward_mid(self) -> float:
        return (self.risk_reward[0] + self.risk_reward[1]) / 2.0

    def span(self, gene: str) -> float:
        """Width of a gene range (used to normalize distances)"""
        low, high = {
            'short_window': self.short_window,
            'long_window': self.long_window,
            'stop_loss_distance': self.stop_loss,
            'take_profit_distance': self.take_profit,
        }[gene]
        return float(high - low) or 1.0


@dataclass
class EvolutionConfig:
    """
    Complete configuration of one evolver instance

    Detailed business validation is the caller's job; __post_init__ only
    rejects values that would make the GA ill-defined.
    """

    # ========================================================================
    # 1. GA HYPERPARAMETERS
    # ========================================================================
    population_size: int = 20
    generations: int = 10
    mutation_rate: float = 0.1
    crossover_rate: float = 0.7
    tournament_size: int = 3
    active_genes: GeneGroup = GeneGroup.ALL
    improvement_margin: float = 0.01

    # ========================================================================
    # 2. GENE BOUNDS
    # ========================================================================
    bounds: GeneBounds = field(default_factory=GeneBounds)

    # ========================================================================
    # 3. SIMULATION
    # ========================================================================
    signal_mode: SignalMode = SignalMode.BOTH
    simulation_bars: int = 500
    initial_balance: float = 10_000.0
    lot_size: float = 1.0
    spread: float = 0.02
    target_trades: int = 30
    stability_weight: float = 0.05
    max_bar_evaluations: int = 2_000_000

    # ========================================================================
    # 4. REAL PERFORMANCE FEEDBACK
    # ========================================================================
    real_performance_weight: float = 0.3
    min_trade_samples: int = 5
    parameter_tolerance: float = 0.10

    # ========================================================================
    # 5. SCHEDULING & REGIME
    # ========================================================================
    evolution_interval_minutes: int = 240
    evolve_after_losses: bool = True
    regime_separation: bool = False
    regime_adx_period: int = 14
    regime_trend_threshold: float = 25.0

    def __post_init__(self):
        assert self.population_size >= 2, "population_size must be >= 2"
        assert self.generations >= 1, "generations must be >= 1"
        assert 0.0 <= self.mutation_rate <= 1.0, "mutation_rate must be in [0, 1]"
        assert 0.0 <= self.crossover_rate <= 1.0, "crossover_rate must be in [0, 1]"
        assert self.tournament_size >= 1, "tournament_size must be >= 1"
        assert self.improvement_margin >= 0.0, "improvement_margin must be >= 0"
        assert 0.0 <= self.real_performance_weight <= 1.0, "real_performance_weight must be in [0, 1]"
        assert self.min_trade_samples >= 0, "min_trade_samples must be >= 0"
        assert self.parameter_tolerance >= 0.0, "parameter_tolerance must be >= 0"
        assert self.initial_balance > 0.0, "initial_balance must be > 0"
        assert self.target_trades >= 1, "target_trades must be >= 1"
        assert self.evolution_interval_minutes > 0, "evolution_interval_minutes must be > 0"

    @property
    def evaluations_per_cycle(self) -> int:
        """Number of candidate simulations one cycle may run"""
        return self.population_size * (self.generations + 1)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['active_genes'] = [g.name.lower() for g in GeneGroup if g in self.active_genes and g is not GeneGroup.ALL]
        data['signal_mode'] = self.signal_mode.value
        return data

    @classmethod
    def from_config(cls) -> EvolutionConfig:
        """
        Build the configuration from the root config.py module
        (environment/.env overrides already applied there)
        """
        import config

        bounds = GeneBounds(
            short_window=(config.SHORT_WINDOW_MIN, config.SHORT_WINDOW_MAX),
            long_window=(config.LONG_WINDOW_MIN, config.LONG_WINDOW_MAX),
            min_gap=config.MIN_WINDOW_GAP,
            stop_loss=(config.STOP_LOSS_MIN, config.STOP_LOSS_MAX),
            take_profit=(config.TAKE_PROFIT_MIN, config.TAKE_PROFIT_MAX),
            risk_reward=(config.RISK_REWARD_MIN, config.RISK_REWARD_MAX),
        )

        return cls(
            population_size=config.POPULATION_SIZE,
            generations=config.GENERATIONS,
            mutation_rate=config.MUTATION_RATE,
            crossover_rate=config.CROSSOVER_RATE,
            tournament_size=getattr(config, 'TOURNAMENT_SIZE', 3),
            active_genes=GeneGroup.parse(config.ACTIVE_GENE_GROUPS),
            improvement_margin=config.IMPROVEMENT_MARGIN,
            bounds=bounds,
            signal_mode=SignalMode(config.SIGNAL_MODE.lower()),
            simulation_bars=config.SIMULATION_BARS,
            initial_balance=config.INITIAL_BALANCE,
            lot_size=config.LOT_SIZE,
            spread=config.SPREAD,
            target_trades=config.TARGET_TRADES,
            stability_weight=config.STABILITY_WEIGHT,
            max_bar_evaluations=config.MAX_BAR_EVALUATIONS,
            real_performance_weight=config.REAL_PERFORMANCE_WEIGHT,
            min_trade_samples=config.MIN_TRADE_SAMPLES,
            parameter_tolerance=config.PARAMETER_TOLERANCE,
            evolution_interval_minutes=config.EVOLUTION_INTERVAL_MINUTES,
            evolve_after_losses=config.EVOLVE_AFTER_LOSSES,
            regime_separation=config.REGIME_SEPARATION_ENABLED,
            regime_adx_period=config.REGIME_ADX_PERIOD,
            regime_trend_threshold=config.REGIME_TREND_THRESHOLD,
        )
