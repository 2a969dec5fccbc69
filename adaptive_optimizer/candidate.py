"""
Candidate - Chromosome for the genetic algorithm

One Candidate is one proposed parameter set for the trend-following strategy
(two moving-average windows and the stop-loss/take-profit distances) plus the
fitness assigned to it during a cycle.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict, replace
from typing import Dict, Any, List, Optional
import math
import random

from adaptive_optimizer.evolution_config import GeneBounds, GeneGroup

GENE_NAMES = ('short_window', 'long_window', 'stop_loss_distance', 'take_profit_distance')
WINDOW_GENES = (0, 1)
RISK_GENES = (2, 3)


@dataclass
class Candidate:
    """
    Chromosome - strategy parameter set

    Genes:
        short_window / long_window: moving-average lookbacks (bars)
        stop_loss_distance / take_profit_distance: exit distances (price units)
    """

    short_window: int = 10
    long_window: int = 30
    stop_loss_distance: float = 2.0
    take_profit_distance: float = 4.0

    # ========================================================================
    # METADATA
    # ========================================================================
    fitness: Optional[float] = None          # None = not scored yet
    generation: int = 0

    @property
    def risk_reward(self) -> float:
        if self.stop_loss_distance <= 0:
            return math.inf
        return self.take_profit_distance / self.stop_loss_distance

    def to_genes(self) -> List[float]:
        """Chromosome as a flat list (DEAP individual layout)"""
        return [
            float(self.short_window),
            float(self.long_window),
            float(self.stop_loss_distance),
            float(self.take_profit_distance),
        ]

    @classmethod
    def from_genes(cls, genes: List[float], fitness: Optional[float] = None, generation: int = 0) -> Candidate:
        return cls(
            short_window=int(round(genes[0])),
            long_window=int(round(genes[1])),
            stop_loss_distance=float(genes[2]),
            take_profit_distance=float(genes[3]),
            fitness=fitness,
            generation=generation,
        )

    def same_genes(self, other: Candidate) -> bool:
        return self.to_genes() == other.to_genes()

    def copy(self, **changes) -> Candidate:
        return replace(self, **changes)

    def is_valid(self, bounds: GeneBounds) -> bool:
        """True when every gene and structural invariant holds"""
        genes = self.to_genes()
        if any(math.isnan(g) or math.isinf(g) for g in genes):
            return False
        if not bounds.short_window[0] <= self.short_window <= bounds.short_window[1]:
            return False
        if not bounds.long_window[0] <= self.long_window <= bounds.long_window[1]:
            return False
        if self.long_window <= self.short_window + bounds.min_gap:
            return False
        if not bounds.stop_loss[0] <= self.stop_loss_distance <= bounds.stop_loss[1]:
            return False
        if not bounds.take_profit[0] <= self.take_profit_distance <= bounds.take_profit[1]:
            return False
        rr_min, rr_max = bounds.risk_reward
        # Small tolerance: the midpoint repair can land a float ulp outside
        return rr_min - 1e-9 <= self.risk_reward <= rr_max + 1e-9

    def distance(self, other: Candidate, bounds: GeneBounds) -> float:
        """
        Normalized Euclidean distance in [0, 1]

        Every gene is scaled by the width of its range so windows and
        price distances weigh the same.
        """
        total = 0.0
        for name in GENE_NAMES:
            delta = (getattr(self, name) - getattr(other, name)) / bounds.span(name)
            total += delta * delta
        return min(1.0, math.sqrt(total / len(GENE_NAMES)))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Candidate:
        known = {k: data[k] for k in ('short_window', 'long_window', 'stop_loss_distance',
                                      'take_profit_distance', 'fitness', 'generation') if k in data}
        candidate = cls(**known)
        candidate.short_window = int(candidate.short_window)
        candidate.long_window = int(candidate.long_window)
        candidate.stop_loss_distance = float(candidate.stop_loss_distance)
        candidate.take_profit_distance = float(candidate.take_profit_distance)
        return candidate

    @classmethod
    def from_config(cls) -> Candidate:
        """Default live baseline from config.py"""
        import config

        return cls(
            short_window=config.DEFAULT_SHORT_WINDOW,
            long_window=config.DEFAULT_LONG_WINDOW,
            stop_loss_distance=config.DEFAULT_STOP_LOSS,
            take_profit_distance=config.DEFAULT_TAKE_PROFIT,
        )

    def __repr__(self) -> str:
        fitness = "unset" if self.fitness is None else f"{self.fitness:.4f}"
        return (
            f"Candidate(gen={self.generation}, fitness={fitness}, "
            f"ma={self.short_window}/{self.long_window}, "
            f"sl={self.stop_loss_distance:.2f}, tp={self.take_profit_distance:.2f})"
        )


# ============================================================================
# REPAIR
# ============================================================================

def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return (low + high) / 2.0
    return max(low, min(high, value))


def repair_genes(genes: List[float], bounds: GeneBounds) -> List[float]:
    """
    Clamp every gene to its legal range and restore the invariants

    1. windows rounded to integers and clamped
    2. long_window pushed up until long > short + min_gap
    3. risk distances clamped; an out-of-range TP/SL ratio is fixed by
       recomputing TP from the midpoint of the allowed ratio range

    Returns:
        A new gene list (input untouched)
    """
    short = int(round(_clamp(genes[0], *bounds.short_window)))
    long_ = int(round(_clamp(genes[1], *bounds.long_window)))

    # GeneBounds guarantees short max + min_gap < long max, so this stays in range
    required_long = short + bounds.min_gap + 1
    if long_ < required_long:
        long_ = required_long

    stop_loss = _clamp(genes[2], *bounds.stop_loss)
    take_profit = _clamp(genes[3], *bounds.take_profit)

    rr_min, rr_max = bounds.risk_reward
    ratio = take_profit / stop_loss
    if not rr_min <= ratio <= rr_max:
        take_profit = _clamp(stop_loss * bounds.risk_reward_mid, *bounds.take_profit)
        ratio = take_profit / stop_loss
        if not rr_min <= ratio <= rr_max:
            # TP hit its own bound: move SL instead
            stop_loss = _clamp(take_profit / bounds.risk_reward_mid, *bounds.stop_loss)

    return [float(short), float(long_), stop_loss, take_profit]


def repair_candidate(candidate: Candidate, bounds: GeneBounds) -> Candidate:
    """Repaired copy of a candidate (fitness is reset when genes change)"""
    repaired = repair_genes(candidate.to_genes(), bounds)
    if repaired == candidate.to_genes():
        return candidate.copy()
    return Candidate.from_genes(repaired, fitness=None, generation=candidate.generation)


# ============================================================================
# RANDOM CREATION
# ============================================================================

def random_genes(
    bounds: GeneBounds,
    base: Optional[Candidate] = None,
    active: GeneGroup = GeneGroup.ALL,
) -> List[float]:
    """
    Uniformly random genes within bounds

    Inactive gene groups are copied from `base` (the live candidate).
    """
    base = base or Candidate()
    genes = base.to_genes()

    if GeneGroup.WINDOWS in active:
        short = random.randint(bounds.short_window[0], bounds.short_window[1])
        long_low = max(bounds.long_window[0], short + bounds.min_gap + 1)
        long_ = random.randint(long_low, bounds.long_window[1])
        genes[0], genes[1] = float(short), float(long_)

    if GeneGroup.RISK in active:
        stop_loss = random.uniform(*bounds.stop_loss)
        # Sample TP inside the part of its range that keeps the ratio legal
        tp_low = max(bounds.take_profit[0], stop_loss * bounds.risk_reward[0])
        tp_high = min(bounds.take_profit[1], stop_loss * bounds.risk_reward[1])
        if tp_low <= tp_high:
            take_profit = random.uniform(tp_low, tp_high)
        else:
            take_profit = random.uniform(*bounds.take_profit)
        genes[2], genes[3] = stop_loss, take_profit

    return repair_genes(genes, bounds)
