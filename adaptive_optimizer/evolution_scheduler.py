"""
Evolution Scheduler - Decides when a GA cycle runs and applies the result

Coordinates the optimization flow:
1. Trigger: periodic (interval elapsed) or reactive (losing trade closed)
2. Mutual exclusion: a trigger while a cycle is running is ignored
3. Cycle: fetch bars, build the fitness function, run the Population Manager
4. Apply the best candidate only on significant improvement
5. Record completion time (whatever the outcome) and persist live state

Only this class writes LiveParameterState.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional
import logging

from termcolor import colored

from adaptive_optimizer.backtest_simulator import BacktestSimulator
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.fitness_evaluator import FitnessEvaluator
from adaptive_optimizer.genetic_algorithm import EvolutionResult, PopulationManager
from adaptive_optimizer.live_state import EvolutionContext
from adaptive_optimizer.market_data import MarketDataProvider
from adaptive_optimizer.regime_classifier import RegimeTransition
from adaptive_optimizer.trade_history import TradeRecord

_LOG = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class CycleOutcome(Enum):
    IMPROVED = "improved"
    NO_IMPROVEMENT = "no_improvement"
    FAILED = "failed"


@dataclass
class CycleReport:
    """Summary of one completed cycle"""
    reason: str
    outcome: CycleOutcome
    started: datetime
    finished: datetime
    regime: Optional[str] = None
    best: Optional[Candidate] = None
    live_fitness: Optional[float] = None
    evaluations: int = 0
    bars: int = 0
    error: Optional[str] = None
    history: Dict[str, list] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reason': self.reason,
            'outcome': self.outcome.value,
            'started': self.started.isoformat(),
            'finished': self.finished.isoformat(),
            'regime': self.regime,
            'best': self.best.to_dict() if self.best else None,
            'live_fitness': self.live_fitness,
            'evaluations': self.evaluations,
            'bars': self.bars,
            'error': self.error,
        }


class EvolutionScheduler:
    """
    Idle/Running state machine around the GA

    Cycles are handed to `submit` so they run as their own processing slice
    of the event loop; without a submitter they run inline.
    """

    def __init__(
        self,
        context: EvolutionContext,
        market_data: MarketDataProvider,
        submit: Optional[Callable[[Callable[[], Any]], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
        random_seed: Optional[int] = None,
    ):
        """
        Args:
            context: Shared evolver state
            market_data: Source of the historical bars to simulate on
            submit: Schedules a cycle job (event loop); None = run inline
            clock: Current time (replays pass the bar clock)
            random_seed: Base GA seed for reproducible runs; each cycle
                offsets it by the number of cycles completed
        """
        self.context = context
        self.market_data = market_data
        self.submit = submit
        self.clock = clock
        self.random_seed = random_seed
        self.last_report: Optional[CycleReport] = None

    @property
    def config(self):
        return self.context.config

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self.context.live.evolution_in_progress else SchedulerState.IDLE

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.config.evolution_interval_minutes)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def is_due(self, now: datetime) -> bool:
        last = self.context.live.last_evolution_time
        return last is None or now - last >= self.interval

    def on_timer(self, now: datetime) -> bool:
        """Periodic trigger; True when a cycle was started"""
        if not self.is_due(now):
            return False
        return self.trigger("timer", now)

    def on_trade_recorded(self, record: TradeRecord, now: datetime) -> bool:
        """Reactive trigger after a losing trade (if enabled)"""
        if record.is_win or not self.config.evolve_after_losses:
            return False
        return self.trigger("loss", now)

    def trigger(self, reason: str, now: datetime) -> bool:
        """
        Start a cycle unless one is already running

        Returns:
            True if a cycle was started/scheduled, False if ignored
        """
        if self.context.live.evolution_in_progress:
            _LOG.debug(f"Evolution trigger '{reason}' ignored: cycle already running")
            return False

        self.context.live.evolution_in_progress = True
        _LOG.info(f"⏰ Evolution triggered ({reason}) at {now:%Y-%m-%d %H:%M}")

        def job():
            return self.run_cycle(reason, started=now)

        if self.submit is None:
            job()
        else:
            self.submit(job)
        return True

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, reason: str = "manual", started: Optional[datetime] = None) -> CycleReport:
        """
        Run one GA cycle end to end

        Never raises: a failing cycle leaves the live parameters untouched.
        """
        live = self.context.live
        live.evolution_in_progress = True
        started = started or self.clock()
        regime = self.context.regime if self.config.regime_separation else None
        report = CycleReport(reason=reason, outcome=CycleOutcome.FAILED, started=started,
                             finished=started, regime=regime)

        try:
            result, bars = self._evolve(regime)
            report.best = result.best
            report.live_fitness = result.live_fitness
            report.evaluations = result.evaluations
            report.bars = bars
            report.history = result.history
            report.outcome = self._apply(result, regime)
        except Exception as e:
            report.error = str(e)
            _LOG.error(f"❌ Evolution cycle failed: {e}", exc_info=True)
        finally:
            # Completion always resets the schedule, improvement or not
            live.evolution_in_progress = False
            live.last_evolution_time = self.clock()
            live.cycles_completed += 1
            live.last_outcome = report.outcome.value
            report.finished = live.last_evolution_time
            self.last_report = report
            self.context.persist()

        _LOG.info(f"CYCLE COMPLETED: {report.outcome.value} | live params {live.active}")
        return report

    def simulation_window(self) -> int:
        """
        Bars to simulate on, capped so bars × evaluations stays bounded
        (never below what the longest allowed window needs)
        """
        cfg = self.config
        minimum = cfg.bounds.long_window[1] + 2
        capped = cfg.max_bar_evaluations // cfg.evaluations_per_cycle
        window = min(cfg.simulation_bars, capped)
        if window < cfg.simulation_bars:
            _LOG.warning(f"⚠️ Simulation window capped to {window} bars (evaluation budget)")
        return max(window, minimum)

    def cycle_seed(self) -> Optional[int]:
        if self.random_seed is None:
            return None
        return self.random_seed + self.context.live.cycles_completed

    def _evolve(self, regime: Optional[str]):
        live = self.context.live
        baseline = live.regime_best.get(regime) if regime else None
        baseline = (baseline or live.active).copy()

        bars = self.market_data.get_bars(self.simulation_window())
        history = BacktestSimulator.prepare(bars)

        fitness_function = FitnessEvaluator.for_cycle(
            self.config, history, self.context.trade_history, live=baseline, regime=regime,
        )
        manager = PopulationManager(self.config, random_seed=self.cycle_seed())
        return manager.run(fitness_function, baseline), len(history)

    def _apply(self, result: EvolutionResult, regime: Optional[str]) -> CycleOutcome:
        live = self.context.live

        if regime and regime not in live.regime_best:
            # First cycle in this regime: the baseline becomes its reference
            live.regime_best[regime] = live.active.copy(fitness=result.live_fitness)

        if not result.improved:
            _LOG.info(
                f"No significant improvement (best {result.best.fitness:.4f} vs live {result.live_fitness:.4f}) "
                f"- keeping current parameters"
            )
            return CycleOutcome.NO_IMPROVEMENT

        previous = live.active
        live.active = result.best.copy()
        if regime:
            live.regime_best[regime] = result.best.copy()

        _LOG.info(colored(
            f"🧬 Parameters updated: MA {previous.short_window}/{previous.long_window} → "
            f"{live.active.short_window}/{live.active.long_window}, "
            f"SL {previous.stop_loss_distance:.2f} → {live.active.stop_loss_distance:.2f}, "
            f"TP {previous.take_profit_distance:.2f} → {live.active.take_profit_distance:.2f} "
            f"({result.improvement_pct:+.1f}%)",
            "green",
        ))
        return CycleOutcome.IMPROVED

    # ------------------------------------------------------------------
    # Regime switching
    # ------------------------------------------------------------------

    def on_regime_change(self, transition: RegimeTransition) -> bool:
        """
        Swap to the stored best of the new regime right away

        Returns:
            True if the live parameters changed
        """
        if not self.config.regime_separation:
            return False

        stored = self.context.live.regime_best.get(transition.current.value)
        if stored is None:
            _LOG.info(f"🌊 No evolved parameters for {transition.current.value} yet - keeping current")
            return False

        if stored.same_genes(self.context.live.active):
            return False

        self.context.live.active = stored.copy()
        self.context.persist()
        _LOG.info(f"🌊 Switched to {transition.current.value} parameters: {stored}")
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Status report: current parameters, time to next cycle, last outcome"""
        now = now or self.clock()
        live = self.context.live
        last = live.last_evolution_time
        if last is None:
            seconds_to_next = 0.0
        else:
            seconds_to_next = max(0.0, (last + self.interval - now).total_seconds())

        return {
            'state': self.state.value,
            'active': live.active.to_dict(),
            'seconds_to_next_cycle': seconds_to_next,
            'last_evolution_time': last.isoformat() if last else None,
            'last_outcome': live.last_outcome,
            'cycles_completed': live.cycles_completed,
            'regime': self.context.regime,
            'regime_best': {label: c.to_dict() for label, c in live.regime_best.items()},
            'trades': self.context.trade_history.get_stats(),
        }
