from __future__ import annotations

import random
from datetime import timedelta

from adaptive_optimizer import evolution_scheduler
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.evolution_config import EvolutionConfig
from adaptive_optimizer.evolution_scheduler import CycleOutcome, EvolutionScheduler, SchedulerState
from adaptive_optimizer.genetic_algorithm import EvolutionResult, PopulationManager
from adaptive_optimizer.live_state import EvolutionContext, StateStore
from adaptive_optimizer.regime_classifier import Regime, RegimeTransition

EVOLVED = Candidate(short_window=14, long_window=55, stop_loss_distance=2.5, take_profit_distance=6.0, fitness=0.9)


def _scheduler(context, market, frame):
    now = frame.index[-1].to_pydatetime()
    return EvolutionScheduler(context, market, clock=lambda: now, random_seed=1), now


def _fixed_result(improved: bool) -> EvolutionResult:
    return EvolutionResult(best=EVOLVED.copy(), live_fitness=0.5, improved=improved, generations=3, evaluations=32)


def test_real_cycle_records_completion(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)

    report = scheduler.run_cycle("timer")

    assert report.outcome in (CycleOutcome.IMPROVED, CycleOutcome.NO_IMPROVEMENT)
    assert report.evaluations > 0
    assert context.live.last_evolution_time == now
    assert context.live.cycles_completed == 1
    assert scheduler.state == SchedulerState.IDLE
    assert not scheduler.is_due(now)
    assert context.live.active.is_valid(context.config.bounds)


def test_no_improvement_keeps_live_parameters(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)
    scheduler._evolve = lambda regime: (_fixed_result(improved=False), 300)
    before = context.live.active.copy()

    report = scheduler.run_cycle("timer")

    assert report.outcome == CycleOutcome.NO_IMPROVEMENT
    assert context.live.active.same_genes(before)
    assert context.live.last_evolution_time == now


def test_improvement_is_applied_and_persisted(context, market, frame, tmp_path):
    scheduler, _ = _scheduler(context, market, frame)
    scheduler._evolve = lambda regime: (_fixed_result(improved=True), 300)

    report = scheduler.run_cycle("loss")

    assert report.outcome == CycleOutcome.IMPROVED
    assert context.live.active.same_genes(EVOLVED)
    restored = StateStore(str(tmp_path / "state")).load(Candidate())
    assert restored.active.same_genes(EVOLVED)
    assert restored.last_outcome == "improved"


def test_failed_cycle_leaves_live_unchanged(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)
    before = context.live.active.copy()

    def broken(count):
        raise RuntimeError("feed offline")

    market.get_bars = broken
    report = scheduler.run_cycle("timer")

    assert report.outcome == CycleOutcome.FAILED
    assert "feed offline" in report.error
    assert context.live.active.same_genes(before)
    assert not context.live.evolution_in_progress
    assert context.live.last_evolution_time == now


def test_trigger_while_running_is_ignored(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)
    context.live.evolution_in_progress = True

    assert scheduler.state == SchedulerState.RUNNING
    assert not scheduler.trigger("timer", now)
    assert context.live.cycles_completed == 0


def test_timer_waits_for_interval(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)
    scheduler._evolve = lambda regime: (_fixed_result(improved=False), 300)

    assert scheduler.is_due(now)
    context.live.last_evolution_time = now - timedelta(minutes=10)
    assert not scheduler.on_timer(now)
    assert scheduler.on_timer(now + scheduler.interval)
    assert context.live.cycles_completed == 1


def test_only_losses_trigger_reactive_cycles(context, market, frame, make_deal):
    scheduler, now = _scheduler(context, market, frame)
    scheduler._evolve = lambda regime: (_fixed_result(improved=False), 300)
    win = context.trade_history.record(make_deal(1, 12.0, Candidate()))
    loss = context.trade_history.record(make_deal(2, -6.0, Candidate()))

    assert not scheduler.on_trade_recorded(win, now)
    assert scheduler.on_trade_recorded(loss, now)

    context.config.evolve_after_losses = False
    assert not scheduler.on_trade_recorded(loss, now + timedelta(hours=1))


def test_simulation_window_respects_evaluation_budget(market, frame):
    cfg = EvolutionConfig(population_size=8, generations=3, simulation_bars=500, max_bar_evaluations=1000)
    scheduler, _ = _scheduler(EvolutionContext.create(cfg), market, frame)

    assert scheduler.simulation_window() == cfg.bounds.long_window[1] + 2

    cfg.max_bar_evaluations = 10_000_000
    assert scheduler.simulation_window() == 500


def test_regime_change_swaps_to_stored_best(small_cfg, market, frame):
    small_cfg.regime_separation = True
    context = EvolutionContext.create(small_cfg)
    scheduler, now = _scheduler(context, market, frame)
    context.live.regime_best['trending'] = EVOLVED.copy()

    changed = scheduler.on_regime_change(RegimeTransition(Regime.RANGING, Regime.TRENDING, 32.0, now))

    assert changed
    assert context.live.active.same_genes(EVOLVED)
    assert not scheduler.on_regime_change(RegimeTransition(Regime.TRENDING, Regime.RANGING, 12.0, now))


def test_regime_change_ignored_without_separation(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)
    context.live.regime_best['trending'] = EVOLVED.copy()

    assert not scheduler.on_regime_change(RegimeTransition(Regime.RANGING, Regime.TRENDING, 32.0, now))
    assert not context.live.active.same_genes(EVOLVED)


def test_cycle_with_separation_stores_regime_baseline(small_cfg, market, frame):
    small_cfg.regime_separation = True
    context = EvolutionContext.create(small_cfg)
    context.regime = 'ranging'
    scheduler, _ = _scheduler(context, market, frame)
    scheduler._evolve = lambda regime: (_fixed_result(improved=False), 300)

    report = scheduler.run_cycle("timer")

    assert report.regime == 'ranging'
    assert context.live.regime_best['ranging'].same_genes(Candidate())


def test_status_reports_next_cycle(context, market, frame):
    scheduler, now = _scheduler(context, market, frame)
    context.live.last_evolution_time = now - timedelta(minutes=40)

    status = scheduler.status(now)

    assert status['state'] == 'idle'
    assert status['seconds_to_next_cycle'] == (context.config.evolution_interval_minutes - 40) * 60
    assert status['active']['short_window'] == context.live.active.short_window
    assert status['trades']['total_trades'] == 0


def test_consecutive_cycles_draw_fresh_random_streams(context, market, frame, monkeypatch):
    scheduler, _ = _scheduler(context, market, frame)
    first_draws = []

    class RecordingManager(PopulationManager):
        def __init__(self, cfg, random_seed=None):
            super().__init__(cfg, random_seed=random_seed)
            first_draws.append(random.random())

    monkeypatch.setattr(evolution_scheduler, "PopulationManager", RecordingManager)

    scheduler.run_cycle("timer")
    scheduler.run_cycle("loss")

    assert len(first_draws) == 2
    assert first_draws[0] != first_draws[1]
    assert scheduler.cycle_seed() == 1 + context.live.cycles_completed
