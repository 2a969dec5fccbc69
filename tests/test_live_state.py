from __future__ import annotations

from datetime import datetime

import pytest

import config
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.evolution_config import EvolutionConfig, GeneBounds
from adaptive_optimizer.live_state import (
    EvolutionContext,
    LiveParameterController,
    LiveParameterState,
    StateStore,
)


def test_state_round_trips_through_store(tmp_path):
    store = StateStore(str(tmp_path))
    state = LiveParameterState(
        active=Candidate(short_window=12, long_window=48, stop_loss_distance=1.5, take_profit_distance=4.5),
        last_evolution_time=datetime(2024, 5, 1, 12, 0),
        evolution_in_progress=True,
        regime_best={'trending': Candidate(short_window=8, long_window=40)},
        last_outcome="improved",
        cycles_completed=7,
    )

    assert store.save(state)
    restored = store.load(Candidate())

    assert restored.active.same_genes(state.active)
    assert restored.last_evolution_time == state.last_evolution_time
    assert restored.regime_best['trending'].short_window == 8
    assert restored.cycles_completed == 7
    assert not restored.evolution_in_progress


def test_missing_or_corrupt_state_falls_back_to_default(tmp_path):
    default = Candidate(short_window=9, long_window=27)
    store = StateStore(str(tmp_path))

    assert store.load(default).active.same_genes(default)

    store.state_file.write_text("[]", encoding='utf-8')
    assert store.load(default).active.same_genes(default)


def test_context_starts_from_defaults_when_both_files_are_malformed(small_cfg, tmp_path):
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    (state_dir / "live_state.json").write_text("[]", encoding='utf-8')
    (state_dir / "trade_history.json").write_text("[]", encoding='utf-8')

    context = EvolutionContext.create(small_cfg, state_dir=str(state_dir))

    assert context.live.active.same_genes(Candidate())
    assert len(context.trade_history) == 0


def test_restored_params_outside_bounds_are_repaired(small_cfg, tmp_path):
    state_dir = str(tmp_path / "state")
    StateStore(state_dir).save(LiveParameterState(
        active=Candidate(short_window=2, long_window=30),
        regime_best={'ranging': Candidate(short_window=40, long_window=42)},
    ))

    context = EvolutionContext.create(small_cfg, state_dir=state_dir)

    assert context.live.active.is_valid(small_cfg.bounds)
    assert context.live.regime_best['ranging'].is_valid(small_cfg.bounds)


def test_save_failure_is_reported_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding='utf-8')

    assert not StateStore(str(blocker / "state")).save(LiveParameterState())


def test_context_restores_state_and_history(small_cfg, tmp_path, make_deal):
    state_dir = str(tmp_path / "state")
    context = EvolutionContext.create(small_cfg, state_dir=state_dir)
    context.live.active = Candidate(short_window=11, long_window=33)
    context.persist()
    context.trade_history.record(make_deal(1, -2.0, position_id="untracked"))

    restored = EvolutionContext.create(small_cfg, state_dir=state_dir)

    assert restored.live.active.short_window == 11
    assert len(restored.trade_history) == 1
    assert restored.trade_history.records()[0].parameter_set_snapshot.short_window == 11


def test_order_levels(context):
    context.live.active = Candidate(stop_loss_distance=2.0, take_profit_distance=5.0)
    controller = LiveParameterController(context)

    assert controller.order_levels('BUY', 100.0) == {'stop_loss': 98.0, 'take_profit': 105.0}
    assert controller.order_levels('sell', 100.0) == {'stop_loss': 102.0, 'take_profit': 95.0}
    with pytest.raises(ValueError):
        controller.order_levels('HOLD', 100.0)


def test_snapshot_is_a_copy(context):
    controller = LiveParameterController(context)
    snapshot = controller.snapshot()
    snapshot.short_window = 49

    assert context.live.active.short_window != 49


def test_config_module_builds_evolution_config():
    cfg = EvolutionConfig.from_config()

    assert cfg.population_size == config.POPULATION_SIZE
    assert cfg.bounds.short_window == (config.SHORT_WINDOW_MIN, config.SHORT_WINDOW_MAX)
    assert Candidate.from_config().is_valid(cfg.bounds)
    assert cfg.to_dict()['signal_mode'] == config.SIGNAL_MODE.lower()


def test_invalid_configuration_is_rejected():
    with pytest.raises(AssertionError):
        EvolutionConfig(population_size=1)
    with pytest.raises(AssertionError):
        GeneBounds(short_window=(5, 50), long_window=(20, 50), min_gap=5)
