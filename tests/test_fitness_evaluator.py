from __future__ import annotations

import pytest

from adaptive_optimizer.backtest_simulator import SENTINEL_FITNESS, BacktestSimulator
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.fitness_evaluator import FitnessEvaluator, real_performance_score
from adaptive_optimizer.trade_history import TradeHistoryTracker


def _tracker_with(make_deal, profits, candidate):
    tracker = TradeHistoryTracker()
    tracker.scan([make_deal(i + 1, p, candidate) for i, p in enumerate(profits)])
    return tracker


def test_without_trade_history_fitness_is_simulated(history):
    evaluator = FitnessEvaluator(BacktestSimulator(), history)
    candidate = Candidate()

    assert evaluator(candidate) == evaluator.simulated_fitness(candidate)


def test_below_minimum_samples_fitness_is_simulated_exactly(history, make_deal):
    tracker = _tracker_with(make_deal, [10.0, 12.0], Candidate())
    evaluator = FitnessEvaluator(BacktestSimulator(), history, tracker, min_trade_samples=5)

    breakdown = evaluator.evaluate_detailed(Candidate())

    assert not breakdown.used_real_trades
    assert breakdown.matched_trades == 2
    assert breakdown.fitness == breakdown.simulated


def test_zero_matches_fall_back_even_with_zero_threshold(history, make_deal):
    far = Candidate(short_window=45, long_window=190, stop_loss_distance=9.0, take_profit_distance=25.0)
    tracker = _tracker_with(make_deal, [10.0, -2.0], far)
    evaluator = FitnessEvaluator(BacktestSimulator(), history, tracker, min_trade_samples=0)

    assert evaluator(Candidate()) == evaluator.simulated_fitness(Candidate())


def test_profitable_matching_trades_give_positive_real_score(history, make_deal):
    tracker = _tracker_with(make_deal, [10.0, 15.0, 8.0], Candidate(short_window=10, long_window=30))
    evaluator = FitnessEvaluator(BacktestSimulator(), history, tracker,
                                 real_performance_weight=0.3, min_trade_samples=1)

    breakdown = evaluator.evaluate_detailed(Candidate(short_window=10, long_window=30))

    assert breakdown.used_real_trades
    assert breakdown.real > 0.0
    assert breakdown.real == pytest.approx(1.0)
    assert breakdown.fitness == pytest.approx(0.7 * breakdown.simulated + 0.3 * breakdown.real)


def test_sentinel_is_never_blended(history, make_deal):
    tracker = _tracker_with(make_deal, [10.0, 15.0, 8.0], Candidate())
    evaluator = FitnessEvaluator(BacktestSimulator(), history, tracker, min_trade_samples=1)

    assert evaluator(Candidate(short_window=10, long_window=12)) == SENTINEL_FITNESS


def test_real_score_combines_profit_factor_and_win_rate(make_deal):
    tracker = _tracker_with(make_deal, [30.0, -10.0], Candidate())
    matched = [(record, 0.0) for record in tracker.records()]

    # PF 3 → 0.5 × 0.3, win rate 50% → 0.5 × 0.5
    assert real_performance_score(matched, 0.10) == pytest.approx(0.40)


def test_real_score_caps_profit_factor_without_losses(make_deal):
    tracker = _tracker_with(make_deal, [1.0], Candidate())
    matched = [(record, 0.0) for record in tracker.records()]

    assert real_performance_score(matched, 0.10) == pytest.approx(1.0)


def test_trades_at_the_tolerance_edge_carry_no_weight(make_deal):
    tracker = _tracker_with(make_deal, [50.0], Candidate())
    matched = [(record, 0.10) for record in tracker.records()]

    assert real_performance_score(matched, 0.10) == 0.0
    assert real_performance_score(matched, 0.0) == pytest.approx(1.0)


def test_trades_exactly_at_the_radius_do_not_count_as_samples(history, bounds, make_deal):
    neighbour = Candidate(short_window=12, long_window=34)
    radius = Candidate().distance(neighbour, bounds)
    tracker = _tracker_with(make_deal, [40.0, 25.0], neighbour)
    evaluator = FitnessEvaluator(BacktestSimulator(), history, tracker, min_trade_samples=1, tolerance=radius)

    breakdown = evaluator.evaluate_detailed(Candidate())

    assert tracker.records_near(Candidate(), radius, bounds) == []
    assert len(tracker.records_near(Candidate(), radius * 1.01, bounds)) == 2
    assert not breakdown.used_real_trades
    assert breakdown.fitness == breakdown.simulated


def test_closer_trades_weigh_more(make_deal):
    tracker = _tracker_with(make_deal, [10.0, -10.0], Candidate())
    win, loss = tracker.records()

    win_closer = real_performance_score([(win, 0.01), (loss, 0.09)], 0.10)
    loss_closer = real_performance_score([(win, 0.09), (loss, 0.01)], 0.10)

    assert win_closer > loss_closer


def test_evaluations_are_counted(history):
    evaluator = FitnessEvaluator(BacktestSimulator(), history)
    evaluator(Candidate())
    evaluator.evaluate(Candidate(short_window=12))

    assert evaluator.evaluations == 2


def test_compare_reports_both_candidates(history):
    evaluator = FitnessEvaluator(BacktestSimulator(), history)

    report = evaluator.compare(Candidate(), Candidate(short_window=15, long_window=50))

    assert "PERFORMANCE COMPARISON" in report
    assert "10/30 → 15/50" in report
