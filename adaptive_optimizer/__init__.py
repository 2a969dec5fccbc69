"""
Adaptive Optimizer Module

Genetic algorithm that keeps the trend strategy's parameters tuned online,
blending historical simulation with the outcome of real trades.

Components:
- evolution_config.py: Hyperparameters, gene bounds, gene groups
- candidate.py: Chromosome (Candidate) and repair
- market_data.py: Bars and the market-data provider interface
- backtest_simulator.py: Strategy replay on historical bars
- trade_history.py: Log of closed live trades
- fitness_evaluator.py: Simulated/real fitness blend
- genetic_algorithm.py: GA engine (DEAP library)
- live_state.py: Live parameters, shared context, persistence
- regime_classifier.py: Trending/ranging classification (ADX)
- evolution_scheduler.py: When cycles run and how results are applied
- event_loop.py: Single-threaded event processing
"""

__version__ = "1.0.0"
