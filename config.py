"""
General configuration for the adaptive parameter evolver, with .env support.

Lookup order
------------
1. Environment variables (e.g. EVOLVER_POPULATION_SIZE) override everything.
2. Otherwise values are read from a .env file in the project root.
3. Otherwise the defaults below are used.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv, find_dotenv

# ----------------------------------------------------------------------
# Load .env if present
# ----------------------------------------------------------------------
_env_file = find_dotenv(usecwd=True)
if _env_file:
    load_dotenv(_env_file, override=False)  # never overrides variables already set


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ----------------------------------------------------------------------
# Logging Mode
# ----------------------------------------------------------------------
# Possible values: "MINIMAL", "NORMAL", "DETAILED"
# MINIMAL: Only critical events (cycles completed, parameter swaps, errors)
# NORMAL: Standard operations (generations, triggers, regime changes)
# DETAILED: Full debug information (every simulation and repair)
LOG_VERBOSITY = os.getenv("EVOLVER_LOG_VERBOSITY", "NORMAL")

# ==============================================================================
# 🧬 GENETIC ALGORITHM
# ==============================================================================
POPULATION_SIZE = int(os.getenv("EVOLVER_POPULATION_SIZE", "20"))
GENERATIONS = int(os.getenv("EVOLVER_GENERATIONS", "10"))
MUTATION_RATE = float(os.getenv("EVOLVER_MUTATION_RATE", "0.1"))     # per gene
CROSSOVER_RATE = float(os.getenv("EVOLVER_CROSSOVER_RATE", "0.7"))   # per offspring
TOURNAMENT_SIZE = 3

# Gene groups evolved by the GA ("windows", "risk")
ACTIVE_GENE_GROUPS = os.getenv("EVOLVER_ACTIVE_GENES", "windows,risk")

# Result must beat the live candidate by more than 1% to be applied
IMPROVEMENT_MARGIN = 0.01

# ==============================================================================
# 📏 GENE BOUNDS
# ==============================================================================
SHORT_WINDOW_MIN = 5
SHORT_WINDOW_MAX = 50
LONG_WINDOW_MIN = 20
LONG_WINDOW_MAX = 200
MIN_WINDOW_GAP = 5                  # long_window > short_window + gap

STOP_LOSS_MIN = 0.5                 # price units
STOP_LOSS_MAX = 10.0
TAKE_PROFIT_MIN = 0.5
TAKE_PROFIT_MAX = 30.0
RISK_REWARD_MIN = 1.0               # take_profit / stop_loss
RISK_REWARD_MAX = 4.0

# Live baseline used on first start (before any evolution)
DEFAULT_SHORT_WINDOW = 10
DEFAULT_LONG_WINDOW = 30
DEFAULT_STOP_LOSS = 2.0
DEFAULT_TAKE_PROFIT = 4.0

# ==============================================================================
# 📈 STRATEGY SIMULATION
# ==============================================================================
SIGNAL_MODE = os.getenv("EVOLVER_SIGNAL_MODE", "both")  # touch | breakout | both
SIMULATION_BARS = int(os.getenv("EVOLVER_SIMULATION_BARS", "500"))
INITIAL_BALANCE = 10_000.0
LOT_SIZE = 1.0
SPREAD = 0.02                       # price units paid per trade
TARGET_TRADES = 30                  # trade count that earns the full count score
STABILITY_WEIGHT = 0.05             # penalty per unit of distance from live params

# Hard cap on bars × population × (generations + 1) per cycle
MAX_BAR_EVALUATIONS = 2_000_000

# ==============================================================================
# 🔁 REAL PERFORMANCE FEEDBACK
# ==============================================================================
REAL_PERFORMANCE_WEIGHT = float(os.getenv("EVOLVER_REAL_WEIGHT", "0.3"))
MIN_TRADE_SAMPLES = int(os.getenv("EVOLVER_MIN_TRADE_SAMPLES", "5"))
PARAMETER_TOLERANCE = 0.10          # normalized distance radius for "near" records

# ==============================================================================
# ⏰ SCHEDULER
# ==============================================================================
EVOLUTION_INTERVAL_MINUTES = int(os.getenv("EVOLVER_INTERVAL_MINUTES", "240"))
EVOLVE_AFTER_LOSSES = _env_bool("EVOLVER_EVOLVE_AFTER_LOSSES", True)

# ==============================================================================
# 🌊 MARKET REGIME
# ==============================================================================
REGIME_SEPARATION_ENABLED = _env_bool("EVOLVER_REGIME_SEPARATION", False)
REGIME_ADX_PERIOD = 14
REGIME_TREND_THRESHOLD = 25.0       # ADX >= threshold → trending

# ==============================================================================
# 💾 STATE
# ==============================================================================
STATE_DIR = os.getenv("EVOLVER_STATE_DIR", "adaptive_state")
