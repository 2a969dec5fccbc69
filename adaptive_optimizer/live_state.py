"""
Live State - The parameters the trading logic is running with

`EvolutionContext` is the one owned object holding every piece of mutable
state shared between components (live parameters, in-progress flag,
per-regime bests, trade history). It is passed by reference; only the
Evolution Scheduler writes `LiveParameterState`.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import json
import logging

from adaptive_optimizer.candidate import Candidate, repair_candidate
from adaptive_optimizer.evolution_config import EvolutionConfig
from adaptive_optimizer.trade_history import TradeHistoryTracker

_LOG = logging.getLogger(__name__)


@dataclass
class LiveParameterState:
    """Active candidate plus the scheduler's bookkeeping"""
    active: Candidate = field(default_factory=Candidate)
    last_evolution_time: Optional[datetime] = None
    evolution_in_progress: bool = False
    regime_best: Dict[str, Candidate] = field(default_factory=dict)
    last_outcome: str = "never_run"
    cycles_completed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'active': self.active.to_dict(),
            'last_evolution_time': self.last_evolution_time.isoformat() if self.last_evolution_time else None,
            'regime_best': {label: c.to_dict() for label, c in self.regime_best.items()},
            'last_outcome': self.last_outcome,
            'cycles_completed': self.cycles_completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LiveParameterState:
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        last = data.get('last_evolution_time')
        return cls(
            active=Candidate.from_dict(data['active']),
            last_evolution_time=datetime.fromisoformat(last) if last else None,
            # A cycle cannot survive a restart
            evolution_in_progress=False,
            regime_best={label: Candidate.from_dict(c) for label, c in data.get('regime_best', {}).items()},
            last_outcome=data.get('last_outcome', "never_run"),
            cycles_completed=int(data.get('cycles_completed', 0)),
        )


class StateStore:
    """
    JSON persistence of the live state between sessions

    Read/write failures are logged and never raised: the bot keeps trading
    with in-memory defaults.
    """

    def __init__(self, state_dir: str = "adaptive_state"):
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / "live_state.json"
        self.trade_history_file = self.state_dir / "trade_history.json"

    def load(self, default: Candidate) -> LiveParameterState:
        if not self.state_file.exists():
            _LOG.info(f"💾 No saved live state in {self.state_dir}, starting from defaults")
            return LiveParameterState(active=default.copy())

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                state = LiveParameterState.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            _LOG.error(f"❌ Live state unreadable ({self.state_file}): {e} - using defaults")
            return LiveParameterState(active=default.copy())

        _LOG.info(f"💾 Live state restored: {state.active}")
        return state

    def save(self, state: LiveParameterState) -> bool:
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            tmp_file = self.state_file.with_suffix(".tmp")
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(state.to_dict(), f, indent=2)
            tmp_file.replace(self.state_file)
            return True
        except OSError as e:
            _LOG.error(f"❌ Error saving live state: {e}")
            return False


@dataclass
class EvolutionContext:
    """Everything the evolver components share, owned by the event loop"""
    config: EvolutionConfig
    live: LiveParameterState
    trade_history: TradeHistoryTracker
    store: Optional[StateStore] = None
    regime: Optional[str] = None
    regime_updated: Optional[datetime] = None
    trend_strength: Optional[float] = None

    @classmethod
    def create(
        cls,
        config: EvolutionConfig,
        state_dir: Optional[str] = None,
        default: Optional[Candidate] = None,
    ) -> EvolutionContext:
        """
        Build a context, restoring persisted state when a state dir is given

        Args:
            config: Evolution configuration
            state_dir: Directory with live_state.json / trade_history.json
            default: Live candidate to start from when nothing is saved
        """
        default = default or Candidate()
        store = StateStore(state_dir) if state_dir is not None else None
        live = store.load(default) if store else LiveParameterState(active=default.copy())
        _repair_restored(live, config)

        trade_history = TradeHistoryTracker(
            json_file=str(store.trade_history_file) if store else None,
            fallback_snapshot=lambda: live.active.copy(),
        )
        return cls(config=config, live=live, trade_history=trade_history, store=store)

    def active_snapshot(self) -> Candidate:
        return self.live.active.copy()

    def persist(self):
        if self.store is not None:
            self.store.save(self.live)


def _repair_restored(live: LiveParameterState, config: EvolutionConfig):
    """Bring restored candidates back inside the configured gene bounds"""
    if not live.active.is_valid(config.bounds):
        _LOG.warning(f"⚠️ Live params {live.active} outside bounds, repaired")
        live.active = repair_candidate(live.active, config.bounds)
    for label, best in list(live.regime_best.items()):
        if not best.is_valid(config.bounds):
            live.regime_best[label] = repair_candidate(best, config.bounds)


class LiveParameterController:
    """
    Read-side view of the live parameters for the trading logic

    The trading logic never writes here; it asks for the current windows
    and for the exit levels of new orders.
    """

    def __init__(self, context: EvolutionContext):
        self.context = context

    @property
    def active(self) -> Candidate:
        return self.context.live.active

    def snapshot(self) -> Candidate:
        """Copy used to tag a newly opened position"""
        return self.context.active_snapshot()

    def order_levels(self, direction: str, entry_price: float) -> Dict[str, float]:
        """
        Stop-loss / take-profit prices for a new order

        Args:
            direction: 'BUY' or 'SELL'
            entry_price: Expected fill price

        Returns:
            {'stop_loss': price, 'take_profit': price}
        """
        active = self.active
        if direction.upper() == 'BUY':
            return {
                'stop_loss': entry_price - active.stop_loss_distance,
                'take_profit': entry_price + active.take_profit_distance,
            }
        if direction.upper() == 'SELL':
            return {
                'stop_loss': entry_price + active.stop_loss_distance,
                'take_profit': entry_price - active.take_profit_distance,
            }
        raise ValueError(f"Unknown direction: {direction}")
