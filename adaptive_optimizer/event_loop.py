"""
Event Loop - Single-threaded, run-to-completion event processing

External triggers (new bar, timer tick, position opened/closed) are queued
and processed one at a time. An evolution cycle is queued as its own event,
so triggers that arrive before it starts find the scheduler Running and are
dropped.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Optional, Union
import logging

from adaptive_optimizer.evolution_scheduler import EvolutionScheduler
from adaptive_optimizer.live_state import EvolutionContext, LiveParameterController
from adaptive_optimizer.market_data import Bar, MarketDataProvider
from adaptive_optimizer.regime_classifier import RegimeClassifier
from adaptive_optimizer.trade_history import ClosedDeal

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewBarEvent:
    bar: Bar


@dataclass(frozen=True)
class TimerEvent:
    time: datetime


@dataclass(frozen=True)
class PositionOpenedEvent:
    position_id: str
    time: datetime


@dataclass(frozen=True)
class TradeClosedEvent:
    deal: ClosedDeal


@dataclass(frozen=True)
class EvolutionCycleEvent:
    job: Callable[[], Any]


Event = Union[NewBarEvent, TimerEvent, PositionOpenedEvent, TradeClosedEvent, EvolutionCycleEvent]


class EventLoop:
    """Owns the EvolutionContext and routes every event to its component"""

    def __init__(
        self,
        context: EvolutionContext,
        market_data: MarketDataProvider,
        random_seed: Optional[int] = None,
        start_time: Optional[datetime] = None,
    ):
        self.context = context
        self.market_data = market_data
        self.now = start_time or datetime.now()
        self.queue: Deque[Event] = deque()

        self.scheduler = EvolutionScheduler(
            context,
            market_data,
            submit=self._submit_cycle,
            clock=lambda: self.now,
            random_seed=random_seed,
        )
        self.classifier = RegimeClassifier.from_context(context)
        self.controller = LiveParameterController(context)
        self.processed = 0

    def post(self, event: Event):
        self.queue.append(event)

    def _submit_cycle(self, job: Callable[[], Any]):
        self.post(EvolutionCycleEvent(job))

    def process_pending(self) -> int:
        """Drain the queue (including events posted while draining)"""
        count = 0
        while self.queue:
            self._dispatch(self.queue.popleft())
            count += 1
        self.processed += count
        return count

    def _dispatch(self, event: Event):
        try:
            if isinstance(event, NewBarEvent):
                self._on_new_bar(event.bar)
            elif isinstance(event, TimerEvent):
                self.now = max(self.now, event.time)
                self.scheduler.on_timer(self.now)
            elif isinstance(event, PositionOpenedEvent):
                self.context.trade_history.note_position_opened(
                    event.position_id, self.controller.snapshot(), self.context.regime,
                )
            elif isinstance(event, TradeClosedEvent):
                self._on_trade_closed(event.deal)
            elif isinstance(event, EvolutionCycleEvent):
                event.job()
            else:
                _LOG.warning(f"⚠️ Unknown event ignored: {event!r}")
        except Exception as e:
            # The live path keeps running on the last known-good parameters
            _LOG.error(f"❌ Error processing {type(event).__name__}: {e}", exc_info=True)

    def _on_new_bar(self, bar: Bar):
        self.now = max(self.now, bar.time)
        period = self.context.config.regime_adx_period
        transition = self.classifier.update_from_bars(self.market_data.get_bars(period * 3), self.now)
        if transition is not None:
            self.scheduler.on_regime_change(transition)

    def _on_trade_closed(self, deal: ClosedDeal):
        self.now = max(self.now, deal.close_time)
        record = self.context.trade_history.record(deal)
        if record is not None:
            self.scheduler.on_trade_recorded(record, self.now)
