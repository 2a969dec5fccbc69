"""
📝 TRADE HISTORY TRACKER

Append-only log of the strategy's closed live trades, each tagged with the
parameter set that was active when the position was opened. Feeds the real
performance half of the fitness function.

- Idempotent: every deal carries a monotonically increasing ticket; deals at
  or below the last-seen cursor are ignored
- Restart safe: the log and the cursor are persisted as JSON; aggregates are
  always rebuilt from the log on load, never trusted from disk
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Any, Iterable, List, Optional, Tuple
import json
import logging

import numpy as np

from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.evolution_config import GeneBounds

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClosedDeal:
    """Trade-closed event from the execution layer"""
    ticket: int
    position_id: str
    open_time: datetime
    close_time: datetime
    realized_profit: float
    direction: str                                 # 'BUY' / 'SELL'
    parameter_set: Optional[Candidate] = None      # set when the order was tagged at entry


@dataclass(frozen=True)
class TradeRecord:
    """One closed live trade (never mutated once logged)"""
    ticket: int
    open_time: datetime
    close_time: datetime
    realized_profit: float
    parameter_set_snapshot: Candidate
    direction: str
    regime: Optional[str] = None

    @property
    def is_win(self) -> bool:
        return self.realized_profit > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticket': self.ticket,
            'open_time': self.open_time.isoformat(),
            'close_time': self.close_time.isoformat(),
            'realized_profit': self.realized_profit,
            'parameter_set_snapshot': self.parameter_set_snapshot.to_dict(),
            'direction': self.direction,
            'regime': self.regime,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TradeRecord:
        return cls(
            ticket=int(data['ticket']),
            open_time=datetime.fromisoformat(data['open_time']),
            close_time=datetime.fromisoformat(data['close_time']),
            realized_profit=float(data['realized_profit']),
            parameter_set_snapshot=Candidate.from_dict(data['parameter_set_snapshot']),
            direction=data['direction'],
            regime=data.get('regime'),
        )


@dataclass
class TradeAggregates:
    """Running win/loss totals over the whole log"""
    wins: int = 0
    losses: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0           # positive number
    consecutive_losses: int = 0

    @property
    def total_trades(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades if self.total_trades else 0.0

    @property
    def net_profit(self) -> float:
        return self.gross_profit - self.gross_loss

    def add(self, record: TradeRecord):
        if record.is_win:
            self.wins += 1
            self.gross_profit += record.realized_profit
            self.consecutive_losses = 0
        else:
            # Break-even trades count as losses (they paid costs)
            self.losses += 1
            self.gross_loss += abs(record.realized_profit)
            self.consecutive_losses += 1

    @classmethod
    def from_records(cls, records: Iterable[TradeRecord]) -> TradeAggregates:
        aggregates = cls()
        for record in records:
            aggregates.add(record)
        return aggregates

    def matches(self, other: TradeAggregates) -> bool:
        return (
            self.wins == other.wins and self.losses == other.losses and
            np.isclose(self.gross_profit, other.gross_profit) and
            np.isclose(self.gross_loss, other.gross_loss)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'wins': self.wins,
            'losses': self.losses,
            'gross_profit': self.gross_profit,
            'gross_loss': self.gross_loss,
            'consecutive_losses': self.consecutive_losses,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TradeAggregates:
        return cls(
            wins=int(data.get('wins', 0)),
            losses=int(data.get('losses', 0)),
            gross_profit=float(data.get('gross_profit', 0.0)),
            gross_loss=float(data.get('gross_loss', 0.0)),
            consecutive_losses=int(data.get('consecutive_losses', 0)),
        )


class TradeHistoryTracker:
    """Tracker for closed live trades and their parameter snapshots"""

    def __init__(
        self,
        json_file: Optional[str] = None,
        fallback_snapshot: Optional[Callable[[], Candidate]] = None,
    ):
        """
        Args:
            json_file: Persistence file (None = in-memory only)
            fallback_snapshot: Returns the live candidate, used to tag deals
                whose entry snapshot was never registered
        """
        self.json_file = Path(json_file) if json_file else None
        self.fallback_snapshot = fallback_snapshot

        self._records: List[TradeRecord] = []
        self._open_positions: Dict[str, Tuple[Candidate, Optional[str]]] = {}
        self.cursor = 0
        self.aggregates = TradeAggregates()

        if self.json_file is not None:
            self.load()

        _LOG.info(f"📝 Trade history tracker ready: {len(self._records)} trades, cursor={self.cursor}")

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def note_position_opened(self, position_id: str, snapshot: Candidate, regime: Optional[str] = None):
        """Remember which parameters (and regime) a new position was opened with"""
        self._open_positions[str(position_id)] = (snapshot.copy(fitness=None), regime)
        self._save()

    def record(self, deal: ClosedDeal) -> Optional[TradeRecord]:
        """
        Log one closed deal

        Returns:
            The new TradeRecord, or None when the deal was already seen
        """
        if deal.ticket <= self.cursor:
            _LOG.debug(f"Deal #{deal.ticket} already recorded (cursor={self.cursor})")
            return None

        snapshot, regime = self._open_positions.pop(str(deal.position_id), (None, None))
        if deal.parameter_set is not None:
            snapshot = deal.parameter_set.copy(fitness=None)
        if snapshot is None:
            if self.fallback_snapshot is None:
                _LOG.warning(f"⚠️ Deal #{deal.ticket} has no entry snapshot; using defaults")
                snapshot = Candidate()
            else:
                _LOG.warning(f"⚠️ Deal #{deal.ticket} opened before tracking; tagging with live params")
                snapshot = self.fallback_snapshot().copy(fitness=None)

        record = TradeRecord(
            ticket=deal.ticket,
            open_time=deal.open_time,
            close_time=deal.close_time,
            realized_profit=float(deal.realized_profit),
            parameter_set_snapshot=snapshot,
            direction=deal.direction.upper(),
            regime=regime,
        )

        self._records.append(record)
        self.aggregates.add(record)
        self.cursor = deal.ticket
        self._save()

        outcome = "WIN" if record.is_win else "LOSS"
        _LOG.info(
            f"📝 Position closed: #{record.ticket} {record.direction} {outcome} "
            f"P&L: {record.realized_profit:+.2f} | params {snapshot.short_window}/{snapshot.long_window}"
        )
        return record

    def scan(self, deals: Iterable[ClosedDeal]) -> List[TradeRecord]:
        """Process a batch of deals (e.g. broker history since the cursor) in ticket order"""
        new_records = []
        for deal in sorted(deals, key=lambda d: d.ticket):
            record = self.record(deal)
            if record is not None:
                new_records.append(record)
        return new_records

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def records(self) -> List[TradeRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def records_near(
        self,
        candidate: Candidate,
        radius: float,
        bounds: GeneBounds,
        regime: Optional[str] = None,
    ) -> List[Tuple[TradeRecord, float]]:
        """
        Records whose snapshot lies strictly within `radius` (normalized
        distance); a zero radius matches identical snapshots only

        Returns:
            List of (record, distance)
        """
        matched = []
        for record in self._records:
            if regime is not None and record.regime != regime:
                continue
            distance = candidate.distance(record.parameter_set_snapshot, bounds)
            if distance < radius or distance == 0.0:
                matched.append((record, distance))
        return matched

    def get_stats(self) -> Dict[str, Any]:
        stats = self.aggregates.to_dict()
        stats.update({
            'total_trades': self.aggregates.total_trades,
            'win_rate': self.aggregates.win_rate,
            'net_profit': self.aggregates.net_profit,
            'cursor': self.cursor,
        })
        return stats

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self):
        """
        Reload log and cursor from disk and rebuild aggregates from the log

        Unreadable files are moved aside to `<name>.corrupt` and the tracker
        starts from an empty history (logged, not raised).
        """
        if self.json_file is None or not self.json_file.exists():
            return

        try:
            with open(self.json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            records = [TradeRecord.from_dict(t) for t in data.get('trades', [])]
            metadata = data.get('metadata', {})
            stored_cursor = int(metadata.get('cursor', 0))
            stored_aggregates = TradeAggregates.from_dict(metadata.get('aggregates', {}))
            open_positions = {
                pid: (Candidate.from_dict(entry['snapshot']), entry.get('regime'))
                for pid, entry in data.get('open_positions', {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            _LOG.error(f"❌ Trade history unreadable ({self.json_file}): {e} - starting from zero")
            self._set_aside()
            self._records = []
            self._open_positions = {}
            self.cursor = 0
            self.aggregates = TradeAggregates()
            return

        records.sort(key=lambda r: r.ticket)
        self._records = records
        self._open_positions = open_positions
        self.aggregates = TradeAggregates.from_records(records)
        self.cursor = max([stored_cursor] + [r.ticket for r in records])

        if not self.aggregates.matches(stored_aggregates):
            _LOG.warning(
                f"⚠️ Stored aggregates out of date "
                f"({stored_aggregates.wins}W/{stored_aggregates.losses}L), "
                f"rebuilt from log: {self.aggregates.wins}W/{self.aggregates.losses}L"
            )

    def _set_aside(self):
        """Keep an unreadable log next to the new one instead of overwriting it"""
        corrupt_file = self.json_file.with_name(self.json_file.name + ".corrupt")
        try:
            self.json_file.replace(corrupt_file)
            _LOG.warning(f"⚠️ Unreadable trade history moved to {corrupt_file}")
        except OSError as e:
            _LOG.error(f"❌ Could not move unreadable trade history aside: {e}")

    def _save(self):
        if self.json_file is None:
            return

        payload = {
            'trades': [r.to_dict() for r in self._records],
            'open_positions': {
                pid: {'snapshot': snap.to_dict(), 'regime': regime}
                for pid, (snap, regime) in self._open_positions.items()
            },
            'metadata': {
                'cursor': self.cursor,
                'aggregates': self.aggregates.to_dict(),
                'total_trades': len(self._records),
                'last_updated': datetime.now().isoformat(),
            },
        }
        try:
            self.json_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file = self.json_file.with_suffix(".tmp")
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, default=str)
            tmp_file.replace(self.json_file)
        except OSError as e:
            _LOG.error(f"❌ Error saving trade history: {e}")
