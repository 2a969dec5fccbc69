"""
🧬 Adaptive Optimizer - Main Script

Replays a series of OHLC bars through the event loop: the regime is
classified on every bar, the scheduler runs GA cycles when they are due,
and a paper trader takes the live strategy's trades so their outcomes feed
back into the fitness function.

Uso:
    python main.py                           # Replay synthetic bars
    python main.py replay --csv bars.csv     # Replay bars from CSV
    python main.py evolve --csv bars.csv     # Run one cycle on the CSV history
    python main.py status                    # Show persisted live state
"""

import argparse
import dataclasses
import itertools
import json
import logging
from datetime import datetime

from termcolor import colored

import config
from logging_config import setup_logging
from adaptive_optimizer.backtest_simulator import BacktestSimulator, BUY
from adaptive_optimizer.candidate import Candidate
from adaptive_optimizer.event_loop import EventLoop, NewBarEvent, PositionOpenedEvent, TimerEvent, TradeClosedEvent
from adaptive_optimizer.evolution_config import EvolutionConfig
from adaptive_optimizer.live_state import EvolutionContext
from adaptive_optimizer.market_data import DataFrameMarketData, synthetic_trend_frame
from adaptive_optimizer.trade_history import ClosedDeal


def print_banner(cfg: EvolutionConfig, source: str):
    """Stampa banner iniziale"""
    print(colored("\n" + "="*60, "cyan", attrs=['bold']))
    print(colored("🧬 ADAPTIVE OPTIMIZER - Strategy Parameter Evolution", "cyan", attrs=['bold']))
    print(colored("="*60, "cyan", attrs=['bold']))
    print(colored(f"⏰ Avvio: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", "white"))
    print(colored(f"📂 Dati: {source}", "white"))
    print(colored(f"🧬 Popolazione: {cfg.population_size} × {cfg.generations} generazioni", "white"))
    print(colored(f"⏱️  Intervallo: {cfg.evolution_interval_minutes} min", "white"))
    print(colored(f"🌊 Regime separation: {'ON' if cfg.regime_separation else 'OFF'}", "white"))
    print(colored("="*60, "cyan", attrs=['bold']))


def print_status(status: dict):
    """Stampa lo stato corrente dell'ottimizzatore"""
    active = status['active']
    trades = status['trades']

    print(colored("\n📊 STATUS", "cyan", attrs=['bold']))
    print(colored("-"*60, "cyan"))
    print(f"  State:            {status['state']}")
    print(f"  Live params:      MA {active['short_window']}/{active['long_window']} | "
          f"SL {active['stop_loss_distance']:.2f} | TP {active['take_profit_distance']:.2f}")
    print(f"  Last cycle:       {status['last_evolution_time'] or 'never'} ({status['last_outcome']})")
    print(f"  Cycles:           {status['cycles_completed']}")
    print(f"  Next cycle in:    {status['seconds_to_next_cycle'] / 60:.0f} min")
    print(f"  Regime:           {status['regime'] or 'unknown'}")
    for label, best in status['regime_best'].items():
        print(f"    {label:<14}  MA {best['short_window']}/{best['long_window']} | "
              f"SL {best['stop_loss_distance']:.2f} | TP {best['take_profit_distance']:.2f}")

    color = "green" if trades['net_profit'] >= 0 else "red"
    print(colored(
        f"  Live trades:      {trades['total_trades']} "
        f"(WR {trades['win_rate']:.1%}, P&L {trades['net_profit']:+.2f})",
        color,
    ))
    print(colored("-"*60, "cyan"))


class PaperTrader:
    """
    Trades the live strategy on the replayed bars

    Entries follow the same rule as the simulator, exits use the levels the
    controller returns at entry time. Opens and closes are posted to the
    event loop like a broker would report them.
    """

    def __init__(self, loop: EventLoop, lot_size: float, spread: float):
        self.loop = loop
        self.lot_size = lot_size
        self.spread = spread
        self.simulator = BacktestSimulator(bounds=loop.context.config.bounds,
                                           signal_mode=loop.context.config.signal_mode)
        self.tickets = itertools.count(loop.context.trade_history.cursor + 1)
        self.position = None

    def on_bar(self):
        bar = self.loop.market_data.latest_bar()
        if bar is None:
            return

        if self.position is not None:
            self._check_exit(bar)
            return

        active = self.loop.controller.active
        bars = self.loop.market_data.get_bars(active.long_window + 2)
        if len(bars) < active.long_window + 2:
            return

        history = BacktestSimulator.prepare(bars)
        short_ma = history.moving_average(active.short_window)
        long_ma = history.moving_average(active.long_window)
        last = len(history) - 1
        direction = self.simulator.entry_signal(last, short_ma, long_ma, history.high, history.low, history.close)
        if direction is None:
            return

        levels = self.loop.controller.order_levels(direction, bar.close)
        position_id = f"P{bar.time:%Y%m%d%H%M}"
        self.position = (position_id, direction, bar.close, bar.time, levels)
        self.loop.post(PositionOpenedEvent(position_id, bar.time))

    def _check_exit(self, bar):
        position_id, direction, entry, open_time, levels = self.position
        if direction == BUY:
            hit_sl, hit_tp = bar.low <= levels['stop_loss'], bar.high >= levels['take_profit']
        else:
            hit_sl, hit_tp = bar.high >= levels['stop_loss'], bar.low <= levels['take_profit']
        if not (hit_sl or hit_tp):
            return

        exit_price = levels['stop_loss'] if hit_sl else levels['take_profit']
        sign = 1.0 if direction == BUY else -1.0
        profit = (exit_price - entry) * sign * self.lot_size - self.spread * self.lot_size

        deal = ClosedDeal(
            ticket=next(self.tickets),
            position_id=position_id,
            open_time=open_time,
            close_time=bar.time,
            realized_profit=profit,
            direction=direction,
        )
        self.position = None
        self.loop.post(TradeClosedEvent(deal))


def load_market_data(args) -> DataFrameMarketData:
    if args.csv:
        return DataFrameMarketData.from_csv(args.csv, start=0)
    return DataFrameMarketData(synthetic_trend_frame(n_bars=args.bars, seed=args.seed), start=0)


def build_context(args) -> EvolutionContext:
    cfg = EvolutionConfig.from_config()
    overrides = {}
    if args.population is not None:
        overrides['population_size'] = args.population
    if args.generations is not None:
        overrides['generations'] = args.generations
    # replace() re-runs the config validation on the overrides
    cfg = dataclasses.replace(cfg, **overrides)
    return EvolutionContext.create(cfg, state_dir=args.state_dir, default=Candidate.from_config())


def run_replay(args):
    """Replay every bar through the event loop"""
    context = build_context(args)
    market_data = load_market_data(args)
    print_banner(context.config, args.csv or f"synthetic ({args.bars} bars)")

    first = market_data.df.index[0].to_pydatetime()
    loop = EventLoop(context, market_data, random_seed=args.seed, start_time=first)
    trader = PaperTrader(loop, lot_size=config.LOT_SIZE, spread=config.SPREAD)

    warmup = context.config.bounds.long_window[1] + 2
    try:
        while not market_data.exhausted:
            bar = market_data.advance()
            loop.post(NewBarEvent(bar))
            if market_data.position >= warmup:
                loop.post(TimerEvent(bar.time))
            trader.on_bar()
            loop.process_pending()

    except KeyboardInterrupt:
        print(colored("\n\n⚠️ Replay interrotto dall'utente", "yellow"))

    print_status(loop.scheduler.status())
    print(colored(f"\n✅ Replay completato: {loop.processed} eventi", "green", attrs=['bold']))


def run_evolve(args):
    """Run one cycle on the full history and apply it if it improves"""
    context = build_context(args)
    market_data = load_market_data(args)
    market_data.position = len(market_data.df)
    if not args.json:
        print_banner(context.config, args.csv or f"synthetic ({args.bars} bars)")

    loop = EventLoop(context, market_data, random_seed=args.seed,
                     start_time=market_data.latest_bar().time)
    report = loop.scheduler.run_cycle("manual")

    if args.json:
        print(json.dumps({'config': context.config.to_dict(), 'cycle': report.to_dict()}, indent=2))
        return

    if report.error:
        print(colored(f"\n❌ Ciclo fallito: {report.error}", "red"))
    else:
        color = "green" if report.outcome.value == "improved" else "yellow"
        print(colored(f"\n🧬 Esito: {report.outcome.value} ({report.evaluations} valutazioni, {report.bars} barre)",
                      color, attrs=['bold']))
        print(f"   Best: {report.best}")
        print(f"   Live fitness: {report.live_fitness:.4f}")

    print_status(loop.scheduler.status())


def run_status(args):
    """Show the persisted live state without running anything"""
    context = build_context(args)
    loop = EventLoop(context, DataFrameMarketData(synthetic_trend_frame(n_bars=1), start=0))
    status = loop.scheduler.status(datetime.now())
    if args.json:
        print(json.dumps(status, indent=2, default=str))
    else:
        print_status(status)


def parse_args():
    """Parsing argomenti da linea di comando"""
    parser = argparse.ArgumentParser(
        description='Evoluzione online dei parametri della strategia trend-following',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Esempi:
  python main.py                               # Replay su dati sintetici
  python main.py replay --csv bars.csv         # Replay da CSV
  python main.py evolve --generations 20       # Un ciclo completo
  python main.py status --json                 # Stato in formato JSON
        '''
    )

    parser.add_argument(
        'command',
        nargs='?',
        default='replay',
        choices=['replay', 'evolve', 'status'],
        help='Operazione da eseguire (default: replay)'
    )

    parser.add_argument(
        '--csv',
        type=str,
        help='CSV con colonne time, open, high, low, close[, volume]'
    )

    parser.add_argument(
        '--bars',
        type=int,
        default=800,
        help='Barre sintetiche se non si usa --csv (default: 800)'
    )

    parser.add_argument(
        '--state-dir',
        type=str,
        default=config.STATE_DIR,
        help=f'Directory dello stato persistente (default: {config.STATE_DIR})'
    )

    parser.add_argument(
        '--population',
        type=int,
        help=f'Dimensione popolazione (default: {config.POPULATION_SIZE})'
    )

    parser.add_argument(
        '--generations',
        type=int,
        help=f'Numero di generazioni (default: {config.GENERATIONS})'
    )

    parser.add_argument(
        '--seed',
        type=int,
        default=42,
        help='Seed per riproducibilità (default: 42)'
    )

    parser.add_argument(
        '--verbosity',
        type=str,
        choices=['MINIMAL', 'NORMAL', 'DETAILED'],
        help=f'Livello di log (default: {config.LOG_VERBOSITY})'
    )

    parser.add_argument(
        '--json',
        action='store_true',
        help='Output JSON (evolve/status)'
    )

    return parser.parse_args()


def main():
    args = parse_args()
    setup_logging(args.verbosity)

    commands = {
        'replay': run_replay,
        'evolve': run_evolve,
        'status': run_status,
    }
    try:
        commands[args.command](args)
    except Exception as e:
        logging.error(f"❌ Errore: {e}")
        raise


if __name__ == "__main__":
    main()
