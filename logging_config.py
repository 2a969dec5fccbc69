import logging
import sys

from termcolor import colored


class CleanFormatter(logging.Formatter):
    """
    Formatter with emoji and colors for console output
    """
    LEVEL_EMOJI = {
        "DEBUG": "🐛",
        "INFO": "ℹ️",
        "WARNING": "⚠️",
        "ERROR": "❌",
        "CRITICAL": "🚨"
    }
    LEVEL_COLOR = {
        "DEBUG": "blue",
        "INFO": "green",
        "WARNING": "yellow",
        "ERROR": "red",
        "CRITICAL": "magenta"
    }

    def format(self, record):
        emoji = self.LEVEL_EMOJI.get(record.levelname, "")
        color = self.LEVEL_COLOR.get(record.levelname, "white")

        record.msg = f"{colored(emoji, color)} {record.getMessage()}"
        record.args = ()
        return super().format(record)


class VerbosityFilter(logging.Filter):
    """
    Keyword filter based on LOG_VERBOSITY

    MINIMAL: Only critical events (cycle results, parameter swaps, errors)
    NORMAL: Standard operations (generations, triggers, regimes, trades)
    DETAILED: Everything (every simulation, repair and fitness blend)
    """

    CRITICAL_EVENTS = [
        "CYCLE COMPLETED",
        "Parameters updated",
        "Switched to",
        "Position closed",
        "STATUS",
        "❌",
        "🚨",
    ]

    VERBOSE_DEBUG = [
        "Fitness ",
        "sentinel-scored",
        "Data shortfall",
        "already recorded",
        "ignored: cycle already running",
    ]

    def __init__(self, verbosity_level="MINIMAL"):
        super().__init__()
        self.verbosity = verbosity_level.upper()

    def filter(self, record):
        msg = record.getMessage()

        if self.verbosity == "MINIMAL":
            if record.levelno >= logging.WARNING:
                return True
            return any(keyword in msg for keyword in self.CRITICAL_EVENTS)

        elif self.verbosity == "NORMAL":
            return not any(keyword in msg for keyword in self.VERBOSE_DEBUG)

        # DETAILED: Everything
        return True


# Modules that flood the console outside DETAILED mode
noisy_modules = [
    "adaptive_optimizer.backtest_simulator",
    "adaptive_optimizer.fitness_evaluator",
    "adaptive_optimizer.market_data",
]


def setup_logging(verbosity=None):
    """
    Install the console handler on the root logger

    Args:
        verbosity: MINIMAL / NORMAL / DETAILED (default: config.LOG_VERBOSITY)
    """
    import config

    verbosity = (verbosity or getattr(config, 'LOG_VERBOSITY', "NORMAL")).upper()

    console_handler = logging.StreamHandler(sys.stdout)
    if verbosity == "MINIMAL":
        formatter = CleanFormatter("%(message)s")
    else:
        formatter = CleanFormatter("%(asctime)s %(message)s", datefmt="%H:%M:%S")
    console_handler.setFormatter(formatter)
    console_handler.addFilter(VerbosityFilter(verbosity))

    logging.basicConfig(
        level=logging.DEBUG if verbosity == "DETAILED" else logging.INFO,
        handlers=[console_handler],
        format="%(message)s",
        force=True,
    )

    module_level = {
        "MINIMAL": logging.WARNING,
        "NORMAL": logging.INFO,
    }.get(verbosity, logging.DEBUG)
    for module in noisy_modules:
        logging.getLogger(module).setLevel(module_level)

    logging.info(f"📊 Logging: {verbosity} mode")
    return console_handler
