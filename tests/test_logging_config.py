from __future__ import annotations

import logging

from logging_config import CleanFormatter, VerbosityFilter


def _record(msg, level=logging.INFO):
    return logging.LogRecord("adaptive_optimizer.test", level, __file__, 1, msg, None, None)


def test_minimal_keeps_only_critical_events():
    minimal = VerbosityFilter("minimal")

    assert minimal.filter(_record("CYCLE COMPLETED: improved | live params ..."))
    assert minimal.filter(_record("feed offline", logging.WARNING))
    assert not minimal.filter(_record("🧬 Generation 3/10 | Best: 0.41"))


def test_normal_drops_per_simulation_noise():
    normal = VerbosityFilter("NORMAL")

    assert normal.filter(_record("🧬 Generation 3/10 | Best: 0.41"))
    assert not normal.filter(_record("Data shortfall for Candidate(...)", logging.DEBUG))


def test_detailed_keeps_everything():
    assert VerbosityFilter("DETAILED").filter(_record("Fitness 10/30: sim=0.1", logging.DEBUG))


def test_formatter_prefixes_level_emoji():
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "hello %s", ("world",), None)

    formatted = CleanFormatter("%(message)s").format(record)

    assert formatted.endswith("hello world")
    assert "❌" in formatted
