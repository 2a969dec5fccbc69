from __future__ import annotations

import argparse
import json

import pytest

import main


def _args(tmp_path, **overrides):
    values = dict(
        command='evolve',
        csv=None,
        bars=600,
        state_dir=str(tmp_path / "state"),
        population=4,
        generations=1,
        seed=3,
        verbosity=None,
        json=True,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


def test_cli_overrides_are_validated(tmp_path):
    with pytest.raises(AssertionError):
        main.build_context(_args(tmp_path, population=1))
    with pytest.raises(AssertionError):
        main.build_context(_args(tmp_path, generations=0))


def test_cli_overrides_reach_the_config(tmp_path):
    context = main.build_context(_args(tmp_path, population=6, generations=2))

    assert context.config.population_size == 6
    assert context.config.generations == 2


def test_evolve_json_reports_config_and_cycle(tmp_path, capsys):
    main.run_evolve(_args(tmp_path))

    report = json.loads(capsys.readouterr().out)

    assert report['config']['population_size'] == 4
    assert report['config']['signal_mode'] in ('touch', 'breakout', 'both')
    assert report['cycle']['reason'] == 'manual'
    assert report['cycle']['evaluations'] > 0
