from __future__ import annotations

import sys
from pathlib import Path

import pytest


SRC_PATH = Path(__file__).resolve().parent / "src"
if SRC_PATH.is_dir():
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(scope="session")
def default_scenario():
    from tdmatch.sim.config_loader import load_scenario

    return load_scenario()


@pytest.fixture(scope="session")
def default_strategy():
    from tdmatch.sim.config_loader import load_strategy

    return load_strategy()
