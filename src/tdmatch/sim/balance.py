from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
import logging
from typing import Callable, Iterable, Sequence

import numpy as np

from .harness import Scenario, SimulationConfig, SimulationHarness, SimulationResult
from .strategy import PlacementStrategyConfig


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchSummary:
    runs: int
    wins: int
    win_rate: float
    mean_money: float
    std_money: float
    mean_lives: float
    std_lives: float
    mean_score: float
    std_score: float
    mean_waves: float
    outcomes: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "runs": self.runs,
            "wins": self.wins,
            "win_rate": self.win_rate,
            "mean_money": self.mean_money,
            "std_money": self.std_money,
            "mean_lives": self.mean_lives,
            "std_lives": self.std_lives,
            "mean_score": self.mean_score,
            "std_score": self.std_score,
            "mean_waves": self.mean_waves,
            "outcomes": dict(self.outcomes),
        }


def seed_range(base_seed: int, runs: int) -> list[int]:
    if runs < 1:
        raise ValueError("runs must be >= 1")
    return [base_seed + i for i in range(runs)]


def run_batch(
    scenario: Scenario,
    strategy: PlacementStrategyConfig,
    *,
    sim_config: SimulationConfig | None = None,
    seeds: Iterable[int],
    max_ticks: int,
    tick_duration: float,
    on_result: Callable[[int, SimulationResult], None] | None = None,
) -> list[SimulationResult]:
    base = sim_config or SimulationConfig()
    results: list[SimulationResult] = []
    for seed in seeds:
        harness = SimulationHarness(scenario, replace(base, seed=seed))
        result = harness.run(strategy, max_ticks, tick_duration)
        logger.info("batch seed=%s outcome=%s lives=%s money=%s", seed, result.outcome, result.final_lives, result.final_money)
        if on_result is not None:
            on_result(seed, result)
        results.append(result)
    return results


def summarize(results: Sequence[SimulationResult]) -> BatchSummary:
    if not results:
        raise ValueError("cannot summarize an empty batch")
    money = np.array([r.final_money for r in results], dtype=np.float64)
    lives = np.array([r.final_lives for r in results], dtype=np.float64)
    score = np.array([r.final_score for r in results], dtype=np.float64)
    waves = np.array([r.waves_completed for r in results], dtype=np.float64)
    wins = np.array([r.is_victory for r in results], dtype=bool)
    return BatchSummary(
        runs=len(results),
        wins=int(wins.sum()),
        win_rate=float(wins.mean()),
        mean_money=float(money.mean()),
        std_money=float(money.std()),
        mean_lives=float(lives.mean()),
        std_lives=float(lives.std()),
        mean_score=float(score.mean()),
        std_score=float(score.std()),
        mean_waves=float(waves.mean()),
        outcomes=dict(sorted(Counter(r.outcome for r in results).items())),
    )
