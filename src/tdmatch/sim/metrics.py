from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from tdmatch.core.rules.rounds import EnemyDefeated, EnemyLeaked, MatchEvent, WaveCleared, WaveStarted


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WaveResult:
    round_number: int
    wave_index: int
    wave_name: str
    completed: bool
    enemies_killed: int
    enemies_leaked: int
    money_earned: int
    lives_lost: int
    duration: float


@dataclass(slots=True)
class _OpenWave:
    round_number: int
    wave_index: int
    wave_name: str
    started_at: float
    enemies_killed: int = 0
    enemies_leaked: int = 0
    money_earned: int = 0
    lives_lost: int = 0


class WaveMetricsCollector:
    """Per-wave tallies, fed by the state machine's listener events."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._open: _OpenWave | None = None
        self._results: list[WaveResult] = []

    @property
    def results(self) -> tuple[WaveResult, ...]:
        return tuple(self._results)

    def on_event(self, event: MatchEvent) -> None:
        if isinstance(event, WaveStarted):
            self._close(completed=False)
            self._open = _OpenWave(
                round_number=event.round_number,
                wave_index=event.wave_index,
                wave_name=event.wave.display_name,
                started_at=self._clock(),
            )
            return
        wave = self._open
        if wave is None:
            return
        if isinstance(event, EnemyDefeated):
            wave.enemies_killed += 1
            wave.money_earned += event.reward
        elif isinstance(event, EnemyLeaked):
            wave.enemies_leaked += 1
            wave.lives_lost += event.lives_lost
        elif isinstance(event, WaveCleared):
            wave.money_earned += event.bonus_money
            self._close(completed=True)

    def finish(self) -> tuple[WaveResult, ...]:
        self._close(completed=False)
        return self.results

    def _close(self, *, completed: bool) -> None:
        wave = self._open
        if wave is None:
            return
        self._open = None
        result = WaveResult(
            round_number=wave.round_number,
            wave_index=wave.wave_index,
            wave_name=wave.wave_name,
            completed=completed,
            enemies_killed=wave.enemies_killed,
            enemies_leaked=wave.enemies_leaked,
            money_earned=wave.money_earned,
            lives_lost=wave.lives_lost,
            duration=self._clock() - wave.started_at,
        )
        self._results.append(result)
        logger.info(
            "wave done round=%s index=%s completed=%s killed=%s leaked=%s money=%s",
            result.round_number,
            result.wave_index,
            result.completed,
            result.enemies_killed,
            result.enemies_leaked,
            result.money_earned,
        )
