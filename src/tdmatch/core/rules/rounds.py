from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Union

from ..errors import ErrorCode
from ..messages import AdvanceTickResult, EnemyReportResult, StartRoundResult, StartWaveResult
from ..model.catalog import RoundDefinition, WaveCatalog, WaveDefinition
from ..model.state import Phase
from .economy import EconomyLedger


logger = logging.getLogger(__name__)

SCORE_PER_KILL = 10
WAVE_CLEAR_SCORE = 50


@dataclass(frozen=True, slots=True)
class PhaseChanged:
    previous: Phase
    current: Phase
    round_number: int


@dataclass(frozen=True, slots=True)
class WaveStarted:
    round_number: int
    wave_index: int
    wave: WaveDefinition


@dataclass(frozen=True, slots=True)
class WaveCleared:
    round_number: int
    wave_index: int
    wave: WaveDefinition
    bonus_money: int


@dataclass(frozen=True, slots=True)
class EnemyDefeated:
    round_number: int
    wave_index: int
    reward: int


@dataclass(frozen=True, slots=True)
class EnemyLeaked:
    round_number: int
    wave_index: int
    lives_lost: int


MatchEvent = Union[PhaseChanged, WaveStarted, WaveCleared, EnemyDefeated, EnemyLeaked]
Listener = Callable[[MatchEvent], None]


class RoundWaveStateMachine:
    """
    Owns phase, round, timer, enemy count and score on the shared state.

    Preparation -> WaveActive -> RoundEnd -> Preparation (next round), with
    WaveActive -> GameOver when lives run out and RoundEnd -> Victory after the
    final configured round. A round stays in WaveActive while it iterates its
    waves; ``_next_wave`` is the only index ``start_wave`` accepts.

    Listeners are called synchronously, in registration order, from inside the
    operation that caused the event.
    """

    def __init__(self, state, waves: WaveCatalog, ledger: EconomyLedger) -> None:
        self.state = state
        self.waves = waves
        self.ledger = ledger
        self._listeners: list[Listener] = []
        self._current_wave: int | None = None
        self._next_wave = 0
        self._wave_cleared = True
        self.reset()

    # -- observers -----------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def _emit(self, event: MatchEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    # -- introspection -------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.current_phase

    @property
    def total_rounds(self) -> int:
        return self.waves.total_rounds

    @property
    def round_def(self) -> RoundDefinition:
        return self.waves.round(self.state.current_round)

    @property
    def waves_in_round(self) -> int:
        return len(self.round_def.waves)

    @property
    def current_wave_index(self) -> int | None:
        return self._current_wave

    @property
    def next_wave_index(self) -> int | None:
        if self.phase is not Phase.WAVE_ACTIVE:
            return None
        if self._next_wave >= self.waves_in_round:
            return None
        return self._next_wave

    @property
    def round_start_due(self) -> bool:
        return self.phase is Phase.PREPARATION and self.state.phase_time_remaining <= 0.0

    @property
    def wave_start_due(self) -> bool:
        return (
            self._wave_cleared
            and self.next_wave_index is not None
            and self.state.phase_time_remaining <= 0.0
        )

    @property
    def is_game_won(self) -> bool:
        return self.phase is Phase.VICTORY

    # -- commands ------------------------------------------------------------

    def reset(self) -> None:
        s = self.state
        s.current_round = 1
        s.current_phase = Phase.PREPARATION
        s.enemies_remaining = 0
        s.score = 0
        s.is_game_active = True
        s.phase_time_remaining = float(self.waves.round(1).waves[0].pre_wave_delay)
        self._current_wave = None
        self._next_wave = 0
        self._wave_cleared = True

    def start_round(self, round_number: int = 0, force_start: bool = False) -> StartRoundResult:
        if self.phase.is_terminal:
            return StartRoundResult.failed(ErrorCode.MATCH_ALREADY_ENDED, detail=f"Match ended in {self.phase.value}")

        if force_start and self.phase is Phase.ROUND_END:
            self._advance_round()

        current = self.state.current_round
        target = round_number or current
        if target != current:
            return StartRoundResult.failed(
                ErrorCode.ROUND_OUT_OF_SEQUENCE,
                detail=f"Cannot start round {target}. Current round is {current}",
            )
        if self.phase is not Phase.PREPARATION:
            if not force_start:
                return StartRoundResult.failed(
                    ErrorCode.ROUND_ALREADY_ACTIVE,
                    detail=f"Round {current} is already active",
                )
            logger.info("force start round=%s from phase=%s", current, self.phase.value)

        self.state.enemies_remaining = 0
        self.state.phase_time_remaining = 0.0
        self._current_wave = None
        self._next_wave = 0
        self._wave_cleared = True
        self._set_phase(Phase.WAVE_ACTIVE)
        logger.info("round %s started (%s waves)", current, self.waves_in_round)
        self._begin_wave(0)
        return StartRoundResult.successful(current, self.phase.value)

    def start_wave(self, wave_index: int, is_round_based: bool = True) -> StartWaveResult:
        if self.phase.is_terminal:
            return StartWaveResult.failed(ErrorCode.MATCH_ALREADY_ENDED, detail=f"Match ended in {self.phase.value}")
        if self.phase is not Phase.WAVE_ACTIVE:
            return StartWaveResult.failed(
                ErrorCode.WAVE_OUT_OF_SEQUENCE,
                detail=f"No round active (phase {self.phase.value})",
            )

        local_index = wave_index
        if not is_round_based:
            local_index = wave_index - self.waves.wave_offset(self.state.current_round)
        if local_index != self._next_wave or local_index >= self.waves_in_round:
            return StartWaveResult.failed(
                ErrorCode.WAVE_OUT_OF_SEQUENCE,
                detail=f"Expected wave {self._next_wave}, got {local_index}",
            )
        if not self._wave_cleared:
            return StartWaveResult.failed(
                ErrorCode.WAVE_OUT_OF_SEQUENCE,
                detail=f"Wave {self._current_wave} still has {self.state.enemies_remaining} enemies",
            )

        wave = self._begin_wave(local_index)
        return StartWaveResult.successful(wave_index, wave.total_enemies, wave.display_name)

    def enemy_defeated(self, reward: int = 0) -> EnemyReportResult:
        failure = self._check_wave_running()
        if failure is not None:
            return failure
        self.state.enemies_remaining = max(0, self.state.enemies_remaining - 1)
        if reward > 0:
            self.ledger.credit(reward, reason="kill")
        self.state.score += SCORE_PER_KILL
        self._emit(EnemyDefeated(self.state.current_round, self._current_wave, max(0, reward)))
        if self.state.enemies_remaining == 0:
            self._on_wave_cleared()
        return self._report()

    def enemy_leaked(self, lives_cost: int = 1) -> EnemyReportResult:
        failure = self._check_wave_running()
        if failure is not None:
            return failure
        self.state.enemies_remaining = max(0, self.state.enemies_remaining - 1)
        lives_before = self.state.lives
        self.state.lives = max(0, lives_before - lives_cost)
        self._emit(EnemyLeaked(self.state.current_round, self._current_wave, lives_before - self.state.lives))
        if self.state.lives == 0:
            self._game_over()
        elif self.state.enemies_remaining == 0:
            self._on_wave_cleared()
        return self._report()

    def tick(self, delta: float) -> AdvanceTickResult:
        if self.phase.is_terminal:
            return AdvanceTickResult.failed(
                ErrorCode.MATCH_ALREADY_ENDED,
                detail=f"Match ended in {self.phase.value}",
                phase=self.phase.value,
            )
        if self.state.lives <= 0:
            self._game_over()
        else:
            self.state.phase_time_remaining = max(0.0, self.state.phase_time_remaining - delta)
            if self.phase is Phase.ROUND_END and self.state.phase_time_remaining <= 0.0:
                self._advance_round()
        return AdvanceTickResult(
            success=True,
            phase=self.phase.value,
            phase_time_remaining=self.state.phase_time_remaining,
        )

    # -- internals -----------------------------------------------------------

    def _check_wave_running(self) -> EnemyReportResult | None:
        if self.phase.is_terminal:
            return EnemyReportResult.failed(
                ErrorCode.MATCH_ALREADY_ENDED,
                detail=f"Match ended in {self.phase.value}",
                phase=self.phase.value,
            )
        if self.phase is not Phase.WAVE_ACTIVE or self._wave_cleared:
            return EnemyReportResult.failed(
                ErrorCode.WAVE_OUT_OF_SEQUENCE,
                detail="No wave is running",
                phase=self.phase.value,
            )
        return None

    def _report(self) -> EnemyReportResult:
        return EnemyReportResult(
            success=True,
            enemies_remaining=self.state.enemies_remaining,
            phase=self.phase.value,
        )

    def _begin_wave(self, local_index: int) -> WaveDefinition:
        wave = self.round_def.waves[local_index]
        self._current_wave = local_index
        self._next_wave = local_index + 1
        self._wave_cleared = False
        self.state.enemies_remaining = wave.total_enemies
        self.state.phase_time_remaining = 0.0
        logger.info(
            "wave started round=%s index=%s name=%s enemies=%s",
            self.state.current_round,
            local_index,
            wave.display_name,
            wave.total_enemies,
        )
        self._emit(WaveStarted(self.state.current_round, local_index, wave))
        if wave.total_enemies == 0:
            self._on_wave_cleared()
        return wave

    def _on_wave_cleared(self) -> None:
        index = self._current_wave if self._current_wave is not None else 0
        wave = self.round_def.waves[index]
        self._wave_cleared = True
        if wave.bonus_money > 0:
            self.ledger.credit(wave.bonus_money, reason=f"wave_bonus:{self.state.current_round}.{index}")
        self.state.score += WAVE_CLEAR_SCORE * wave.wave_number
        self._emit(WaveCleared(self.state.current_round, index, wave, wave.bonus_money))

        if self._next_wave < self.waves_in_round:
            self.state.phase_time_remaining = float(self.round_def.waves[self._next_wave].pre_wave_delay)
            return

        self._set_phase(Phase.ROUND_END)
        if self.state.current_round >= self.total_rounds:
            self._set_phase(Phase.VICTORY)
            return
        self.state.phase_time_remaining = float(wave.post_wave_delay)

    def _advance_round(self) -> None:
        self.state.current_round += 1
        self.state.enemies_remaining = 0
        self._current_wave = None
        self._next_wave = 0
        self._wave_cleared = True
        self.state.phase_time_remaining = float(self.round_def.waves[0].pre_wave_delay)
        self._set_phase(Phase.PREPARATION)

    def _game_over(self) -> None:
        logger.info("lives exhausted in round %s", self.state.current_round)
        self._set_phase(Phase.GAME_OVER)

    def _set_phase(self, phase: Phase) -> None:
        previous = self.state.current_phase
        if previous is phase:
            return
        self.state.current_phase = phase
        if phase.is_terminal:
            self.state.is_game_active = False
            self.state.phase_time_remaining = 0.0
        logger.info("phase %s -> %s (round %s)", previous.value, phase.value, self.state.current_round)
        self._emit(PhaseChanged(previous, phase, self.state.current_round))
