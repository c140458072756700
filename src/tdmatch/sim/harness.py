from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
import logging
from typing import Any, Callable, Protocol

from tdmatch.core.engine import Match
from tdmatch.core.errors import ErrorCode
from tdmatch.core.messages import (
    AdvanceTickCommand,
    GameStateResponse,
    GetGameStateQuery,
    ListBuildingsQuery,
    ReportEnemyDefeatedCommand,
    ReportEnemyLeakedCommand,
    StartRoundCommand,
    StartWaveCommand,
)
from tdmatch.core.model.catalog import BuildingCatalog, EnemyCatalog, WaveCatalog
from tdmatch.core.model.map import MapBoundary
from tdmatch.core.model.state import Phase

from .combat import ScriptedCombat
from .metrics import WaveMetricsCollector, WaveResult
from .strategy import PlacementStrategyConfig, PlacementStrategyEngine


logger = logging.getLogger(__name__)


class Outcome(Enum):
    VICTORY = "victory"
    GAME_OVER = "game_over"
    MAX_TICKS = "max_ticks"
    CANCELLED = "cancelled"


class StopSignal(Protocol):
    def is_set(self) -> bool: ...


@dataclass(frozen=True, slots=True)
class SimulationConfig:
    starting_money: int = 500
    starting_lives: int = 20
    seed: int = 12345
    enemy_health_multiplier: float = 1.0
    enemy_speed_multiplier: float = 1.0
    building_cost_multiplier: float = 1.0
    path_length: float | None = None
    damage_jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.starting_money < 0:
            raise ValueError("starting_money must be >= 0")
        if self.starting_lives < 1:
            raise ValueError("starting_lives must be >= 1")
        if min(self.enemy_health_multiplier, self.enemy_speed_multiplier, self.building_cost_multiplier) <= 0:
            raise ValueError("multipliers must be > 0")

    @classmethod
    def for_balance_testing(cls) -> SimulationConfig:
        return cls(seed=42)

    @classmethod
    def with_difficulty(cls, multiplier: float) -> SimulationConfig:
        # speed scales at half the rate of health
        return cls(
            enemy_health_multiplier=multiplier,
            enemy_speed_multiplier=1.0 + (multiplier - 1.0) * 0.5,
        )


@dataclass(frozen=True, slots=True)
class Scenario:
    buildings: BuildingCatalog
    enemies: EnemyCatalog
    waves: WaveCatalog
    map: MapBoundary


@dataclass(frozen=True, slots=True)
class SimulationProgress:
    current_wave: int
    current_gold: int
    remaining_lives: int
    tick: int = 0


@dataclass(frozen=True, slots=True)
class SimulationResult:
    success: bool
    is_victory: bool
    final_money: int
    final_lives: int
    duration: float
    final_score: int = 0
    waves_completed: int = 0
    buildings_placed: int = 0
    ticks: int = 0
    outcome: str = ""
    failure_reason: str | None = None
    wave_results: tuple[WaveResult, ...] = field(default_factory=tuple)

    @classmethod
    def create_success(cls, final_money: int, final_lives: int, duration: float, **extra: Any) -> SimulationResult:
        return cls(
            success=True,
            is_victory=True,
            final_money=final_money,
            final_lives=final_lives,
            duration=duration,
            outcome=Outcome.VICTORY.value,
            **extra,
        )

    @classmethod
    def failure(
        cls,
        reason: str,
        *,
        outcome: Outcome = Outcome.GAME_OVER,
        final_money: int = 0,
        final_lives: int = 0,
        duration: float = 0.0,
        **extra: Any,
    ) -> SimulationResult:
        return cls(
            success=False,
            is_victory=False,
            final_money=final_money,
            final_lives=final_lives,
            duration=duration,
            outcome=outcome.value,
            failure_reason=reason,
            **extra,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def summary(self) -> str:
        if self.success:
            return (
                f"SUCCESS: completed {self.waves_completed} waves, {self.final_lives} lives remaining, "
                f"{self.final_money} money, score {self.final_score}"
            )
        return (
            f"FAILURE: {self.failure_reason} (waves {self.waves_completed}, "
            f"{self.final_lives} lives, {self.final_money} money)"
        )


def scale_building_costs(catalog: BuildingCatalog, multiplier: float) -> BuildingCatalog:
    if multiplier == 1.0:
        return catalog
    return BuildingCatalog(replace(d, cost=int(round(d.cost * multiplier))) for d in catalog.all())


class SimulationHarness:
    """
    Fixed-step, strictly sequential driver for one self-playing match.

    Every run builds a fresh match, combat model and strategy engine, so two
    runs with the same inputs produce equal results; ``duration`` is simulated
    time, never wall-clock.
    """

    def __init__(
        self,
        scenario: Scenario,
        sim_config: SimulationConfig | None = None,
        *,
        combat_factory: Callable[[Scenario, SimulationConfig], Any] | None = None,
    ) -> None:
        self.scenario = scenario
        self.sim_config = sim_config or SimulationConfig()
        self.combat_factory = combat_factory or default_combat
        self.match: Match | None = None

    def build_match(self) -> Match:
        cfg = self.sim_config
        return Match(
            scale_building_costs(self.scenario.buildings, cfg.building_cost_multiplier),
            self.scenario.waves,
            self.scenario.map,
            starting_money=cfg.starting_money,
            starting_lives=cfg.starting_lives,
        )

    def run(
        self,
        config: PlacementStrategyConfig,
        max_ticks: int,
        tick_duration: float,
        *,
        progress: Callable[[SimulationProgress], None] | None = None,
        progress_every: int = 1,
        stop_event: StopSignal | None = None,
    ) -> SimulationResult:
        if max_ticks < 1:
            raise ValueError("max_ticks must be >= 1")
        if tick_duration <= 0:
            raise ValueError("tick_duration must be > 0")
        if progress_every < 1:
            raise ValueError("progress_every must be >= 1")

        match = self.build_match()
        self.match = match
        combat = self.combat_factory(self.scenario, self.sim_config)
        strategy = PlacementStrategyEngine(match.buildings, cell_of=self.scenario.map.cell_of)
        ticks = 0
        metrics = WaveMetricsCollector(clock=lambda: ticks * tick_duration)
        match.rounds.add_listener(metrics.on_event)
        match.rounds.add_listener(combat.on_event)

        state = _observe(match)
        if progress is not None:
            progress(_progress(match, state, 0))

        outcome: Outcome | None = None
        while outcome is None:
            if ticks >= max_ticks:
                outcome = Outcome.MAX_TICKS
                break
            if stop_event is not None and stop_event.is_set():
                outcome = Outcome.CANCELLED
                break

            ticks += 1
            self._tick(match, combat, strategy, config, tick_duration)

            state = _observe(match)
            if progress is not None and ticks % progress_every == 0:
                progress(_progress(match, state, ticks))
            if state.current_phase == Phase.VICTORY.value:
                outcome = Outcome.VICTORY
            elif state.current_phase == Phase.GAME_OVER.value:
                outcome = Outcome.GAME_OVER

        # the finished match stays inspectable on self.match, detached from this run
        match.rounds.remove_listener(combat.on_event)
        match.rounds.remove_listener(metrics.on_event)
        state = _observe(match)
        return self._finish(match, state, metrics, outcome, ticks, tick_duration)

    def _tick(
        self,
        match: Match,
        combat,
        strategy: PlacementStrategyEngine,
        config: PlacementStrategyConfig,
        tick_duration: float,
    ) -> None:
        def place(state: GameStateResponse) -> None:
            # a rejected placement frees its budget: ask again with the real balance
            while True:
                occupied = [b.position for b in match.dispatch(ListBuildingsQuery()).buildings]
                commands = strategy.next_actions(state, config, occupied)
                rejected = 0
                for command in commands:
                    result = match.dispatch(command)
                    strategy.record_result(command, result)
                    if not result.success:
                        rejected += 1
                if not rejected:
                    return
                state = _observe(match)

        advance_match(match, combat, tick_duration, on_preparation=place)

    def _finish(
        self,
        match: Match,
        state: GameStateResponse,
        metrics: WaveMetricsCollector,
        outcome: Outcome,
        ticks: int,
        tick_duration: float,
    ) -> SimulationResult:
        wave_results = metrics.finish()
        extra = dict(
            final_score=state.score,
            waves_completed=sum(1 for r in wave_results if r.completed),
            buildings_placed=match.registry.count,
            ticks=ticks,
            wave_results=wave_results,
        )
        duration = ticks * tick_duration
        if outcome is Outcome.VICTORY:
            result = SimulationResult.create_success(state.money, state.lives, duration, **extra)
        elif outcome is Outcome.GAME_OVER:
            result = SimulationResult.failure(
                f"GameOver: lives exhausted in round {state.current_round}",
                outcome=outcome,
                final_money=state.money,
                final_lives=state.lives,
                duration=duration,
                **extra,
            )
        else:
            why = "cancelled" if outcome is Outcome.CANCELLED else f"max ticks ({ticks}) reached"
            result = SimulationResult.failure(
                f"{ErrorCode.SIMULATION_ABORTED}: {why}",
                outcome=outcome,
                final_money=state.money,
                final_lives=state.lives,
                duration=duration,
                **extra,
            )
        logger.info("simulation finished outcome=%s ticks=%s %s", result.outcome, ticks, result.summary())
        return result


def advance_match(
    match: Match,
    combat,
    tick_duration: float,
    *,
    on_preparation: Callable[[GameStateResponse], None] | None = None,
    auto_start: bool = True,
) -> GameStateResponse:
    """
    One fixed step: tick the timers, let the caller build while preparing,
    start whatever round or wave is due, then advance combat and report its
    kills and leaks. Everything goes through ``match.dispatch``.
    """
    match.dispatch(AdvanceTickCommand(tick_duration))

    state = _observe(match)
    if not state.is_game_active:
        return state
    if on_preparation is not None and state.current_phase == Phase.PREPARATION.value:
        on_preparation(state)

    if auto_start and match.rounds.round_start_due:
        result = match.dispatch(StartRoundCommand(state.current_round))
        if not result.success:
            logger.warning("round start rejected: %s %s", result.error_message, result.detail)
    elif match.rounds.wave_start_due:
        index = match.rounds.next_wave_index
        result = match.dispatch(StartWaveCommand(index))
        if not result.success:
            logger.warning("wave start rejected: %s %s", result.error_message, result.detail)

    buildings = match.dispatch(ListBuildingsQuery()).buildings
    report = combat.advance(tick_duration, buildings)
    for enemy in report.defeated:
        match.dispatch(ReportEnemyDefeatedCommand(enemy.reward, enemy.enemy_type))
    for enemy in report.leaked:
        result = match.dispatch(ReportEnemyLeakedCommand(enemy.lives_cost, enemy.enemy_type))
        if result.phase == Phase.GAME_OVER.value:
            break
    return _observe(match)


def default_combat(scenario: Scenario, cfg: SimulationConfig) -> ScriptedCombat:
    path_length = cfg.path_length
    if path_length is None:
        path_length = scenario.map.path_length or 800.0
    return ScriptedCombat(
        scenario.enemies,
        scale_building_costs(scenario.buildings, cfg.building_cost_multiplier),
        path=scenario.map.path,
        path_length=path_length,
        seed=cfg.seed,
        health_multiplier=cfg.enemy_health_multiplier,
        speed_multiplier=cfg.enemy_speed_multiplier,
        damage_jitter=cfg.damage_jitter,
    )


def _observe(match: Match) -> GameStateResponse:
    return match.dispatch(GetGameStateQuery())


def _progress(match: Match, state: GameStateResponse, tick: int) -> SimulationProgress:
    # 1-based wave number across the whole catalog; the upcoming one while no wave has started
    index = match.rounds.current_wave_index
    return SimulationProgress(
        current_wave=match.waves.wave_offset(state.current_round) + (index or 0) + 1,
        current_gold=state.money,
        remaining_lives=state.lives,
        tick=tick,
    )
