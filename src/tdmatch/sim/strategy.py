from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Callable, Hashable, Iterable, Mapping

from tdmatch.core.messages import GameStateResponse, PlaceBuildingCommand, Result
from tdmatch.core.model.catalog import BuildingCatalog, BuildingDef
from tdmatch.core.model.state import Phase, Position


logger = logging.getLogger(__name__)

INITIAL_WAVE_KEY = "initial_wave"
_WAVE_KEY_RE = re.compile(r"^wave_(\d+)$")


@dataclass(frozen=True, slots=True)
class InitialWaveStrategy:
    category: str
    positions: tuple[Position, ...] = ()
    max_cost_per_building: int = 100
    description: str = ""


@dataclass(frozen=True, slots=True)
class WaveUpgrade:
    category: str
    cost_threshold: int | str
    position: Position
    description: str = ""


@dataclass(frozen=True, slots=True)
class FallbackStrategy:
    use_default_type: bool = True
    use_cheapest_type: bool = True
    emergency_fallback: str = ""


@dataclass(frozen=True, slots=True)
class PlacementStrategyConfig:
    initial_wave: InitialWaveStrategy
    wave_upgrades: Mapping[str, WaveUpgrade] = field(default_factory=dict)
    fallback: FallbackStrategy = field(default_factory=FallbackStrategy)
    cost_thresholds: Mapping[str, int] = field(default_factory=dict)

    def resolve_threshold(self, upgrade: WaveUpgrade) -> int:
        value = upgrade.cost_threshold
        if isinstance(value, str):
            try:
                return int(self.cost_thresholds[value])
            except KeyError as exc:
                raise KeyError(f"Unknown cost threshold name: {value!r}") from exc
        return int(value)


def wave_key_round(key: str) -> int | None:
    match = _WAVE_KEY_RE.match(key)
    if match is None:
        return None
    return int(match.group(1))


class PlacementStrategyEngine:
    """
    Turns a declarative strategy into placement commands.

    Output depends only on the state snapshot, the config and ``applied`` (the
    strategy entries already emitted by this instance), so calling it twice on
    an unchanged state never emits the same entry twice. Commands still go
    through the placement validator and may fail there.
    """

    def __init__(
        self,
        catalog: BuildingCatalog,
        *,
        player_id: int = 0,
        cell_of: Callable[[Position], Hashable] | None = None,
    ) -> None:
        self.catalog = catalog
        self.player_id = player_id
        self.cell_of = cell_of
        self.applied: set[str] = set()
        self.failed_placements = 0

    def reset(self) -> None:
        self.applied.clear()
        self.failed_placements = 0

    def next_actions(
        self,
        state: GameStateResponse,
        config: PlacementStrategyConfig,
        occupied: Iterable[Position] = (),
    ) -> list[PlaceBuildingCommand]:
        if state.current_phase != Phase.PREPARATION.value or not state.is_game_active:
            return []
        taken = {self._slot(pos) for pos in occupied}
        if state.current_round == 1:
            if INITIAL_WAVE_KEY in self.applied:
                return []
            return self._initial_actions(state, config, taken)
        return self._upgrade_actions(state, config, taken)

    def record_result(self, command: PlaceBuildingCommand, result: Result) -> None:
        if result.success:
            return
        self.failed_placements += 1
        logger.warning(
            "strategy placement skipped type=%s at=(%g,%g): %s %s",
            command.building_type,
            command.position.x,
            command.position.y,
            result.error_message,
            result.detail,
        )

    def _slot(self, pos: Position) -> Hashable:
        if self.cell_of is None:
            return pos
        return self.cell_of(pos)

    def _command(self, building_def: BuildingDef, position: Position) -> PlaceBuildingCommand:
        return PlaceBuildingCommand(building_def.key, position, self.player_id)

    def _initial_actions(
        self,
        state: GameStateResponse,
        config: PlacementStrategyConfig,
        taken: set[Hashable],
    ) -> list[PlaceBuildingCommand]:
        # positions are applied one by one; those skipped for budget stay pending
        initial = config.initial_wave
        budget = int(state.money)
        commands: list[PlaceBuildingCommand] = []
        pending = 0
        for i, position in enumerate(initial.positions):
            key = f"{INITIAL_WAVE_KEY}[{i}]"
            if key in self.applied:
                continue
            slot = self._slot(position)
            if slot in taken:
                self.applied.add(key)
                continue
            limit = min(budget, int(initial.max_cost_per_building))
            building_def = self._category_type(initial.category, limit)
            if building_def is None:
                building_def = self._fallback_type(config, limit)
            if building_def is None:
                logger.info("initial position (%g,%g) unaffordable (budget=%s)", position.x, position.y, budget)
                pending += 1
                continue
            commands.append(self._command(building_def, position))
            self.applied.add(key)
            taken.add(slot)
            budget -= building_def.cost
        if not pending:
            self.applied.add(INITIAL_WAVE_KEY)
        return commands

    def _upgrade_actions(
        self,
        state: GameStateResponse,
        config: PlacementStrategyConfig,
        taken: set[Hashable],
    ) -> list[PlaceBuildingCommand]:
        pending: list[tuple[int, str, WaveUpgrade]] = []
        for key, upgrade in config.wave_upgrades.items():
            if key in self.applied:
                continue
            wave_round = wave_key_round(key)
            if wave_round is not None and state.current_round < wave_round:
                continue
            if self._slot(upgrade.position) in taken:
                continue
            pending.append((config.resolve_threshold(upgrade), key, upgrade))
        if not pending:
            return []
        pending.sort(key=lambda item: (item[0], item[1]))

        money = int(state.money)
        for threshold, key, upgrade in pending:
            if money < threshold:
                continue
            building_def = self._category_type(upgrade.category, money)
            if building_def is None:
                continue
            self.applied.add(key)
            logger.info("strategy upgrade %s -> %s (threshold=%s money=%s)", key, building_def.key, threshold, money)
            return [self._command(building_def, upgrade.position)]

        _, key, upgrade = pending[0]
        building_def = self._fallback_type(config, money)
        if building_def is None:
            return []
        self.applied.add(key)
        logger.info("strategy fallback %s -> %s (money=%s)", key, building_def.key, money)
        return [self._command(building_def, upgrade.position)]

    def _category_type(self, category: str, limit: int) -> BuildingDef | None:
        for building_def in self.catalog.by_category(category):
            if building_def.cost <= limit:
                return building_def
        return None

    def _fallback_type(self, config: PlacementStrategyConfig, limit: int) -> BuildingDef | None:
        fallback = config.fallback
        candidates: list[BuildingDef | None] = []
        if fallback.use_default_type:
            candidates.append(self.catalog.default_type())
        if fallback.use_cheapest_type:
            candidates.append(self.catalog.cheapest())
        if fallback.emergency_fallback:
            candidates.append(self.catalog.get(fallback.emergency_fallback))
        for building_def in candidates:
            if building_def is not None and building_def.cost <= limit:
                return building_def
        return None
