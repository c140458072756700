from __future__ import annotations

from dataclasses import dataclass
import logging
import random
from typing import Iterable, Sequence

from tdmatch.core.model.catalog import BuildingCatalog, EnemyCatalog
from tdmatch.core.model.state import Building, Position
from tdmatch.core.rules.rounds import MatchEvent, PhaseChanged, WaveStarted


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SimEnemy:
    seq: int
    enemy_type: str
    health: float
    max_health: float
    speed: float
    reward: int
    lives_cost: int
    spawn_at: float
    distance: float = 0.0

    @property
    def is_alive(self) -> bool:
        return self.health > 0.0


@dataclass(frozen=True, slots=True)
class CombatReport:
    defeated: tuple[SimEnemy, ...] = ()
    leaked: tuple[SimEnemy, ...] = ()


class ScriptedCombat:
    """
    Deterministic stand-in for the combat collaborator.

    Enemies walk ``path_length`` units at their catalog speed, positioned along
    the ``path`` polyline (held at its last point once they run past it). Each
    building spends its damage per second on the leading enemy within its
    range, overflow carrying to the next one in range. Without a path there is
    no geometry, so every building reaches every enemy. The only randomness is
    a per-tick damage jitter drawn from a seeded ``random.Random``.
    """

    def __init__(
        self,
        enemies: EnemyCatalog,
        buildings: BuildingCatalog,
        *,
        path: Sequence[Position] = (),
        path_length: float = 800.0,
        seed: int = 12345,
        health_multiplier: float = 1.0,
        speed_multiplier: float = 1.0,
        damage_jitter: float = 0.1,
    ) -> None:
        if path_length <= 0:
            raise ValueError("path_length must be > 0")
        if speed_multiplier <= 0:
            raise ValueError("speed_multiplier must be > 0")
        self.enemies = enemies
        self.buildings = buildings
        self.path = tuple(path)
        self.path_length = float(path_length)
        self.seed = int(seed)
        self.health_multiplier = float(health_multiplier)
        self.speed_multiplier = float(speed_multiplier)
        self.damage_jitter = float(damage_jitter)
        self.rng = random.Random(self.seed)
        self.clock = 0.0
        self._seq = 0
        self._active: list[SimEnemy] = []
        self._legs = [(a, b, a.distance_to(b)) for a, b in zip(self.path[:-1], self.path[1:])]

    def reset(self) -> None:
        self.rng = random.Random(self.seed)
        self.clock = 0.0
        self._seq = 0
        self._active = []

    @property
    def pending_count(self) -> int:
        return len(self._active)

    def on_event(self, event: MatchEvent) -> None:
        if isinstance(event, WaveStarted):
            self._schedule(event)
        elif isinstance(event, PhaseChanged) and event.current.is_terminal:
            self._active = []

    def position_at(self, distance: float) -> Position | None:
        if not self.path:
            return None
        remaining = max(0.0, distance)
        for start, end, length in self._legs:
            if remaining <= length and length > 0.0:
                t = remaining / length
                return Position(start.x + (end.x - start.x) * t, start.y + (end.y - start.y) * t)
            remaining -= length
        return self.path[-1]

    def _schedule(self, event: WaveStarted) -> None:
        for group in event.wave.enemy_groups:
            enemy_def = self.enemies.require(group.enemy_type)
            health = enemy_def.health * group.health_multiplier * self.health_multiplier
            for i in range(group.count):
                self._seq += 1
                self._active.append(
                    SimEnemy(
                        seq=self._seq,
                        enemy_type=enemy_def.key,
                        health=health,
                        max_health=health,
                        speed=enemy_def.speed * self.speed_multiplier,
                        reward=enemy_def.reward,
                        lives_cost=enemy_def.lives_cost,
                        spawn_at=self.clock + group.start_delay + i * group.spawn_interval,
                    )
                )
        logger.debug(
            "scheduled wave round=%s index=%s enemies=%s",
            event.round_number,
            event.wave_index,
            event.wave.total_enemies,
        )

    def advance(self, delta: float, buildings: Iterable[Building]) -> CombatReport:
        self.clock += delta
        spawned = [e for e in self._active if e.spawn_at <= self.clock]
        if not spawned:
            return CombatReport()

        armed = []
        for building in sorted(buildings, key=lambda b: b.id):
            building_def = self.buildings.get(building.type)
            if building_def is not None and building_def.damage_per_second > 0.0:
                armed.append((building, building_def))

        defeated: list[SimEnemy] = []
        if armed:
            jitter = self.rng.uniform(1.0 - self.damage_jitter, 1.0 + self.damage_jitter)
            leading = sorted(spawned, key=lambda e: (-e.distance, e.seq))
            positions = {e.seq: self.position_at(e.distance) for e in leading}
            for building, building_def in armed:
                damage = building_def.damage_per_second * delta * jitter
                range_sq = building_def.range * building_def.range
                for enemy in leading:
                    if damage <= 0.0:
                        break
                    if not enemy.is_alive:
                        continue
                    pos = positions[enemy.seq]
                    if pos is not None and _distance_sq(building.position, pos) > range_sq:
                        continue
                    dealt = min(damage, enemy.health)
                    enemy.health -= dealt
                    damage -= dealt
                    if not enemy.is_alive:
                        defeated.append(enemy)

        leaked: list[SimEnemy] = []
        for enemy in spawned:
            if not enemy.is_alive:
                continue
            enemy.distance += enemy.speed * delta
            if enemy.distance >= self.path_length:
                leaked.append(enemy)

        gone = {e.seq for e in defeated} | {e.seq for e in leaked}
        self._active = [e for e in self._active if e.seq not in gone]
        return CombatReport(defeated=tuple(defeated), leaked=tuple(leaked))


def _distance_sq(a: Position, b: Position) -> float:
    dx = a.x - b.x
    dy = a.y - b.y
    return dx * dx + dy * dy
