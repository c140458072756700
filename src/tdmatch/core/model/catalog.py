from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable


@dataclass(frozen=True, slots=True)
class BuildingDef:
    key: str
    display_name: str
    category: str
    cost: int
    damage: float
    fire_rate: float
    range: float
    is_default: bool = False

    @property
    def damage_per_second(self) -> float:
        return self.damage * self.fire_rate


@dataclass(frozen=True, slots=True)
class EnemyDef:
    key: str
    health: float
    speed: float
    reward: int
    lives_cost: int = 1


@dataclass(frozen=True, slots=True)
class EnemyGroup:
    enemy_type: str
    count: int
    spawn_interval: float
    start_delay: float = 0.0
    health_multiplier: float = 1.0


@dataclass(frozen=True, slots=True)
class WaveDefinition:
    wave_number: int
    enemy_groups: tuple[EnemyGroup, ...]
    pre_wave_delay: float = 0.0
    post_wave_delay: float = 0.0
    bonus_money: int = 0
    name: str = ""

    @property
    def total_enemies(self) -> int:
        return sum(group.count for group in self.enemy_groups)

    @property
    def display_name(self) -> str:
        return self.name or f"Wave {self.wave_number}"


@dataclass(frozen=True, slots=True)
class RoundDefinition:
    round_number: int
    waves: tuple[WaveDefinition, ...]


class BuildingCatalog:
    """Read-only building lookup; owned by whoever builds the match and injected."""

    def __init__(self, defs: Iterable[BuildingDef]) -> None:
        self._defs: dict[str, BuildingDef] = {}
        for building_def in defs:
            if building_def.key in self._defs:
                raise ValueError(f"Duplicate building key: {building_def.key!r}")
            self._defs[building_def.key] = building_def

    def __contains__(self, key: object) -> bool:
        return key in self._defs

    def __len__(self) -> int:
        return len(self._defs)

    def get(self, key: str) -> BuildingDef | None:
        return self._defs.get(key)

    def require(self, key: str) -> BuildingDef:
        try:
            return self._defs[key]
        except KeyError as exc:
            raise KeyError(f"Unknown building type: {key!r}") from exc

    def all(self) -> list[BuildingDef]:
        return list(self._defs.values())

    def by_category(self, category: str) -> list[BuildingDef]:
        return [d for d in self._defs.values() if d.category == category]

    def cheapest(self) -> BuildingDef | None:
        priced = [d for d in self._defs.values() if d.cost > 0]
        if not priced:
            return None
        return min(priced, key=lambda d: (d.cost, d.key))

    def default_type(self) -> BuildingDef | None:
        for building_def in self._defs.values():
            if building_def.is_default:
                return building_def
        return None


class EnemyCatalog:
    def __init__(self, defs: Iterable[EnemyDef]) -> None:
        self._defs = {d.key: d for d in defs}

    def __contains__(self, key: object) -> bool:
        return key in self._defs

    def require(self, key: str) -> EnemyDef:
        try:
            return self._defs[key]
        except KeyError as exc:
            raise KeyError(f"Unknown enemy type: {key!r}") from exc


@dataclass(frozen=True, slots=True)
class WaveCatalog:
    rounds: tuple[RoundDefinition, ...]
    name: str = "default"
    _offsets: tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.rounds:
            raise ValueError("wave catalog needs at least one round")
        offsets: list[int] = []
        total = 0
        for round_def in self.rounds:
            if not round_def.waves:
                raise ValueError(f"round {round_def.round_number} has no waves")
            offsets.append(total)
            total += len(round_def.waves)
        object.__setattr__(self, "_offsets", tuple(offsets))

    @property
    def total_rounds(self) -> int:
        return len(self.rounds)

    def round(self, round_number: int) -> RoundDefinition:
        if round_number < 1 or round_number > len(self.rounds):
            raise IndexError(f"round {round_number} out of range 1..{len(self.rounds)}")
        return self.rounds[round_number - 1]

    def wave_offset(self, round_number: int) -> int:
        """Number of waves configured before ``round_number``."""
        return self._offsets[round_number - 1]
