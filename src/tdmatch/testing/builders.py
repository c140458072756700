from __future__ import annotations

from typing import Sequence

from tdmatch.core.engine import Match
from tdmatch.core.model.catalog import (
    BuildingCatalog,
    BuildingDef,
    EnemyCatalog,
    EnemyDef,
    EnemyGroup,
    RoundDefinition,
    WaveCatalog,
    WaveDefinition,
)
from tdmatch.core.model.map import MapBoundary
from tdmatch.core.model.state import Position
from tdmatch.sim.harness import Scenario


# Cell (2, 1) center; buildable, but out of basic tower range of the lane at y=240.
OPEN_CELL = Position(80.0, 48.0)
LANE_Y = 240.0


def building_catalog(*extra: BuildingDef) -> BuildingCatalog:
    defs = [
        BuildingDef("basic_tower", "Basic Tower", "starter", 100, 10.0, 1.0, 96.0, is_default=True),
        BuildingDef("rapid_tower", "Rapid Tower", "rapid", 150, 5.0, 3.0, 80.0),
        BuildingDef("sniper_tower", "Sniper Tower", "precision", 250, 60.0, 0.5, 224.0),
    ]
    defs.extend(extra)
    return BuildingCatalog(defs)


def enemy_catalog() -> EnemyCatalog:
    return EnemyCatalog(
        [
            EnemyDef("grunt", health=20.0, speed=50.0, reward=5),
            EnemyDef("brute", health=400.0, speed=100.0, reward=50, lives_cost=5),
        ]
    )


def lane_map(width: float = 640.0, height: float = 480.0) -> MapBoundary:
    return MapBoundary(
        width=width,
        height=height,
        grid=32,
        path=(Position(0.0, LANE_Y), Position(width, LANE_Y)),
        name="lane",
    )


def wave(
    number: int,
    count: int,
    *,
    enemy_type: str = "grunt",
    spawn_interval: float = 1.0,
    pre_wave_delay: float = 0.0,
    post_wave_delay: float = 0.0,
    bonus_money: int = 0,
    name: str = "",
) -> WaveDefinition:
    groups = (EnemyGroup(enemy_type, count, spawn_interval),) if count else ()
    return WaveDefinition(
        wave_number=number,
        enemy_groups=groups,
        pre_wave_delay=pre_wave_delay,
        post_wave_delay=post_wave_delay,
        bonus_money=bonus_money,
        name=name,
    )


def wave_catalog(rounds: Sequence[Sequence[int]], **wave_kwargs) -> WaveCatalog:
    """``rounds`` lists the enemy count of every wave, one inner sequence per round."""
    out: list[RoundDefinition] = []
    number = 0
    for round_number, counts in enumerate(rounds, start=1):
        waves: list[WaveDefinition] = []
        for count in counts:
            number += 1
            waves.append(wave(number, count, **wave_kwargs))
        out.append(RoundDefinition(round_number, tuple(waves)))
    return WaveCatalog(tuple(out))


def make_match(
    *,
    money: int = 500,
    lives: int = 20,
    rounds: Sequence[Sequence[int]] = ((3,),),
    waves: WaveCatalog | None = None,
    buildings: BuildingCatalog | None = None,
    raise_faults: bool = False,
) -> Match:
    return Match(
        buildings or building_catalog(),
        waves or wave_catalog(rounds),
        lane_map(),
        starting_money=money,
        starting_lives=lives,
        raise_faults=raise_faults,
    )


def make_scenario(waves: WaveCatalog, buildings: BuildingCatalog | None = None) -> Scenario:
    return Scenario(
        buildings=buildings or building_catalog(),
        enemies=enemy_catalog(),
        waves=waves,
        map=lane_map(),
    )
