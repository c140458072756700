from __future__ import annotations

import json
from pathlib import Path
from typing import Any

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

from .harness import Scenario, SimulationConfig
from .strategy import (
    FallbackStrategy,
    InitialWaveStrategy,
    PlacementStrategyConfig,
    WaveUpgrade,
)


_SUPPORTED_SCHEMA_VERSIONS = {1}
_ALLOWED_KEYS: dict[str, Any] = {
    "schema_version": None,
    "name": None,
    "simulation": {
        "starting_money": None,
        "starting_lives": None,
        "seed": None,
        "enemy_health_multiplier": None,
        "enemy_speed_multiplier": None,
        "building_cost_multiplier": None,
        "path_length": None,
        "damage_jitter": None,
    },
    "map": {
        "name": None,
        "width": None,
        "height": None,
        "grid": None,
        "origin_x": None,
        "origin_y": None,
        "abyss_buffer": None,
        "path": None,
        "path_half_width": None,
        "allowed_cells": None,
    },
    "buildings": None,
    "enemies": None,
    "waves": {
        "name": None,
        "rounds": None,
    },
}
_STRATEGY_ALLOWED_KEYS: dict[str, Any] = {
    "schema_version": None,
    "strategies": {
        "initial_wave": {
            "building_category": None,
            "positions": None,
            "max_cost_per_building": None,
            "description": None,
        },
        "wave_upgrades": None,
    },
    "fallback_strategy": {
        "use_default_type": None,
        "use_cheapest_type": None,
        "emergency_fallback": None,
    },
    "cost_thresholds": None,
}
_BUILDING_KEYS = {"key", "display_name", "category", "cost", "damage", "fire_rate", "range", "is_default"}
_ENEMY_KEYS = {"key", "health", "speed", "reward", "lives_cost"}
_ROUND_KEYS = {"round_number", "waves"}
_WAVE_KEYS = {"wave_number", "name", "enemy_groups", "pre_wave_delay", "post_wave_delay", "bonus_money"}
_GROUP_KEYS = {"enemy_type", "count", "spawn_interval", "start_delay", "health_multiplier"}
_UPGRADE_KEYS = {"category", "cost_threshold", "position", "description"}


def data_root() -> Path:
    return Path(__file__).resolve().parents[3] / "data"


def default_scenario_path() -> Path:
    return data_root() / "scenarios" / "default.json"


def default_strategy_path() -> Path:
    return data_root() / "strategies" / "placement_strategies.json"


def load_json_config(path: str | Path) -> dict[str, Any]:
    payload = _read_json(path)
    _validate_config(payload)
    return payload


def load_strategy_json(path: str | Path) -> dict[str, Any]:
    payload = _read_json(path)
    unknown = _find_unknown_keys(payload, _STRATEGY_ALLOWED_KEYS, path="")
    if unknown:
        raise ValueError(f"unknown strategy keys: {', '.join(sorted(unknown))}")
    schema_version = payload.get("schema_version", 1)
    if schema_version not in _SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"unsupported schema_version: {schema_version}")
    return payload


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in out and isinstance(out[key], dict) and isinstance(value, dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def apply_overrides(cfg: dict[str, Any], overrides_list: list[str] | None) -> dict[str, Any]:
    if not overrides_list:
        return cfg

    out = cfg
    for item in overrides_list:
        if "=" not in item:
            raise ValueError(f"override must contain '=': {item}")
        path_str, value_str = item.split("=", 1)
        if not path_str:
            raise ValueError(f"override path empty: {item}")
        keys = path_str.split(".")
        if any(not key for key in keys):
            raise ValueError(f"override path has empty segment: {item}")
        value = _cast_scalar(value_str)

        cursor = out
        for key in keys[:-1]:
            if key not in cursor or not isinstance(cursor[key], dict):
                cursor[key] = {}
            cursor = cursor[key]
        cursor[keys[-1]] = value
    return out


def load_scenario_config(path: str | Path | None = None, overrides: list[str] | None = None) -> dict[str, Any]:
    """
    Default scenario, with ``path`` laid over it and ``overrides`` applied last.

    The overlay only needs the keys it changes; lists such as ``buildings`` or
    ``waves.rounds`` replace the default ones wholesale.
    """
    cfg = load_json_config(default_scenario_path())
    if path is not None:
        cfg = deep_merge(cfg, _read_json(path))
        _validate_config(cfg)
    if overrides:
        cfg = apply_overrides(cfg, overrides)
        _validate_config(cfg)
    return cfg


def load_scenario(path: str | Path | None = None, overrides: list[str] | None = None) -> Scenario:
    return parse_scenario(load_scenario_config(path, overrides))


def load_sim_config(path: str | Path | None = None, overrides: list[str] | None = None) -> SimulationConfig:
    return parse_sim_config(load_scenario_config(path, overrides).get("simulation", {}))


def load_strategy(path: str | Path | None = None) -> PlacementStrategyConfig:
    return parse_strategy(load_strategy_json(path or default_strategy_path()))


def parse_scenario(cfg: dict[str, Any]) -> Scenario:
    buildings = BuildingCatalog(_parse_building(entry) for entry in _require_list(cfg, "buildings"))
    enemies = EnemyCatalog(_parse_enemy(entry) for entry in _require_list(cfg, "enemies"))
    waves = parse_waves(_require_dict(cfg, "waves"))
    for round_def in waves.rounds:
        for wave in round_def.waves:
            for group in wave.enemy_groups:
                if group.enemy_type not in enemies:
                    raise ValueError(
                        f"round {round_def.round_number} wave {wave.wave_number}: "
                        f"unknown enemy_type '{group.enemy_type}'"
                    )
    return Scenario(
        buildings=buildings,
        enemies=enemies,
        waves=waves,
        map=parse_map(_require_dict(cfg, "map")),
    )


def parse_sim_config(section: dict[str, Any]) -> SimulationConfig:
    defaults = SimulationConfig()
    path_length = section.get("path_length", defaults.path_length)
    return SimulationConfig(
        starting_money=int(section.get("starting_money", defaults.starting_money)),
        starting_lives=int(section.get("starting_lives", defaults.starting_lives)),
        seed=int(section.get("seed", defaults.seed)),
        enemy_health_multiplier=float(section.get("enemy_health_multiplier", defaults.enemy_health_multiplier)),
        enemy_speed_multiplier=float(section.get("enemy_speed_multiplier", defaults.enemy_speed_multiplier)),
        building_cost_multiplier=float(section.get("building_cost_multiplier", defaults.building_cost_multiplier)),
        path_length=None if path_length is None else float(path_length),
        damage_jitter=float(section.get("damage_jitter", defaults.damage_jitter)),
    )


def parse_map(section: dict[str, Any]) -> MapBoundary:
    path = tuple(_parse_position(p, "map.path") for p in section.get("path", []))
    allowed = section.get("allowed_cells")
    allowed_cells = None
    if allowed is not None:
        allowed_cells = frozenset((int(c[0]), int(c[1])) for c in allowed)
    half_width = section.get("path_half_width")
    return MapBoundary(
        width=_require_number(section, "width"),
        height=_require_number(section, "height"),
        grid=int(section.get("grid", 32)),
        origin_x=float(section.get("origin_x", 0.0)),
        origin_y=float(section.get("origin_y", 0.0)),
        abyss_buffer=float(section.get("abyss_buffer", 64.0)),
        path=path,
        path_half_width=None if half_width is None else float(half_width),
        allowed_cells=allowed_cells,
        name=str(section.get("name", "")),
    )


def parse_waves(section: dict[str, Any]) -> WaveCatalog:
    rounds: list[RoundDefinition] = []
    for i, entry in enumerate(_require_list(section, "rounds"), start=1):
        _check_entry_keys(entry, _ROUND_KEYS, f"waves.rounds[{i - 1}]")
        round_number = int(entry.get("round_number", i))
        if round_number != i:
            raise ValueError(f"waves.rounds[{i - 1}].round_number must be {i}, got {round_number}")
        waves = tuple(
            _parse_wave(wave, f"waves.rounds[{i - 1}].waves[{j}]", j + 1)
            for j, wave in enumerate(_require_list(entry, "waves"))
        )
        rounds.append(RoundDefinition(round_number=round_number, waves=waves))
    return WaveCatalog(tuple(rounds), name=str(section.get("name", "default")))


def parse_strategy(cfg: dict[str, Any]) -> PlacementStrategyConfig:
    strategies = _require_dict(cfg, "strategies")
    initial_cfg = _require_dict(strategies, "initial_wave")
    category = initial_cfg.get("building_category")
    if not isinstance(category, str) or not category:
        raise ValueError("strategies.initial_wave.building_category must be a non-empty string")
    initial = InitialWaveStrategy(
        category=category,
        positions=tuple(
            _parse_position(p, "strategies.initial_wave.positions") for p in initial_cfg.get("positions", [])
        ),
        max_cost_per_building=int(initial_cfg.get("max_cost_per_building", 100)),
        description=str(initial_cfg.get("description", "")),
    )

    thresholds_cfg = cfg.get("cost_thresholds", {})
    if not isinstance(thresholds_cfg, dict):
        raise ValueError("config 'cost_thresholds' must be a JSON object")
    thresholds: dict[str, int] = {}
    for name, value in thresholds_cfg.items():
        if not _is_number(value):
            raise ValueError(f"cost_thresholds.{name} must be a number")
        thresholds[name] = int(value)

    upgrades_cfg = strategies.get("wave_upgrades", {})
    if not isinstance(upgrades_cfg, dict):
        raise ValueError("strategies.wave_upgrades must be a JSON object")
    upgrades: dict[str, WaveUpgrade] = {}
    for key, entry in upgrades_cfg.items():
        where = f"strategies.wave_upgrades.{key}"
        if not isinstance(entry, dict):
            raise ValueError(f"{where} must be a JSON object")
        _check_entry_keys(entry, _UPGRADE_KEYS, where)
        threshold = entry.get("cost_threshold", 0)
        if isinstance(threshold, str):
            if threshold not in thresholds:
                raise ValueError(f"{where}.cost_threshold names unknown threshold '{threshold}'")
        elif not _is_number(threshold):
            raise ValueError(f"{where}.cost_threshold must be a number or a threshold name")
        else:
            threshold = int(threshold)
        upgrades[key] = WaveUpgrade(
            category=str(entry.get("category", "")),
            cost_threshold=threshold,
            position=_parse_position(entry.get("position"), f"{where}.position"),
            description=str(entry.get("description", "")),
        )

    fallback_cfg = cfg.get("fallback_strategy", {})
    fallback = FallbackStrategy(
        use_default_type=bool(fallback_cfg.get("use_default_type", True)),
        use_cheapest_type=bool(fallback_cfg.get("use_cheapest_type", True)),
        emergency_fallback=str(fallback_cfg.get("emergency_fallback", "")),
    )
    return PlacementStrategyConfig(
        initial_wave=initial,
        wave_upgrades=upgrades,
        fallback=fallback,
        cost_thresholds=thresholds,
    )


def _read_json(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError(f"config root must be a JSON object: {p}")
    return payload


def _parse_building(entry: Any) -> BuildingDef:
    if not isinstance(entry, dict):
        raise ValueError("buildings entries must be JSON objects")
    _check_entry_keys(entry, _BUILDING_KEYS, "buildings[]")
    key = entry.get("key")
    if not isinstance(key, str) or not key:
        raise ValueError("buildings[].key must be a non-empty string")
    cost = _require_number(entry, "cost")
    if cost < 0:
        raise ValueError(f"buildings.{key}.cost must be >= 0")
    return BuildingDef(
        key=key,
        display_name=str(entry.get("display_name", key)),
        category=str(entry.get("category", "")),
        cost=int(cost),
        damage=float(entry.get("damage", 0.0)),
        fire_rate=float(entry.get("fire_rate", 0.0)),
        range=float(entry.get("range", 0.0)),
        is_default=bool(entry.get("is_default", False)),
    )


def _parse_enemy(entry: Any) -> EnemyDef:
    if not isinstance(entry, dict):
        raise ValueError("enemies entries must be JSON objects")
    _check_entry_keys(entry, _ENEMY_KEYS, "enemies[]")
    key = entry.get("key")
    if not isinstance(key, str) or not key:
        raise ValueError("enemies[].key must be a non-empty string")
    health = _require_number(entry, "health")
    speed = _require_number(entry, "speed")
    if health <= 0 or speed <= 0:
        raise ValueError(f"enemies.{key}: health and speed must be > 0")
    return EnemyDef(
        key=key,
        health=health,
        speed=speed,
        reward=int(entry.get("reward", 0)),
        lives_cost=int(entry.get("lives_cost", 1)),
    )


def _parse_wave(entry: Any, where: str, default_number: int) -> WaveDefinition:
    if not isinstance(entry, dict):
        raise ValueError(f"{where} must be a JSON object")
    _check_entry_keys(entry, _WAVE_KEYS, where)
    groups: list[EnemyGroup] = []
    for k, group in enumerate(entry.get("enemy_groups", [])):
        group_where = f"{where}.enemy_groups[{k}]"
        if not isinstance(group, dict):
            raise ValueError(f"{group_where} must be a JSON object")
        _check_entry_keys(group, _GROUP_KEYS, group_where)
        count = int(_require_number(group, "count"))
        if count < 0:
            raise ValueError(f"{group_where}.count must be >= 0")
        groups.append(
            EnemyGroup(
                enemy_type=str(group.get("enemy_type", "")),
                count=count,
                spawn_interval=float(group.get("spawn_interval", 1.0)),
                start_delay=float(group.get("start_delay", 0.0)),
                health_multiplier=float(group.get("health_multiplier", 1.0)),
            )
        )
    bonus = int(entry.get("bonus_money", 0))
    if bonus < 0:
        raise ValueError(f"{where}.bonus_money must be >= 0")
    return WaveDefinition(
        wave_number=int(entry.get("wave_number", default_number)),
        enemy_groups=tuple(groups),
        pre_wave_delay=float(entry.get("pre_wave_delay", 0.0)),
        post_wave_delay=float(entry.get("post_wave_delay", 0.0)),
        bonus_money=bonus,
        name=str(entry.get("name", "")),
    )


def _parse_position(value: Any, where: str) -> Position:
    if isinstance(value, dict):
        value = [value.get("x"), value.get("y")]
    if not isinstance(value, (list, tuple)) or len(value) != 2 or not all(_is_number(v) for v in value):
        raise ValueError(f"{where} entries must be [x, y] pairs, got {value!r}")
    return Position(float(value[0]), float(value[1]))


def _cast_scalar(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("null", "none"):
        return None
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_dict(parent: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in parent:
        raise ValueError(f"missing '{key}' section in config")
    value = parent[key]
    if not isinstance(value, dict):
        raise ValueError(f"config '{key}' must be a JSON object")
    return value


def _require_list(parent: dict[str, Any], key: str) -> list[Any]:
    if key not in parent:
        raise ValueError(f"missing '{key}' in config")
    value = parent[key]
    if not isinstance(value, list) or not value:
        raise ValueError(f"config '{key}' must be a non-empty JSON array")
    return value


def _require_number(parent: dict[str, Any], key: str) -> float:
    if key not in parent:
        raise ValueError(f"missing '{key}' in config")
    value = parent[key]
    if not _is_number(value):
        raise ValueError(f"config '{key}' must be a number")
    return float(value)


def _check_entry_keys(entry: dict[str, Any], allowed: set[str], where: str) -> None:
    unknown = sorted(key for key in entry if key not in allowed)
    if unknown:
        raise ValueError(f"unknown config keys in {where}: {', '.join(unknown)}")


def _validate_config(cfg: dict[str, Any]) -> None:
    unknown = _find_unknown_keys(cfg, _ALLOWED_KEYS, path="")
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ValueError(f"unknown config keys: {unknown_str}")

    schema_version = cfg.get("schema_version")
    if schema_version not in _SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"unsupported schema_version: {schema_version}")

    sim_cfg = cfg.get("simulation", {})
    if not isinstance(sim_cfg, dict):
        raise ValueError("config 'simulation' must be a JSON object")
    for key in ("starting_money", "starting_lives", "seed"):
        if key in sim_cfg and not _is_number(sim_cfg[key]):
            raise ValueError(f"simulation.{key} must be a number")
    if sim_cfg.get("starting_lives", 1) < 1:
        raise ValueError("simulation.starting_lives must be >= 1")
    if sim_cfg.get("starting_money", 0) < 0:
        raise ValueError("simulation.starting_money must be >= 0")
    for key in ("enemy_health_multiplier", "enemy_speed_multiplier", "building_cost_multiplier"):
        value = sim_cfg.get(key, 1.0)
        if not _is_number(value) or value <= 0:
            raise ValueError(f"simulation.{key} must be a number > 0")
    path_length = sim_cfg.get("path_length")
    if path_length is not None and (not _is_number(path_length) or path_length <= 0):
        raise ValueError("simulation.path_length must be a number > 0 or null")

    map_cfg = _require_dict(cfg, "map")
    if _require_number(map_cfg, "width") <= 0 or _require_number(map_cfg, "height") <= 0:
        raise ValueError("map.width and map.height must be > 0")


def _find_unknown_keys(value: Any, allowed: Any, *, path: str) -> list[str]:
    if not isinstance(value, dict) or not isinstance(allowed, dict):
        return []
    unknown: list[str] = []
    for key, sub_value in value.items():
        if key not in allowed:
            unknown.append(f"{path}{key}" if path else key)
            continue
        sub_allowed = allowed[key]
        if isinstance(sub_value, dict) and isinstance(sub_allowed, dict):
            child_path = f"{path}{key}."
            unknown.extend(_find_unknown_keys(sub_value, sub_allowed, path=child_path))
    return unknown
