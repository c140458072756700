from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest

from tdmatch.core.model.state import Position
from tdmatch.sim.config_loader import (
    _cast_scalar,
    apply_overrides,
    deep_merge,
    default_scenario_path,
    load_json_config,
    load_scenario,
    load_scenario_config,
    load_sim_config,
    load_strategy,
    parse_scenario,
    parse_strategy,
)


def _write(tmp_path: Path, name: str, payload: dict) -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _scenario_cfg() -> dict:
    return load_json_config(default_scenario_path())


def test_default_scenario_loads(default_scenario):
    assert default_scenario.waves.total_rounds == 4
    assert default_scenario.buildings.default_type().key == "basic_tower"
    assert default_scenario.buildings.cheapest().cost == 100
    assert default_scenario.map.path_length == pytest.approx(896.0)
    assert default_scenario.waves.round(2).waves[1].display_name == "Wave 3"


def test_default_strategy_loads(default_strategy, default_scenario):
    assert default_strategy.initial_wave.category == "starter"
    assert len(default_strategy.initial_wave.positions) == 3
    assert default_strategy.resolve_threshold(default_strategy.wave_upgrades["wave_3"]) == 250
    assert default_strategy.fallback.emergency_fallback == "basic_tower"
    for position in default_strategy.initial_wave.positions:
        assert default_scenario.map.can_build_at_position(position)
    for upgrade in default_strategy.wave_upgrades.values():
        assert default_scenario.map.can_build_at_position(upgrade.position)


def test_unknown_keys_rejected(tmp_path: Path):
    cfg = _scenario_cfg()
    cfg["simulation"]["turbo"] = True
    cfg["colour"] = "red"
    with pytest.raises(ValueError, match="colour, simulation.turbo"):
        load_json_config(_write(tmp_path, "bad.json", cfg))


def test_unsupported_schema_version(tmp_path: Path):
    cfg = _scenario_cfg()
    cfg["schema_version"] = 2
    with pytest.raises(ValueError, match="schema_version"):
        load_json_config(_write(tmp_path, "bad.json", cfg))


def test_root_must_be_object(tmp_path: Path):
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError, match="JSON object"):
        load_json_config(path)


def test_unknown_enemy_type_in_wave():
    cfg = _scenario_cfg()
    cfg["waves"]["rounds"][0]["waves"][0]["enemy_groups"][0]["enemy_type"] = "dragon"
    with pytest.raises(ValueError, match="dragon"):
        parse_scenario(cfg)


def test_unknown_building_field_rejected():
    cfg = _scenario_cfg()
    cfg["buildings"][0]["armor"] = 3
    with pytest.raises(ValueError, match="armor"):
        parse_scenario(cfg)


def test_overrides_apply_to_sim_config():
    sim = load_sim_config(overrides=["simulation.starting_money=900", "simulation.enemy_health_multiplier=1.5"])
    assert sim.starting_money == 900
    assert sim.enemy_health_multiplier == pytest.approx(1.5)
    assert sim.path_length is None


def test_overrides_are_validated():
    with pytest.raises(ValueError):
        load_scenario(overrides=["simulation.bogus=1"])
    with pytest.raises(ValueError):
        load_sim_config(overrides=["simulation.starting_lives=0"])


@pytest.mark.parametrize("item", ["no_equals", "=1", "a..b=1"])
def test_bad_override_syntax(item: str):
    with pytest.raises(ValueError):
        apply_overrides({}, [item])


def test_apply_overrides_creates_nested_keys():
    cfg = apply_overrides({"a": 1}, ["b.c.d=true", "a=2.5"])
    assert cfg == {"a": 2.5, "b": {"c": {"d": True}}}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("true", True), ("False", False), ("12", 12), ("0.5", 0.5), ("null", None), ("hello", "hello")],
)
def test_cast_scalar(raw: str, expected):
    assert _cast_scalar(raw) == expected


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    snapshot = copy.deepcopy(base)
    merged = deep_merge(base, {"a": {"c": 5}, "e": 6})
    assert merged == {"a": {"b": 1, "c": 5}, "d": 3, "e": 6}
    assert base == snapshot



def test_partial_scenario_file_overlays_default(tmp_path: Path, default_scenario):
    path = _write(tmp_path, "harder.json", {"simulation": {"starting_money": 250, "enemy_speed_multiplier": 1.5}})

    cfg = load_scenario_config(path)
    sim = load_sim_config(path)
    scenario = load_scenario(path)

    assert cfg["schema_version"] == 1
    assert cfg["simulation"]["starting_lives"] == _scenario_cfg()["simulation"]["starting_lives"]
    assert sim.starting_money == 250
    assert sim.enemy_speed_multiplier == pytest.approx(1.5)
    assert scenario.map == default_scenario.map
    assert [d.key for d in scenario.buildings.all()] == [d.key for d in default_scenario.buildings.all()]


def test_overlay_keys_are_validated(tmp_path: Path):
    path = _write(tmp_path, "bad.json", {"simulation": {"enemy_speed_multiplier": 0}, "colour": "red"})
    with pytest.raises(ValueError, match="colour"):
        load_scenario_config(path)
    with pytest.raises(ValueError, match="enemy_speed_multiplier"):
        load_sim_config(_write(tmp_path, "slow.json", {"simulation": {"enemy_speed_multiplier": 0}}))


def test_speed_multiplier_override():
    sim = load_sim_config(overrides=["simulation.enemy_speed_multiplier=1.5"])
    assert sim.enemy_speed_multiplier == pytest.approx(1.5)
    assert load_sim_config().enemy_speed_multiplier == 1.0

def test_strategy_threshold_name_must_exist(tmp_path: Path):
    payload = {
        "strategies": {
            "initial_wave": {"building_category": "starter", "positions": [[16, 16]]},
            "wave_upgrades": {"wave_2": {"category": "rapid", "cost_threshold": "huge", "position": [48, 48]}},
        },
        "cost_thresholds": {"low": 100},
    }
    with pytest.raises(ValueError, match="huge"):
        load_strategy(_write(tmp_path, "strategy.json", payload))


def test_strategy_positions_accept_objects():
    config = parse_strategy(
        {
            "strategies": {
                "initial_wave": {"building_category": "starter", "positions": [{"x": 16, "y": 48}]},
            }
        }
    )
    assert config.initial_wave.positions == (Position(16.0, 48.0),)
    assert config.wave_upgrades == {}
    assert config.fallback.use_default_type


def test_strategy_rejects_bad_position():
    with pytest.raises(ValueError, match="x, y"):
        parse_strategy({"strategies": {"initial_wave": {"building_category": "starter", "positions": [[1]]}}})
