from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any

import gymnasium as gym
import numpy as np

from tdmatch.core.engine import Match
from tdmatch.core.messages import GameStateResponse, GetGameStateQuery, PlaceBuildingCommand, StartRoundCommand
from tdmatch.core.model.catalog import BuildingDef
from tdmatch.core.model.map import MapBoundary
from tdmatch.core.model.state import Phase, Position
from tdmatch.sim.config_loader import load_scenario
from tdmatch.sim.harness import Scenario, SimulationConfig, SimulationHarness, advance_match, default_combat


logger = logging.getLogger(__name__)

PHASES = [phase.value for phase in Phase]
SCALAR_KEYS = (
    "money",
    "lives",
    "score",
    "current_round",
    "total_rounds",
    "enemies_remaining",
    "buildings",
    "build_actions_left",
)


class MatchEnv(gym.Env):
    """
    Agent-facing adapter over one match.

    Action 0 ends the build phase: the round is started and simulated ticks
    run until the next preparation phase or the end of the match. Action
    ``1 + k * n_cells + j`` places building type ``k`` on candidate cell ``j``.
    Observations are the game state plus per-cell occupancy; reward is the
    score delta, minus a penalty per life lost, plus a terminal win/loss term.
    """

    metadata = {"render_modes": []}

    def __init__(
        self,
        scenario: Scenario | None = None,
        sim_config: SimulationConfig | None = None,
        *,
        tick_duration: float = 0.1,
        max_round_ticks: int = 20000,
        max_build_actions: int | None = 10,
        max_cells: int = 64,
        score_weight: float = 0.01,
        life_loss_penalty: float = 1.0,
        terminal_win_bonus: float = 100.0,
        terminal_loss_penalty: float = 100.0,
        invalid_action_penalty: float = 0.0,
    ) -> None:
        super().__init__()
        if tick_duration <= 0:
            raise ValueError("tick_duration must be > 0")
        self.scenario = scenario if scenario is not None else load_scenario()
        self.sim_config = sim_config or SimulationConfig()
        self.tick_duration = float(tick_duration)
        self.max_round_ticks = int(max_round_ticks)
        self.max_build_actions = max_build_actions
        self.score_weight = float(score_weight)
        self.life_loss_penalty = float(life_loss_penalty)
        self.terminal_win_bonus = float(terminal_win_bonus)
        self.terminal_loss_penalty = float(terminal_loss_penalty)
        self.invalid_action_penalty = float(invalid_action_penalty)

        self.building_types: list[BuildingDef] = sorted(self.scenario.buildings.all(), key=lambda d: d.key)
        cells = _cells_by_path_distance(self.scenario.map)[: max(0, int(max_cells))]
        self.cells: list[tuple[int, int]] = cells
        self.cell_positions: list[Position] = [self.scenario.map.cell_center(c) for c in cells]

        self.action_space = gym.spaces.Discrete(1 + len(self.building_types) * len(self.cells))
        self._obs_dim = len(SCALAR_KEYS) + len(PHASES) + len(self.cells)
        self.observation_space = gym.spaces.Box(
            low=-np.inf,
            high=np.inf,
            shape=(self._obs_dim,),
            dtype=np.float32,
        )

        self.match: Match | None = None
        self.combat = None
        self.engine_seed: int | None = None
        self.build_actions_since_round = 0
        self.prev_score = 0
        self.prev_lives = 0

    # -- gymnasium API ---------------------------------------------------------

    def reset(self, *, seed: int | None = None, options: dict[str, Any] | None = None) -> tuple[np.ndarray, dict]:
        super().reset(seed=seed)
        self.engine_seed = int(self.np_random.integers(0, 2**31 - 1))
        cfg = replace(self.sim_config, seed=self.engine_seed)
        self.match = SimulationHarness(self.scenario, cfg).build_match()
        self.combat = default_combat(self.scenario, cfg)
        self.match.rounds.add_listener(self.combat.on_event)

        state = self._state()
        self.build_actions_since_round = 0
        self.prev_score = state.score
        self.prev_lives = state.lives
        return self._observation(state), {"engine_seed": self.engine_seed, "action_mask": self.action_masks()}

    def step(self, action: int) -> tuple[np.ndarray, float, bool, bool, dict[str, Any]]:
        if self.match is None:
            raise RuntimeError("Environment not reset")
        state = self._state()
        if state.current_phase != Phase.PREPARATION.value:
            raise RuntimeError(f"step() called in phase={state.current_phase!r}")

        action_id = int(action)
        if not 0 <= action_id < self.action_space.n:
            raise ValueError(f"Invalid action id {action!r}")

        info: dict[str, Any] = {"invalid_action": False}
        truncated = False
        reward = 0.0
        if action_id == 0:
            truncated = self._play_round(info)
            self.build_actions_since_round = 0
        else:
            mask = self.action_masks()
            if not bool(mask[action_id]):
                info["invalid_action"] = True
                reward -= self.invalid_action_penalty
            else:
                result = self.match.dispatch(self._decode(action_id))
                info["placement"] = result.error_message or "ok"
                if result.success:
                    self.build_actions_since_round += 1
                else:
                    info["invalid_action"] = True
                    reward -= self.invalid_action_penalty

        state = self._state()
        reward += (state.score - self.prev_score) * self.score_weight
        reward -= max(0, self.prev_lives - state.lives) * self.life_loss_penalty
        terminated = not state.is_game_active
        if state.current_phase == Phase.VICTORY.value:
            reward += self.terminal_win_bonus
        elif state.current_phase == Phase.GAME_OVER.value:
            reward -= self.terminal_loss_penalty
        self.prev_score = state.score
        self.prev_lives = state.lives

        info["action_mask"] = self.action_masks()
        info["phase"] = state.current_phase
        return self._observation(state), float(reward), terminated, truncated, info

    def action_masks(self) -> np.ndarray:
        mask = np.zeros(self.action_space.n, dtype=bool)
        mask[0] = True
        if self.match is None:
            return mask
        state = self._state()
        if state.current_phase != Phase.PREPARATION.value or not state.is_game_active:
            return mask
        if self.max_build_actions is not None and self.build_actions_since_round >= self.max_build_actions:
            return mask
        occupied = self.match.registry.occupied_cells()
        n_cells = len(self.cells)
        for k, building_def in enumerate(self.building_types):
            if building_def.cost > state.money:
                continue
            for j, cell in enumerate(self.cells):
                if cell not in occupied:
                    mask[1 + k * n_cells + j] = True
        return mask

    # -- internals -------------------------------------------------------------

    def _decode(self, action_id: int) -> PlaceBuildingCommand:
        k, j = divmod(action_id - 1, len(self.cells))
        return PlaceBuildingCommand(self.building_types[k].key, self.cell_positions[j])

    def _play_round(self, info: dict[str, Any]) -> bool:
        started = self.match.dispatch(StartRoundCommand())
        if not started.success:
            logger.warning("round start rejected: %s %s", started.error_message, started.detail)
        ticks = 0
        state = self._state()
        while state.is_game_active and ticks < self.max_round_ticks:
            state = advance_match(self.match, self.combat, self.tick_duration, auto_start=False)
            ticks += 1
            if state.current_phase == Phase.PREPARATION.value:
                break
        info["round_ticks"] = ticks
        truncated = state.is_game_active and state.current_phase != Phase.PREPARATION.value
        if truncated:
            logger.info("round %s truncated after %s ticks", state.current_round, ticks)
        return truncated

    def _state(self) -> GameStateResponse:
        return self.match.dispatch(GetGameStateQuery())

    def _observation(self, state: GameStateResponse) -> np.ndarray:
        build_left = 0
        if self.max_build_actions is not None:
            build_left = max(0, self.max_build_actions - self.build_actions_since_round)
        scalars = [
            state.money,
            state.lives,
            state.score,
            state.current_round,
            state.total_rounds,
            state.enemies_remaining,
            self.match.registry.count,
            build_left,
        ]
        phase = [1.0 if state.current_phase == name else 0.0 for name in PHASES]
        occupied = self.match.registry.occupied_cells()
        cells = [1.0 if cell in occupied else 0.0 for cell in self.cells]
        return np.asarray(scalars + phase + cells, dtype=np.float32)


def _cells_by_path_distance(map_boundary: MapBoundary) -> list[tuple[int, int]]:
    # nearest to the path first; ties keep row-major order
    cells = map_boundary.buildable_cells()
    return sorted(cells, key=lambda cell: map_boundary.path_distance_sq(map_boundary.cell_center(cell)))
