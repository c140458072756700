from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math


class Phase(Enum):
    PREPARATION = "Preparation"
    WAVE_ACTIVE = "WaveActive"
    ROUND_END = "RoundEnd"
    GAME_OVER = "GameOver"
    VICTORY = "Victory"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.GAME_OVER, Phase.VICTORY)


@dataclass(frozen=True, slots=True)
class Position:
    x: float
    y: float

    def distance_to(self, other: Position) -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True, slots=True)
class Building:
    id: int
    type: str
    position: Position
    cost_paid: int
    player_id: int = 0


@dataclass(slots=True)
class GameState:
    money: int = 500
    lives: int = 20
    score: int = 0
    current_round: int = 1
    current_phase: Phase = Phase.PREPARATION
    phase_time_remaining: float = 0.0
    enemies_remaining: int = 0
    is_game_active: bool = True
