from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, ClassVar

from .errors import ErrorCode, ValidationError
from .model.catalog import BuildingDef
from .model.state import Building, Position


def _require_int(name: str, value: Any, *, minimum: int | None = None) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an int, got {value!r}")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")


def _require_str(name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string, got {value!r}")


@dataclass(frozen=True, slots=True)
class Result:
    success: bool
    error_message: str | None = None
    detail: str = ""

    @classmethod
    def failed(cls, error_message: str, detail: str = "", **data: Any):
        return cls(success=False, error_message=error_message, detail=detail, **data)


@dataclass(frozen=True, slots=True)
class Request:
    result_type: ClassVar[type[Result]] = Result
    is_query: ClassVar[bool] = False


# -- results -----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlaceBuildingResult(Result):
    building_id: int = 0
    cost_paid: int = 0

    @classmethod
    def successful(cls, building_id: int, cost_paid: int) -> PlaceBuildingResult:
        return cls(success=True, building_id=building_id, cost_paid=cost_paid)


@dataclass(frozen=True, slots=True)
class RemoveBuildingResult(Result):
    building_id: int = 0
    refunded: int = 0


@dataclass(frozen=True, slots=True)
class SpendMoneyResult(Result):
    remaining_money: int = 0

    @classmethod
    def successful(cls, remaining_money: int) -> SpendMoneyResult:
        return cls(success=True, remaining_money=remaining_money)


@dataclass(frozen=True, slots=True)
class CreditMoneyResult(Result):
    balance: int = 0


@dataclass(frozen=True, slots=True)
class StartRoundResult(Result):
    round_number: int = 0
    phase: str = ""

    @classmethod
    def successful(cls, round_number: int, phase: str) -> StartRoundResult:
        return cls(success=True, round_number=round_number, phase=phase)


@dataclass(frozen=True, slots=True)
class StartWaveResult(Result):
    wave_index: int = 0
    total_enemies: int = 0
    wave_name: str = ""

    @classmethod
    def successful(cls, wave_index: int, total_enemies: int, wave_name: str) -> StartWaveResult:
        return cls(
            success=True,
            wave_index=wave_index,
            total_enemies=total_enemies,
            wave_name=wave_name,
        )


@dataclass(frozen=True, slots=True)
class AdvanceTickResult(Result):
    phase: str = ""
    phase_time_remaining: float = 0.0


@dataclass(frozen=True, slots=True)
class EnemyReportResult(Result):
    enemies_remaining: int = 0
    phase: str = ""


@dataclass(frozen=True, slots=True)
class ResetMatchResult(Result):
    pass


@dataclass(frozen=True, slots=True)
class GameStateResponse(Result):
    money: int = 0
    lives: int = 0
    score: int = 0
    current_round: int = 1
    current_phase: str = ""
    phase_time_remaining: float = 0.0
    enemies_remaining: int = 0
    is_game_active: bool = False
    is_game_won: bool = False
    next_wave_index: int | None = None
    total_rounds: int = 0


@dataclass(frozen=True, slots=True)
class ListBuildingsResult(Result):
    buildings: tuple[Building, ...] = ()


@dataclass(frozen=True, slots=True)
class BuildingStatsResult(Result):
    stats: BuildingDef | None = None


# -- commands ----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlaceBuildingCommand(Request):
    result_type: ClassVar[type[Result]] = PlaceBuildingResult

    building_type: str
    position: Position
    player_id: int = 0

    def __post_init__(self) -> None:
        _require_str("building_type", self.building_type)
        if not isinstance(self.position, Position):
            raise ValidationError(f"position must be a Position, got {self.position!r}")
        if not (math.isfinite(self.position.x) and math.isfinite(self.position.y)):
            raise ValidationError(f"position must be finite, got {self.position!r}")
        _require_int("player_id", self.player_id, minimum=0)


@dataclass(frozen=True, slots=True)
class RemoveBuildingCommand(Request):
    result_type: ClassVar[type[Result]] = RemoveBuildingResult

    building_id: int
    refund: bool = True

    def __post_init__(self) -> None:
        _require_int("building_id", self.building_id, minimum=1)


@dataclass(frozen=True, slots=True)
class SpendMoneyCommand(Request):
    result_type: ClassVar[type[Result]] = SpendMoneyResult

    amount: int
    reason: str = "Unknown"

    def __post_init__(self) -> None:
        # Negative amounts are a ledger-level failure, not a malformed request.
        _require_int("amount", self.amount)


@dataclass(frozen=True, slots=True)
class CreditMoneyCommand(Request):
    result_type: ClassVar[type[Result]] = CreditMoneyResult

    amount: int
    reason: str = "Unknown"

    def __post_init__(self) -> None:
        _require_int("amount", self.amount)


@dataclass(frozen=True, slots=True)
class StartRoundCommand(Request):
    result_type: ClassVar[type[Result]] = StartRoundResult

    round_number: int = 0
    force_start: bool = False

    def __post_init__(self) -> None:
        _require_int("round_number", self.round_number, minimum=0)


@dataclass(frozen=True, slots=True)
class StartWaveCommand(Request):
    result_type: ClassVar[type[Result]] = StartWaveResult

    wave_index: int
    is_round_based: bool = True

    def __post_init__(self) -> None:
        _require_int("wave_index", self.wave_index, minimum=0)


@dataclass(frozen=True, slots=True)
class AdvanceTickCommand(Request):
    result_type: ClassVar[type[Result]] = AdvanceTickResult

    delta: float

    def __post_init__(self) -> None:
        if isinstance(self.delta, bool) or not isinstance(self.delta, (int, float)):
            raise ValidationError(f"delta must be a number, got {self.delta!r}")
        if not math.isfinite(self.delta) or self.delta < 0:
            raise ValidationError(f"delta must be finite and >= 0, got {self.delta!r}")


@dataclass(frozen=True, slots=True)
class ReportEnemyDefeatedCommand(Request):
    result_type: ClassVar[type[Result]] = EnemyReportResult

    reward: int = 0
    enemy_type: str = ""

    def __post_init__(self) -> None:
        _require_int("reward", self.reward, minimum=0)


@dataclass(frozen=True, slots=True)
class ReportEnemyLeakedCommand(Request):
    result_type: ClassVar[type[Result]] = EnemyReportResult

    lives_cost: int = 1
    enemy_type: str = ""

    def __post_init__(self) -> None:
        _require_int("lives_cost", self.lives_cost, minimum=0)


@dataclass(frozen=True, slots=True)
class ResetMatchCommand(Request):
    result_type: ClassVar[type[Result]] = ResetMatchResult


# -- queries -----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GetGameStateQuery(Request):
    result_type: ClassVar[type[Result]] = GameStateResponse
    is_query: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class ListBuildingsQuery(Request):
    result_type: ClassVar[type[Result]] = ListBuildingsResult
    is_query: ClassVar[bool] = True

    player_id: int | None = None


@dataclass(frozen=True, slots=True)
class GetBuildingStatsQuery(Request):
    result_type: ClassVar[type[Result]] = BuildingStatsResult
    is_query: ClassVar[bool] = True

    building_type: str

    def __post_init__(self) -> None:
        _require_str("building_type", self.building_type)


__all__ = [
    "ErrorCode",
    "Request",
    "Result",
    "PlaceBuildingCommand",
    "PlaceBuildingResult",
    "RemoveBuildingCommand",
    "RemoveBuildingResult",
    "SpendMoneyCommand",
    "SpendMoneyResult",
    "CreditMoneyCommand",
    "CreditMoneyResult",
    "StartRoundCommand",
    "StartRoundResult",
    "StartWaveCommand",
    "StartWaveResult",
    "AdvanceTickCommand",
    "AdvanceTickResult",
    "ReportEnemyDefeatedCommand",
    "ReportEnemyLeakedCommand",
    "EnemyReportResult",
    "ResetMatchCommand",
    "ResetMatchResult",
    "GetGameStateQuery",
    "GameStateResponse",
    "ListBuildingsQuery",
    "ListBuildingsResult",
    "GetBuildingStatsQuery",
    "BuildingStatsResult",
]
