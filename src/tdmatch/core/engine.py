from __future__ import annotations

import logging

from .mediator import Mediator
from .messages import (
    AdvanceTickCommand,
    AdvanceTickResult,
    BuildingStatsResult,
    CreditMoneyCommand,
    CreditMoneyResult,
    EnemyReportResult,
    GameStateResponse,
    GetBuildingStatsQuery,
    GetGameStateQuery,
    ListBuildingsQuery,
    ListBuildingsResult,
    PlaceBuildingCommand,
    PlaceBuildingResult,
    RemoveBuildingCommand,
    RemoveBuildingResult,
    ReportEnemyDefeatedCommand,
    ReportEnemyLeakedCommand,
    Request,
    ResetMatchCommand,
    ResetMatchResult,
    Result,
    SpendMoneyCommand,
    SpendMoneyResult,
    StartRoundCommand,
    StartRoundResult,
    StartWaveCommand,
    StartWaveResult,
)
from .errors import ErrorCode
from .model.catalog import BuildingCatalog, WaveCatalog
from .model.map import MapBoundary
from .model.state import GameState
from .rules.economy import EconomyLedger
from .rules.placement import DEFAULT_SELL_RATIO, BuildingPlacementValidator, BuildingRegistry
from .rules.rounds import RoundWaveStateMachine


logger = logging.getLogger(__name__)

DEFAULT_STARTING_MONEY = 500
DEFAULT_STARTING_LIVES = 20


class Match:
    """
    Composition root for one match: no rendering, no global registries.

    Every collaborator is passed in and every mutation goes through
    ``dispatch``; ``state`` is exposed for tests and in-process adapters only,
    callers outside the core should read ``GetGameStateQuery`` instead.
    """

    def __init__(
        self,
        buildings: BuildingCatalog,
        waves: WaveCatalog,
        map_boundary: MapBoundary,
        *,
        starting_money: int = DEFAULT_STARTING_MONEY,
        starting_lives: int = DEFAULT_STARTING_LIVES,
        sell_ratio: float = DEFAULT_SELL_RATIO,
        raise_faults: bool = False,
    ) -> None:
        if starting_money < 0 or starting_lives < 0:
            raise ValueError("starting money and lives must be >= 0")
        self.buildings = buildings
        self.waves = waves
        self.map = map_boundary
        self.starting_money = int(starting_money)
        self.starting_lives = int(starting_lives)

        self.state = GameState(money=self.starting_money, lives=self.starting_lives)
        self.ledger = EconomyLedger(self.state)
        self.registry = BuildingRegistry(map_boundary)
        self.placement = BuildingPlacementValidator(
            buildings,
            map_boundary,
            self.ledger,
            self.registry,
            sell_ratio=sell_ratio,
        )
        self.rounds = RoundWaveStateMachine(self.state, waves, self.ledger)

        self.mediator = Mediator(raise_faults=raise_faults)
        self._register_handlers()
        self.mediator.freeze()

    def dispatch(self, request: Request) -> Result:
        return self.mediator.dispatch(request)

    def observe(self) -> GameStateResponse:
        return self.mediator.dispatch(GetGameStateQuery())

    def _register_handlers(self) -> None:
        m = self.mediator
        m.register(PlaceBuildingCommand, self._handle_place_building)
        m.register(RemoveBuildingCommand, self._handle_remove_building)
        m.register(SpendMoneyCommand, self._handle_spend_money)
        m.register(CreditMoneyCommand, self._handle_credit_money)
        m.register(StartRoundCommand, self._handle_start_round)
        m.register(StartWaveCommand, self._handle_start_wave)
        m.register(AdvanceTickCommand, self._handle_advance_tick)
        m.register(ReportEnemyDefeatedCommand, self._handle_enemy_defeated)
        m.register(ReportEnemyLeakedCommand, self._handle_enemy_leaked)
        m.register(ResetMatchCommand, self._handle_reset)
        m.register(GetGameStateQuery, self._handle_get_game_state)
        m.register(ListBuildingsQuery, self._handle_list_buildings)
        m.register(GetBuildingStatsQuery, self._handle_building_stats)

    # -- command handlers ----------------------------------------------------

    def _ended(self, result_type):
        if self.state.current_phase.is_terminal:
            return result_type.failed(
                ErrorCode.MATCH_ALREADY_ENDED,
                detail=f"Match ended in {self.state.current_phase.value}",
            )
        return None

    def _handle_place_building(self, cmd: PlaceBuildingCommand) -> PlaceBuildingResult:
        ended = self._ended(PlaceBuildingResult)
        if ended is not None:
            return ended
        return self.placement.place_building(cmd.building_type, cmd.position, cmd.player_id)

    def _handle_remove_building(self, cmd: RemoveBuildingCommand) -> RemoveBuildingResult:
        ended = self._ended(RemoveBuildingResult)
        if ended is not None:
            return ended
        return self.placement.remove_building(cmd.building_id, refund=cmd.refund)

    def _handle_spend_money(self, cmd: SpendMoneyCommand) -> SpendMoneyResult:
        ended = self._ended(SpendMoneyResult)
        if ended is not None:
            return ended
        return self.ledger.spend(cmd.amount, cmd.reason)

    def _handle_credit_money(self, cmd: CreditMoneyCommand) -> CreditMoneyResult:
        ended = self._ended(CreditMoneyResult)
        if ended is not None:
            return ended
        return self.ledger.credit(cmd.amount, cmd.reason)

    def _handle_start_round(self, cmd: StartRoundCommand) -> StartRoundResult:
        return self.rounds.start_round(cmd.round_number, cmd.force_start)

    def _handle_start_wave(self, cmd: StartWaveCommand) -> StartWaveResult:
        return self.rounds.start_wave(cmd.wave_index, cmd.is_round_based)

    def _handle_advance_tick(self, cmd: AdvanceTickCommand) -> AdvanceTickResult:
        return self.rounds.tick(cmd.delta)

    def _handle_enemy_defeated(self, cmd: ReportEnemyDefeatedCommand) -> EnemyReportResult:
        return self.rounds.enemy_defeated(cmd.reward)

    def _handle_enemy_leaked(self, cmd: ReportEnemyLeakedCommand) -> EnemyReportResult:
        return self.rounds.enemy_leaked(cmd.lives_cost)

    def _handle_reset(self, cmd: ResetMatchCommand) -> ResetMatchResult:
        self.ledger.reset(self.starting_money)
        self.state.lives = self.starting_lives
        self.registry.clear()
        self.rounds.reset()
        logger.info("match reset money=%s lives=%s", self.state.money, self.state.lives)
        return ResetMatchResult(success=True)

    # -- query handlers ------------------------------------------------------

    def _handle_get_game_state(self, query: GetGameStateQuery) -> GameStateResponse:
        s = self.state
        return GameStateResponse(
            success=True,
            money=s.money,
            lives=s.lives,
            score=s.score,
            current_round=s.current_round,
            current_phase=s.current_phase.value,
            phase_time_remaining=s.phase_time_remaining,
            enemies_remaining=s.enemies_remaining,
            is_game_active=s.is_game_active,
            is_game_won=self.rounds.is_game_won,
            next_wave_index=self.rounds.next_wave_index,
            total_rounds=self.rounds.total_rounds,
        )

    def _handle_list_buildings(self, query: ListBuildingsQuery) -> ListBuildingsResult:
        buildings = self.registry.all()
        if query.player_id is not None:
            buildings = [b for b in buildings if b.player_id == query.player_id]
        return ListBuildingsResult(success=True, buildings=tuple(buildings))

    def _handle_building_stats(self, query: GetBuildingStatsQuery) -> BuildingStatsResult:
        stats = self.buildings.get(query.building_type)
        if stats is None:
            return BuildingStatsResult.failed(
                ErrorCode.UNKNOWN_BUILDING_TYPE,
                detail=f"Unknown building type: {query.building_type}",
            )
        return BuildingStatsResult(success=True, stats=stats)
