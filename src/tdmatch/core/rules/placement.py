from __future__ import annotations

import logging

from ..errors import ErrorCode
from ..messages import PlaceBuildingResult, RemoveBuildingResult
from ..model.catalog import BuildingCatalog
from ..model.map import MapBoundary
from ..model.state import Building, Position
from .economy import EconomyLedger


logger = logging.getLogger(__name__)

DEFAULT_SELL_RATIO = 0.75


class BuildingRegistry:
    def __init__(self, map_boundary: MapBoundary) -> None:
        self.map = map_boundary
        self._buildings: dict[int, Building] = {}
        self._by_cell: dict[tuple[int, int], int] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._buildings)

    @property
    def count(self) -> int:
        return len(self._buildings)

    @property
    def next_id(self) -> int:
        return self._next_id

    def get(self, building_id: int) -> Building | None:
        return self._buildings.get(building_id)

    def all(self) -> list[Building]:
        return [self._buildings[key] for key in sorted(self._buildings)]

    def is_occupied(self, pos: Position) -> bool:
        return self.map.cell_of(pos) in self._by_cell

    def occupied_cells(self) -> frozenset[tuple[int, int]]:
        return frozenset(self._by_cell)

    def add(self, building_type: str, position: Position, cost_paid: int, player_id: int = 0) -> Building:
        building = Building(
            id=self._next_id,
            type=building_type,
            position=position,
            cost_paid=int(cost_paid),
            player_id=int(player_id),
        )
        self._next_id += 1
        self._buildings[building.id] = building
        self._by_cell[self.map.cell_of(position)] = building.id
        return building

    def remove(self, building_id: int) -> Building | None:
        building = self._buildings.pop(building_id, None)
        if building is not None:
            self._by_cell.pop(self.map.cell_of(building.position), None)
        return building

    def clear(self) -> None:
        self._buildings.clear()
        self._by_cell.clear()
        self._next_id = 1


class BuildingPlacementValidator:
    """
    Checks are ordered and the first failure wins: type, position, money.

    Nothing is written before all three pass, so a failed placement leaves the
    ledger, the registry and the id counter untouched.
    """

    def __init__(
        self,
        catalog: BuildingCatalog,
        map_boundary: MapBoundary,
        ledger: EconomyLedger,
        registry: BuildingRegistry,
        *,
        sell_ratio: float = DEFAULT_SELL_RATIO,
    ) -> None:
        self.catalog = catalog
        self.map = map_boundary
        self.ledger = ledger
        self.registry = registry
        self.sell_ratio = float(sell_ratio)

    def can_build_at(self, position: Position) -> bool:
        if self.map.is_in_abyss_buffer_zone(position):
            return False
        if not self.map.can_build_at_position(position):
            return False
        return not self.registry.is_occupied(position)

    def place_building(self, building_type: str, position: Position, player_id: int = 0) -> PlaceBuildingResult:
        building_def = self.catalog.get(building_type)
        if building_def is None:
            return PlaceBuildingResult.failed(
                ErrorCode.UNKNOWN_BUILDING_TYPE,
                detail=f"Unknown building type: {building_type}",
            )

        if not self.can_build_at(position):
            return PlaceBuildingResult.failed(
                ErrorCode.INVALID_POSITION,
                detail=f"Cannot build at ({position.x:g}, {position.y:g})",
            )

        spent = self.ledger.spend(building_def.cost, reason=f"place:{building_def.key}")
        if not spent.success:
            return PlaceBuildingResult.failed(
                ErrorCode.INSUFFICIENT_FUNDS,
                detail=f"Not enough money. Cost: {building_def.cost}, Have: {spent.remaining_money}",
            )

        building = self.registry.add(building_def.key, position, building_def.cost, player_id)
        logger.info(
            "placed id=%s type=%s at=(%g,%g) cost=%s money=%s",
            building.id,
            building.type,
            position.x,
            position.y,
            building.cost_paid,
            self.ledger.money,
        )
        return PlaceBuildingResult.successful(building.id, building.cost_paid)

    def remove_building(self, building_id: int, *, refund: bool = True) -> RemoveBuildingResult:
        building = self.registry.get(building_id)
        if building is None:
            return RemoveBuildingResult.failed(
                ErrorCode.UNKNOWN_BUILDING,
                detail=f"No building with id {building_id}",
                building_id=building_id,
            )
        self.registry.remove(building_id)
        refunded = 0
        if refund:
            refunded = int(building.cost_paid * self.sell_ratio)
            self.ledger.credit(refunded, reason=f"sell:{building.type}")
        logger.info("removed id=%s type=%s refunded=%s", building.id, building.type, refunded)
        return RemoveBuildingResult(success=True, building_id=building_id, refunded=refunded)
