from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .state import Position


DEFAULT_ABYSS_BUFFER = 64.0


@dataclass(frozen=True, slots=True)
class MapBoundary:
    """
    Buildable-area collaborator used by placement.

    The playable area is the half-open rectangle
    [origin_x, origin_x + width) x [origin_y, origin_y + height). The abyss is
    everything outside it; the abyss buffer is the ring of ``abyss_buffer``
    units around the rectangle. Enemies walk ``path`` (a polyline); cells whose
    center lies within ``path_half_width`` of it cannot be built on.
    """

    width: float
    height: float
    grid: int = 32
    origin_x: float = 0.0
    origin_y: float = 0.0
    abyss_buffer: float = DEFAULT_ABYSS_BUFFER
    path: tuple[Position, ...] = ()
    path_half_width: float | None = None
    allowed_cells: frozenset[tuple[int, int]] | None = None
    name: str = ""
    _segments: tuple[tuple[float, float, float, float], ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0 or self.grid <= 0:
            raise ValueError("map width, height and grid must be > 0")
        segments = tuple(
            (a.x, a.y, b.x, b.y) for a, b in zip(self.path[:-1], self.path[1:])
        )
        object.__setattr__(self, "_segments", segments)

    def is_within_map_bounds(self, pos: Position) -> bool:
        return (
            self.origin_x <= pos.x < self.origin_x + self.width
            and self.origin_y <= pos.y < self.origin_y + self.height
        )

    def is_in_abyss_buffer_zone(self, pos: Position) -> bool:
        if self.is_within_map_bounds(pos):
            return False
        b = self.abyss_buffer
        return (
            self.origin_x - b <= pos.x < self.origin_x + self.width + b
            and self.origin_y - b <= pos.y < self.origin_y + self.height + b
        )

    def clamp_to_valid_position(self, pos: Position) -> Position:
        x = min(max(pos.x, self.origin_x), self.origin_x + self.width)
        y = min(max(pos.y, self.origin_y), self.origin_y + self.height)
        return Position(x, y)

    def cell_of(self, pos: Position) -> tuple[int, int]:
        return (
            int((pos.x - self.origin_x) // self.grid),
            int((pos.y - self.origin_y) // self.grid),
        )

    def cell_center(self, cell: tuple[int, int]) -> Position:
        return Position(
            self.origin_x + (cell[0] + 0.5) * self.grid,
            self.origin_y + (cell[1] + 0.5) * self.grid,
        )

    def can_build_at_position(self, pos: Position) -> bool:
        if not self.is_within_map_bounds(pos):
            return False
        cell = self.cell_of(pos)
        if self.allowed_cells is not None:
            return cell in self.allowed_cells
        center = self.cell_center(cell)
        half_width = float(self.path_half_width if self.path_half_width is not None else self.grid)
        return not _point_hits_path(center.x, center.y, self._segments, half_width * half_width)

    def path_distance_sq(self, pos: Position) -> float:
        if not self._segments:
            return 0.0
        return min(_point_segment_distance_sq(pos.x, pos.y, *segment) for segment in self._segments)

    def buildable_cells(self) -> list[tuple[int, int]]:
        cols = int(self.width // self.grid)
        rows = int(self.height // self.grid)
        cells: list[tuple[int, int]] = []
        for iy in range(rows):
            for ix in range(cols):
                if self.can_build_at_position(self.cell_center((ix, iy))):
                    cells.append((ix, iy))
        return cells

    @property
    def path_length(self) -> float:
        return sum(
            Position(x1, y1).distance_to(Position(x2, y2)) for x1, y1, x2, y2 in self._segments
        )


def _point_hits_path(
    px: float,
    py: float,
    segments: Iterable[tuple[float, float, float, float]],
    threshold_sq: float,
) -> bool:
    for x1, y1, x2, y2 in segments:
        if _point_segment_distance_sq(px, py, x1, y1, x2, y2) < threshold_sq:
            return True
    return False


def _point_segment_distance_sq(
    px: float,
    py: float,
    x1: float,
    y1: float,
    x2: float,
    y2: float,
) -> float:
    dx = x2 - x1
    dy = y2 - y1
    if dx == 0.0 and dy == 0.0:
        return (px - x1) ** 2 + (py - y1) ** 2
    t = ((px - x1) * dx + (py - y1) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    proj_x = x1 + t * dx
    proj_y = y1 + t * dy
    return (px - proj_x) ** 2 + (py - proj_y) ** 2
