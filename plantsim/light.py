"""
Sparse vertical light-occlusion field.

Space is split into cubic cells. Each populated cell stores its own shadow
(the branch volume that occupies it) and the shadow inherited from the
populated cells above it in the same column. Light reaching a cell decays
exponentially with the combined shadow.

Columns may have gaps: a walk along a column bridges runs of up to
``check_height`` empty cells before giving up.
"""

import logging

import numpy as np

from plantsim import curves

logger = logging.getLogger(__name__)

CellId = tuple[int, int, int]


class LightCells:
    """
    Shadow values keyed by integer cell id.

    Args:
        check_height: Longest run of empty cells bridged when walking a column
        cell_size: Edge length of a cell in world units
    """

    def __init__(self, check_height: int = 3, cell_size: float = 1.0):
        if check_height < 0:
            raise ValueError("check_height must be nonnegative")
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self.check_height = check_height
        self.cell_size = cell_size
        self._cells: dict[CellId, list[float]] = {}  # id -> [own, inherited]

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, cell: CellId) -> bool:
        return cell in self._cells

    def cell_id(self, position: np.ndarray) -> CellId:
        x, y, z = np.floor(np.asarray(position, dtype=float) / self.cell_size).astype(int)
        return (int(x), int(y), int(z))

    def clear(self) -> None:
        self._cells.clear()

    def update_cell_shadow(self, cell: CellId, value: float) -> None:
        """Set a cell's own shadow and push the new total down its column."""
        self._ensure_cell(cell)[0] = value
        self.propagate_down(cell)

    def add_cell_shadow(self, cell: CellId, value: float) -> None:
        """Add to a cell's own shadow and push the new total down its column."""
        self._ensure_cell(cell)[0] += value
        self.propagate_down(cell)

    def propagate_down(self, cell: CellId) -> None:
        """
        Recompute inherited shadow for the populated cells below ``cell``.

        The running total starts at the cell's combined shadow. Every
        populated cell met on the way down inherits the running total and
        adds its own shadow to it.
        """
        if cell not in self._cells:
            return
        x, y, z = cell
        own, inherited = self._cells[cell]
        running = own + inherited
        misses = 0
        step = 1
        while misses <= self.check_height:
            below = self._cells.get((x, y - step, z))
            if below is None:
                misses += 1
            else:
                below[1] = running
                running += below[0]
                misses = 0
            step += 1

    def get_cell_shadow(self, cell: CellId) -> float:
        """
        Combined shadow at a cell.

        Unpopulated cells take the shadow of the nearest populated cell at
        most ``check_height`` steps above them, and 0 if there is none.
        """
        values = self._cells.get(cell)
        if values is not None:
            return values[0] + values[1]
        x, y, z = cell
        for step in range(1, self.check_height + 1):
            above = self._cells.get((x, y + step, z))
            if above is not None:
                return above[0] + above[1]
        return 0.0

    def get_cell_light(self, cell: CellId) -> float:
        """Fraction of light reaching a cell, in (0, 1]."""
        return float(curves.light_from_shadow(self.get_cell_shadow(cell)))

    def shadow_at(self, position: np.ndarray) -> float:
        return self.get_cell_shadow(self.cell_id(position))

    def _ensure_cell(self, cell: CellId) -> list[float]:
        values = self._cells.get(cell)
        if values is None:
            values = [0.0, self._shadow_from_above(cell)]
            self._cells[cell] = values
        return values

    def _shadow_from_above(self, cell: CellId) -> float:
        x, y, z = cell
        misses = 0
        step = 1
        while misses <= self.check_height:
            above = self._cells.get((x, y + step, z))
            if above is not None:
                return above[0] + above[1]
            misses += 1
            step += 1
        return 0.0
