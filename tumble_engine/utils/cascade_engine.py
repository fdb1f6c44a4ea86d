from dataclasses import dataclass
from typing import Dict, Tuple

from tumble_engine.utils.grid_generator import GeneratedSymbol, copy_grid


@dataclass(frozen=True)
class FallingCell:
    row: int
    col: int
    from_row: int
    fall_distance: int
    symbol: GeneratedSymbol


@dataclass(frozen=True)
class SpawnedCell:
    row: int
    col: int
    spawn_depth: int
    symbol: GeneratedSymbol


@dataclass(frozen=True)
class CascadeResult:
    new_grid: list
    falling_cells: Tuple[FallingCell, ...]
    spawned_cells: Tuple[SpawnedCell, ...]
    removed_per_column: Dict[int, int]

    @property
    def spawned_multipliers(self):
        return tuple(cell.symbol.multiplier_value for cell in self.spawned_cells if cell.symbol.is_multiplier)


def get_affected_columns(cells):
    return sorted({c for _, c in cells})


def handle_cascade_fill(grid, winning_cells, mode, volatility, generator) -> CascadeResult:
    """
    Removes winning cells, lets each column fall and refills the gaps from the top.

    Survivors keep their order and settle at the bottom of their column. Refills are plain
    weighted draws for `mode` (never forced), tagged with a spawn depth where 1 is the
    slot nearest the grid. `volatility` is accepted for symmetry with grid generation;
    unforced draws do not depend on it.

    Returns:
        CascadeResult: new grid plus the fall/spawn metadata a renderer needs to replay it.
    """
    rows = len(grid)
    new_grid = copy_grid(grid)
    cleared = set(winning_cells)
    falling = []
    spawned = []
    removed_per_column = {}

    for col in get_affected_columns(cleared):
        survivors = [(r, grid[r][col]) for r in range(rows) if (r, col) not in cleared]
        removed = rows - len(survivors)
        removed_per_column[col] = removed

        for offset, (from_row, symbol) in enumerate(survivors):
            row = removed + offset
            new_grid[row][col] = symbol
            if row != from_row:
                falling.append(FallingCell(row, col, from_row, row - from_row, symbol))

        for row in range(removed):
            symbol = generator.draw_symbol(mode)
            new_grid[row][col] = symbol
            spawned.append(SpawnedCell(row, col, removed - row, symbol))

    return CascadeResult(
        new_grid=new_grid,
        falling_cells=tuple(falling),
        spawned_cells=tuple(spawned),
        removed_per_column=removed_per_column,
    )
