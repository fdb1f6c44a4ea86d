from dataclasses import dataclass
from typing import Optional, Tuple

from tumble_engine.utils.symbol_catalog import SymbolId

Cell = Tuple[int, int]


@dataclass(frozen=True)
class SymbolWin:
    symbol_id: SymbolId
    count: int
    tier_multiplier: float
    win_amount: float
    cells: Tuple[Cell, ...]


@dataclass(frozen=True)
class MultiplierCell:
    row: int
    col: int
    value: float


@dataclass(frozen=True)
class WinResult:
    total_win_multiplier: float = 0.0
    symbol_wins: Tuple[SymbolWin, ...] = ()
    winning_cells: Tuple[Cell, ...] = ()
    scatter_count: int = 0
    scatter_cells: Tuple[Cell, ...] = ()
    multiplier_cells: Tuple[MultiplierCell, ...] = ()
    total_multiplier_sum: float = 0.0

    @property
    def has_win(self):
        return self.total_win_multiplier > 0


def get_symbol_payout(symbol_id, count, catalog):
    """Tier multiplier for `count` matching symbols; raises ConfigurationException for non-paying ids."""
    return catalog.get_payout_multiplier(symbol_id, count)


def calculate_win(grid, bet, catalog, payout_scale=1.0) -> WinResult:
    """
    Scatter-pay evaluation of one grid.

    Paying symbols are bucketed by id regardless of position; every bucket at or above
    the minimum match pays its highest reached tier, and several symbols can pay at once.
    Multiplier values are summed but not applied: whether they count depends on the
    game mode and on what the bonus round has already collected.

    Args:
        grid: Grid of GeneratedSymbol.
        bet: Bet used to express each symbol win as an amount.
        catalog: SymbolCatalog with the paytable.
        payout_scale: The volatility profile's factor on every tier multiplier.

    Returns:
        WinResult
    """
    positions = {}
    scatter_cells = []
    multiplier_cells = []
    for r, row in enumerate(grid):
        for c, symbol in enumerate(row):
            if symbol.id == SymbolId.SCATTER:
                scatter_cells.append((r, c))
            elif symbol.id == SymbolId.MULTIPLIER:
                multiplier_cells.append(MultiplierCell(r, c, symbol.multiplier_value))
            else:
                positions.setdefault(symbol.id, []).append((r, c))

    symbol_wins = []
    winning_cells = []
    total = 0.0
    for symbol_id, cells in positions.items():
        count = len(cells)
        if count < catalog.min_match:
            continue
        tier_multiplier = get_symbol_payout(symbol_id, count, catalog) * payout_scale
        if tier_multiplier <= 0:
            continue
        total += tier_multiplier
        symbol_wins.append(SymbolWin(symbol_id, count, tier_multiplier, tier_multiplier * bet, tuple(cells)))
        winning_cells.extend(cells)

    return WinResult(
        total_win_multiplier=total,
        symbol_wins=tuple(symbol_wins),
        winning_cells=tuple(sorted(winning_cells)),
        scatter_count=len(scatter_cells),
        scatter_cells=tuple(scatter_cells),
        multiplier_cells=tuple(multiplier_cells),
        total_multiplier_sum=sum(m.value for m in multiplier_cells),
    )


def check_bonus_trigger(scatter_count, catalog):
    """
    Base-game free spins trigger.

    Returns:
        dict: {'triggered': bool, 'spins_awarded': int, 'scatter_count': int}
    """
    spins = catalog.scatter_award(scatter_count)
    return {'triggered': spins > 0, 'spins_awarded': spins, 'scatter_count': scatter_count}


def check_retrigger(scatter_count, catalog):
    """Free spins added by a free spin's first grid (0 when below the retrigger count)."""
    if scatter_count >= catalog.retrigger_count:
        return catalog.retrigger_spins
    return 0


def get_win_category(win_amount, bet, catalog) -> Optional[str]:
    if bet <= 0 or win_amount <= 0:
        return None
    category = catalog.win_category(win_amount / bet)
    return category.name if category else None

