"""Shared fixtures for the engine tests: catalog loading, scripted random sources and
hand-built grids."""
import random

from tumble_engine.utils.grid_generator import GeneratedSymbol
from tumble_engine.utils.rng import RandomSource
from tumble_engine.utils.symbol_catalog import SymbolCatalog, SymbolId

_CATALOG = None

PAYING_ORDER = [
    SymbolId.CHEF, SymbolId.BROWNIE, SymbolId.PIZZA, SymbolId.SMOOTHIE,
    SymbolId.COOKIE, SymbolId.MUFFIN, SymbolId.SPATULA, SymbolId.ROLLING,
]


def load_catalog():
    global _CATALOG
    if _CATALOG is None:
        _CATALOG = SymbolCatalog.load('high_kitchen')
    return _CATALOG


class ConstantRandomSource(RandomSource):
    """Always returns the same value; 0.0 picks the first weighted entry."""

    def __init__(self, value):
        self.value = value

    def next(self):
        return self.value


class ScriptedRandomSource(RandomSource):
    """Plays back `values`, then continues from a seeded stream."""

    def __init__(self, values, seed=0):
        self.values = list(values)
        self._random = random.Random(seed)

    def next(self):
        if self.values:
            return self.values.pop(0)
        return self._random.random()


def multiplier(value):
    return GeneratedSymbol(SymbolId.MULTIPLIER, value)


def make_grid(placements=(), rows=5, columns=6):
    """
    Row-major grid starting with `placements` [(symbol, count), ...]. Remaining cells
    cycle through the paying symbols not placed, so the filler never reaches 8 of a kind
    on a 5x6 grid.
    """
    cells = []
    placed = set()
    for symbol, count in placements:
        if not isinstance(symbol, GeneratedSymbol):
            symbol = GeneratedSymbol(SymbolId(symbol))
        placed.add(symbol.id)
        cells.extend([symbol] * count)
    filler = [s for s in PAYING_ORDER if s not in placed]
    i = 0
    while len(cells) < rows * columns:
        cells.append(GeneratedSymbol(filler[i % len(filler)]))
        i += 1
    return [cells[r * columns:(r + 1) * columns] for r in range(rows)]


def symbol_counts(grid):
    counts = {}
    for row in grid:
        for symbol in row:
            counts[symbol.id] = counts.get(symbol.id, 0) + 1
    return counts
