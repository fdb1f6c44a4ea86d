import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional

from tumble_engine.exceptions import GameLogicException, ValidationException
from tumble_engine.utils.rng import weighted_choice
from tumble_engine.utils.symbol_catalog import GameMode, SymbolId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedSymbol:
    id: SymbolId
    multiplier_value: Optional[float] = None

    def __post_init__(self):
        if (self.id == SymbolId.MULTIPLIER) != (self.multiplier_value is not None):
            raise GameLogicException(
                "Only multiplier symbols carry a multiplier value",
                details={"symbol": self.id.value, "multiplier_value": self.multiplier_value},
            )

    @property
    def is_scatter(self):
        return self.id == SymbolId.SCATTER

    @property
    def is_multiplier(self):
        return self.id == SymbolId.MULTIPLIER


Grid = List[List[GeneratedSymbol]]


def copy_grid(grid):
    return [row[:] for row in grid]


class GridGenerator:
    """
    Builds full grids for a spin.

    `generate` honours a tri-state win directive: True guarantees at least one paying
    symbol at a winning count, False guarantees none, None samples `should_win` first.
    Rejection sampling keeps non-target symbols below the winning count; when the
    redraw budget runs out the draw is made from the symbols that still fit, which is
    logged and counted in `fallback_count`.
    """

    def __init__(self, catalog, rng, max_redraws=None):
        self.catalog = catalog
        self.rng = rng
        self.max_redraws = max_redraws or catalog.max_redraws
        self.fallback_count = 0

    def should_win(self, mode, volatility=None):
        probability = self.catalog.profile(volatility).hit_frequency
        if GameMode(mode) == GameMode.BONUS:
            probability *= self.catalog.bonus_hit_boost
        return self.rng.chance(min(probability, 1.0))

    def generate_scatter_count(self, volatility=None):
        """Tiered roll against the profile's bonus frequency; 4+ triggers, 3 is a near miss."""
        frequency = self.catalog.profile(volatility).bonus_frequency
        roll = self.rng.next()
        if roll < frequency * 0.1:
            return 6
        if roll < frequency * 0.3:
            return 5
        if roll < frequency:
            return 4
        if roll < frequency * 3:
            return 3
        if roll < 0.15:
            return 2
        if roll < 0.35:
            return 1
        return 0

    def draw_multiplier_value(self):
        return weighted_choice(self.rng, self.catalog.multiplier_values, self.catalog.multiplier_weights)

    def make_symbol(self, symbol_id):
        if symbol_id == SymbolId.MULTIPLIER:
            return GeneratedSymbol(symbol_id, self.draw_multiplier_value())
        return GeneratedSymbol(symbol_id)

    def draw_symbol(self, mode, exclude=()):
        """Unconstrained weighted draw from the mode's table."""
        table = [(sym, w) for sym, w in self.catalog.weight_table(mode) if sym not in exclude]
        symbol_id = weighted_choice(self.rng, [s for s, _ in table], [w for _, w in table])
        return self.make_symbol(symbol_id)

    def _fits(self, symbol_id, counts):
        return not self.catalog.is_paying(symbol_id) or counts[symbol_id] + 1 < self.catalog.min_match

    def _draw_below_match(self, mode, counts, exclude):
        for _ in range(self.max_redraws):
            symbol = self.draw_symbol(mode, exclude)
            if self._fits(symbol.id, counts):
                return symbol

        allowed = [
            (sym, w) for sym, w in self.catalog.weight_table(mode)
            if w > 0 and sym not in exclude and self._fits(sym, counts)
        ]
        if not allowed:
            raise GameLogicException(
                "No symbol can fill the grid without completing a win",
                details={"mode": GameMode(mode).value, "counts": {k.value: v for k, v in counts.items()}},
            )
        self.fallback_count += 1
        logger.warning(
            f"Redraw budget of {self.max_redraws} exhausted in {GameMode(mode).value} mode; "
            f"drawing from {len(allowed)} symbols still below the match count (fallback #{self.fallback_count})"
        )
        return self.make_symbol(weighted_choice(self.rng, [s for s, _ in allowed], [w for _, w in allowed]))

    def _pick_winning_symbols(self):
        symbols = [s for s, _ in self.catalog.forced_win_weights]
        weights = [w for _, w in self.catalog.forced_win_weights]
        winners = [weighted_choice(self.rng, symbols, weights)]
        if self.rng.chance(self.catalog.second_symbol_chance):
            remaining = [(s, w) for s, w in zip(symbols, weights) if s != winners[0] and w > 0]
            if remaining:
                winners.append(weighted_choice(self.rng, [s for s, _ in remaining], [w for _, w in remaining]))
        return winners

    def _max_scatter_count(self):
        max_winners = 2 if self.catalog.second_symbol_chance > 0 else 1
        return self.catalog.cell_count - self.catalog.forced_max_count * max_winners

    def generate(self, mode=GameMode.BASE, volatility=None, force_win=None, scatter_count=None) -> Grid:
        """
        Args:
            mode: GameMode selecting the weight table.
            volatility: Profile name; None uses the game's default.
            force_win: True for a guaranteed win, False for a guaranteed non-win, None to
                sample `should_win`.
            scatter_count: When set, exactly this many scatters are placed and scatter is
                removed from the weighted draws.

        Returns:
            Grid: rows x columns of GeneratedSymbol, every cell populated.
        """
        mode = GameMode(mode)
        if force_win is None:
            force_win = self.should_win(mode, volatility)

        catalog = self.catalog
        grid = [[None] * catalog.columns for _ in range(catalog.rows)]
        positions = [(r, c) for r in range(catalog.rows) for c in range(catalog.columns)]
        counts = Counter()
        exclude = set()

        if scatter_count is not None:
            if not 0 <= scatter_count <= self._max_scatter_count():
                raise ValidationException(
                    f"scatter_count must be between 0 and {self._max_scatter_count()}",
                    details={"scatter_count": scatter_count},
                )
            self.rng.shuffle(positions)
            for r, c in positions[:scatter_count]:
                grid[r][c] = GeneratedSymbol(SymbolId.SCATTER)
            positions = sorted(positions[scatter_count:])
            exclude.add(SymbolId.SCATTER)

        if force_win:
            self.rng.shuffle(positions)
            placed = 0
            for symbol_id in self._pick_winning_symbols():
                target = self.rng.randint(catalog.forced_min_count, catalog.forced_max_count)
                for r, c in positions[placed:placed + target]:
                    grid[r][c] = GeneratedSymbol(symbol_id)
                counts[symbol_id] += target
                placed += target
            positions = sorted(positions[placed:])

        for r, c in positions:
            symbol = self._draw_below_match(mode, counts, exclude)
            grid[r][c] = symbol
            counts[symbol.id] += 1

        return grid
