import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from tumble_engine.error_codes import ErrorCodes
from tumble_engine.exceptions import ConfigurationException, ValidationException

logger = logging.getLogger(__name__)

SLOTS_BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'public', 'slots'))


class SymbolId(str, Enum):
    CHEF = "CHEF"
    BROWNIE = "BROWNIE"
    PIZZA = "PIZZA"
    SMOOTHIE = "SMOOTHIE"
    COOKIE = "COOKIE"
    MUFFIN = "MUFFIN"
    SPATULA = "SPATULA"
    ROLLING = "ROLLING"
    SCATTER = "SCATTER"
    MULTIPLIER = "MULTIPLIER"


class GameMode(str, Enum):
    BASE = "base"
    BONUS = "bonus"


SPECIAL_SYMBOLS = (SymbolId.SCATTER, SymbolId.MULTIPLIER)


@dataclass(frozen=True)
class PayoutTier:
    min_count: int
    multiplier: float


@dataclass(frozen=True)
class SymbolDefinition:
    id: SymbolId
    name: str
    tier: str
    weight: float
    bonus_weight: float
    payout_tiers: Tuple[PayoutTier, ...] = ()

    @property
    def is_paying(self):
        return self.id not in SPECIAL_SYMBOLS


@dataclass(frozen=True)
class VolatilityProfile:
    name: str
    target_rtp: float
    hit_frequency: float
    bonus_frequency: float
    description: str = ""
    # Factor on every paytable tier; lets profiles with different hit rates share one paytable.
    payout_scale: float = 1.0


@dataclass(frozen=True)
class WinCategory:
    name: str
    label: str
    min_x: float


def resolve_config_path(slot_short_name):
    return os.path.join(SLOTS_BASE_DIR, slot_short_name, "gameConfig.json")


def load_game_config(slot_short_name=None, config_path=None):
    """
    Loads a gameConfig.json and validates its structure.

    Either `slot_short_name` (looked up under the packaged public/slots directory) or an
    explicit `config_path` must be given; the explicit path wins when both are set.

    Returns:
        dict: The loaded and validated game configuration object.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ConfigurationException: If the JSON is malformed or fails validation.
    """
    if config_path is None:
        if not slot_short_name:
            raise ConfigurationException("Either a slot short name or a config path is required")
        config_path = resolve_config_path(slot_short_name)
    label = slot_short_name or os.path.basename(os.path.dirname(os.path.abspath(config_path)))

    if not os.path.exists(config_path):
        logger.error(f"Game config not found for slot '{label}' at {config_path}")
        raise FileNotFoundError(f"Configuration file not found for slot '{label}' at {config_path}")

    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error for {config_path} (slot '{label}'): {e.msg} at line {e.lineno}")
        raise ConfigurationException(
            f"Invalid JSON in {config_path}: {e.msg} (line {e.lineno}, col {e.colno})",
            details={"path": config_path}
        ) from e

    try:
        _validate_game_config(config, label)
    except ConfigurationException as e:
        logger.error(f"Configuration validation error for slot '{label}': {e}")
        raise
    logger.info(f"Loaded and validated config for '{label}' from {config_path}")
    return config


def _fail(slot_short_name, message):
    raise ConfigurationException(
        f"Config validation error for slot '{slot_short_name}': {message}",
        details={"slot": slot_short_name}
    )


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_int(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _validate_game_config(config, slot_short_name):
    """
    Validates the structure and content of a game configuration object.

    Everything a spin can look up is checked here, so that a missing paytable entry or a
    weight table with nothing to draw fails at startup instead of silently paying zero.

    Raises:
        ConfigurationException: If any validation check fails.
    """
    if not isinstance(config, dict):
        _fail(slot_short_name, "Root must be a dictionary.")
    game = config.get('game')
    if not isinstance(game, dict):
        _fail(slot_short_name, "'game' key must be a dictionary.")

    for key in ('name', 'short_name'):
        value = game.get(key)
        if not isinstance(value, str) or not value.strip():
            _fail(slot_short_name, f"game.{key} must be a non-empty str.")

    layout = game.get('layout')
    if not isinstance(layout, dict):
        _fail(slot_short_name, "game.layout must be a dictionary.")
    rows, columns = layout.get('rows'), layout.get('columns')
    if not _is_positive_int(rows) or not _is_positive_int(columns):
        _fail(slot_short_name, "game.layout.rows and game.layout.columns must be positive integers.")
    cell_count = rows * columns

    min_match = game.get('min_symbols_to_match')
    if not _is_positive_int(min_match) or min_match > cell_count:
        _fail(slot_short_name, f"game.min_symbols_to_match must be an integer in [1, {cell_count}].")

    symbols = game.get('symbols')
    if not isinstance(symbols, list) or not symbols:
        _fail(slot_short_name, "game.symbols must be a non-empty list.")
    valid_ids = {s.value for s in SymbolId}
    seen = set()
    for i, sym in enumerate(symbols):
        if not isinstance(sym, dict):
            _fail(slot_short_name, f"game.symbols[{i}] must be a dictionary.")
        sym_id = sym.get('id')
        if sym_id not in valid_ids:
            _fail(slot_short_name, f"game.symbols[{i}].id '{sym_id}' is not a known symbol.")
        if sym_id in seen:
            _fail(slot_short_name, f"game.symbols[{i}].id '{sym_id}' is defined twice.")
        seen.add(sym_id)
        if not isinstance(sym.get('name'), str) or not sym['name'].strip():
            _fail(slot_short_name, f"game.symbols[{i}].name must be a non-empty str.")
        for weight_key in ('weight', 'bonus_weight'):
            weight = sym.get(weight_key)
            if not _is_number(weight) or weight < 0:
                _fail(slot_short_name, f"game.symbols[{i}].{weight_key} must be a non-negative number.")
        if sym.get('is_scatter', False) != (sym_id == SymbolId.SCATTER.value):
            _fail(slot_short_name, f"game.symbols[{i}].is_scatter must be set on SCATTER only.")
        if sym.get('is_multiplier', False) != (sym_id == SymbolId.MULTIPLIER.value):
            _fail(slot_short_name, f"game.symbols[{i}].is_multiplier must be set on MULTIPLIER only.")

        if SymbolId(sym_id) in SPECIAL_SYMBOLS:
            if sym.get('cluster_payouts'):
                _fail(slot_short_name, f"game.symbols[{i}] ({sym_id}) is not a paying symbol and cannot have cluster_payouts.")
            continue
        payouts = sym.get('cluster_payouts')
        if not isinstance(payouts, dict) or not payouts:
            _fail(slot_short_name, f"game.symbols[{i}].cluster_payouts must be a non-empty dictionary for paying symbol {sym_id}.")
        previous = None
        for count_str, multiplier in sorted(payouts.items(), key=lambda kv: int(kv[0]) if str(kv[0]).isdigit() else -1):
            if not str(count_str).isdigit() or int(count_str) < min_match:
                _fail(slot_short_name, f"game.symbols[{i}].cluster_payouts key '{count_str}' must be an integer >= {min_match}.")
            if not _is_number(multiplier) or multiplier <= 0:
                _fail(slot_short_name, f"game.symbols[{i}].cluster_payouts['{count_str}'] must be a positive number.")
            if previous is not None and multiplier < previous:
                _fail(slot_short_name, f"game.symbols[{i}].cluster_payouts must not decrease as the count grows.")
            previous = multiplier

    missing = valid_ids - seen
    if missing:
        _fail(slot_short_name, f"game.symbols is missing definitions for: {', '.join(sorted(missing))}.")

    paying = [s for s in symbols if SymbolId(s['id']) not in SPECIAL_SYMBOLS]
    for weight_key in ('weight', 'bonus_weight'):
        if sum(s[weight_key] for s in symbols) <= 0:
            _fail(slot_short_name, f"game.symbols {weight_key} table has no symbol with a positive weight.")
        # Every cell must be fillable without any paying symbol reaching a winning count.
        capacity = (min_match - 1) * sum(1 for s in paying if s[weight_key] > 0)
        if capacity < cell_count:
            _fail(slot_short_name, f"game.symbols {weight_key} table cannot fill {cell_count} cells without a win.")

    values, weights = game.get('multiplier_values'), game.get('multiplier_weights')
    if not isinstance(values, list) or not values or not isinstance(weights, list) or len(values) != len(weights):
        _fail(slot_short_name, "game.multiplier_values and game.multiplier_weights must be non-empty lists of equal length.")
    if not all(_is_number(v) and v > 0 for v in values):
        _fail(slot_short_name, "game.multiplier_values must be positive numbers.")
    if not all(_is_number(w) and w >= 0 for w in weights) or sum(weights) <= 0:
        _fail(slot_short_name, "game.multiplier_weights must be non-negative with a positive total.")

    forced = game.get('forced_win')
    if not isinstance(forced, dict):
        _fail(slot_short_name, "game.forced_win must be a dictionary.")
    forced_weights = forced.get('symbol_weights')
    paying_ids = {s['id'] for s in paying}
    if not isinstance(forced_weights, dict) or not forced_weights:
        _fail(slot_short_name, "game.forced_win.symbol_weights must be a non-empty dictionary.")
    for sym_id, weight in forced_weights.items():
        if sym_id not in paying_ids:
            _fail(slot_short_name, f"game.forced_win.symbol_weights references non-paying symbol '{sym_id}'.")
        if not _is_number(weight) or weight < 0:
            _fail(slot_short_name, f"game.forced_win.symbol_weights['{sym_id}'] must be a non-negative number.")
    if sum(forced_weights.values()) <= 0:
        _fail(slot_short_name, "game.forced_win.symbol_weights must have a positive total.")
    chance = forced.get('second_symbol_chance')
    if not _is_number(chance) or not 0 <= chance <= 1:
        _fail(slot_short_name, "game.forced_win.second_symbol_chance must be a probability.")
    min_count, max_count = forced.get('min_count'), forced.get('max_count')
    if not _is_positive_int(min_count) or not _is_positive_int(max_count) or not min_match <= min_count <= max_count:
        _fail(slot_short_name, f"game.forced_win counts must satisfy {min_match} <= min_count <= max_count.")
    max_winners = 2 if chance > 0 else 1
    if max_winners > sum(1 for w in forced_weights.values() if w > 0) or max_count * max_winners > cell_count:
        _fail(slot_short_name, "game.forced_win cannot place its winning symbols on the grid.")
    if not _is_positive_int(forced.get('max_redraws')):
        _fail(slot_short_name, "game.forced_win.max_redraws must be a positive integer.")

    bonus_features = game.get('bonus_features')
    if not isinstance(bonus_features, dict):
        _fail(slot_short_name, "game.bonus_features must be a dictionary.")
    free_spins = bonus_features.get('free_spins')
    if not isinstance(free_spins, dict):
        _fail(slot_short_name, "game.bonus_features.free_spins must be a dictionary.")
    awards = free_spins.get('scatter_awards')
    if not isinstance(awards, dict) or not awards:
        _fail(slot_short_name, "game.bonus_features.free_spins.scatter_awards must be a non-empty dictionary.")
    for count_str, spins in awards.items():
        if not str(count_str).isdigit() or int(count_str) <= 0 or not _is_positive_int(spins):
            _fail(slot_short_name, f"game.bonus_features.free_spins.scatter_awards['{count_str}'] must map a positive count to positive spins.")
    for key in ('retrigger_count', 'retrigger_spins'):
        if not _is_positive_int(free_spins.get(key)):
            _fail(slot_short_name, f"game.bonus_features.free_spins.{key} must be a positive integer.")
    if not _is_number(free_spins.get('bonus_hit_boost')) or free_spins['bonus_hit_boost'] <= 0:
        _fail(slot_short_name, "game.bonus_features.free_spins.bonus_hit_boost must be a positive number.")
    if not isinstance(free_spins.get('scatter_control', False), bool):
        _fail(slot_short_name, "game.bonus_features.free_spins.scatter_control must be true or false.")
    bonus_buy = bonus_features.get('bonus_buy')
    if not isinstance(bonus_buy, dict) or not _is_number(bonus_buy.get('cost_multiplier')) \
            or bonus_buy['cost_multiplier'] <= 0 or not _is_positive_int(bonus_buy.get('spins_awarded')):
        _fail(slot_short_name, "game.bonus_features.bonus_buy needs a positive cost_multiplier and spins_awarded.")

    limits = game.get('limits')
    if not isinstance(limits, dict):
        _fail(slot_short_name, "game.limits must be a dictionary.")
    for key in ('max_win_per_spin_x', 'max_win_per_bonus_x'):
        if not _is_number(limits.get(key)) or limits[key] <= 0:
            _fail(slot_short_name, f"game.limits.{key} must be a positive number.")
    if not _is_positive_int(limits.get('max_cascades')):
        _fail(slot_short_name, "game.limits.max_cascades must be a positive integer.")

    profiles = game.get('volatility_profiles')
    if not isinstance(profiles, dict) or not profiles:
        _fail(slot_short_name, "game.volatility_profiles must be a non-empty dictionary.")
    for name, profile in profiles.items():
        if not isinstance(profile, dict):
            _fail(slot_short_name, f"game.volatility_profiles.{name} must be a dictionary.")
        for key in ('target_rtp', 'hit_frequency', 'bonus_frequency'):
            value = profile.get(key)
            if not _is_number(value) or not 0 <= value <= 1:
                _fail(slot_short_name, f"game.volatility_profiles.{name}.{key} must be a number in [0, 1].")
        scale = profile.get('payout_scale', 1.0)
        if not _is_number(scale) or scale <= 0:
            _fail(slot_short_name, f"game.volatility_profiles.{name}.payout_scale must be a positive number.")
    if game.get('default_volatility') not in profiles:
        _fail(slot_short_name, "game.default_volatility must name one of game.volatility_profiles.")

    bet_steps = game.get('bet_steps')
    if not isinstance(bet_steps, list) or not bet_steps or not all(_is_number(b) and b > 0 for b in bet_steps):
        _fail(slot_short_name, "game.bet_steps must be a non-empty list of positive numbers.")
    if bet_steps != sorted(bet_steps):
        _fail(slot_short_name, "game.bet_steps must be in ascending order.")
    default_index = game.get('default_bet_index')
    if not isinstance(default_index, int) or not 0 <= default_index < len(bet_steps):
        _fail(slot_short_name, "game.default_bet_index is out of range.")

    categories = game.get('win_categories', [])
    if not isinstance(categories, list):
        _fail(slot_short_name, "game.win_categories must be a list.")
    for i, category in enumerate(categories):
        if not isinstance(category, dict) or not isinstance(category.get('name'), str) \
                or not _is_number(category.get('min_x')) or category['min_x'] < 0:
            _fail(slot_short_name, f"game.win_categories[{i}] needs a name and a non-negative min_x.")


class SymbolCatalog:
    """
    Read-only view over a validated game configuration: weight tables, paytable,
    volatility profiles and bonus constants.

    Build it with `SymbolCatalog.load(...)` or `SymbolCatalog.from_config(...)`; the raw
    dict is validated first, so every accessor can assume well-formed data.
    """

    def __init__(self, config):
        game = config['game']
        self.name = game['name']
        self.short_name = game['short_name']
        self.rows = game['layout']['rows']
        self.columns = game['layout']['columns']
        self.min_match = game['min_symbols_to_match']

        definitions = []
        for sym in game['symbols']:
            tiers = tuple(
                PayoutTier(int(count), float(multiplier))
                for count, multiplier in sorted(sym.get('cluster_payouts', {}).items(), key=lambda kv: int(kv[0]))
            )
            definitions.append(SymbolDefinition(
                id=SymbolId(sym['id']),
                name=sym['name'],
                tier=sym.get('tier', 'special' if SymbolId(sym['id']) in SPECIAL_SYMBOLS else 'low'),
                weight=float(sym['weight']),
                bonus_weight=float(sym['bonus_weight']),
                payout_tiers=tiers,
            ))
        self.symbols: Dict[SymbolId, SymbolDefinition] = {d.id: d for d in definitions}
        self.paying_symbols = tuple(d.id for d in definitions if d.is_paying)
        self._weight_tables = {
            GameMode.BASE: tuple((d.id, d.weight) for d in definitions),
            GameMode.BONUS: tuple((d.id, d.bonus_weight) for d in definitions),
        }

        self.multiplier_values = tuple(game['multiplier_values'])
        self.multiplier_weights = tuple(float(w) for w in game['multiplier_weights'])

        forced = game['forced_win']
        self.forced_win_weights = tuple((SymbolId(s), float(w)) for s, w in forced['symbol_weights'].items())
        self.second_symbol_chance = float(forced['second_symbol_chance'])
        self.forced_min_count = forced['min_count']
        self.forced_max_count = forced['max_count']
        self.max_redraws = forced['max_redraws']

        free_spins = game['bonus_features']['free_spins']
        self.scatter_awards = {int(k): v for k, v in sorted(free_spins['scatter_awards'].items(), key=lambda kv: int(kv[0]))}
        self.trigger_threshold = min(self.scatter_awards)
        self.retrigger_count = free_spins['retrigger_count']
        self.retrigger_spins = free_spins['retrigger_spins']
        self.bonus_hit_boost = float(free_spins['bonus_hit_boost'])
        self.scatter_control = free_spins.get('scatter_control', False)
        bonus_buy = game['bonus_features']['bonus_buy']
        self.bonus_buy_cost_x = float(bonus_buy['cost_multiplier'])
        self.bonus_buy_spins = bonus_buy['spins_awarded']

        limits = game['limits']
        self.max_win_per_spin_x = float(limits['max_win_per_spin_x'])
        self.max_win_per_bonus_x = float(limits['max_win_per_bonus_x'])
        self.max_cascades = limits['max_cascades']

        self.profiles = {
            name: VolatilityProfile(
                name=name,
                target_rtp=float(p['target_rtp']),
                hit_frequency=float(p['hit_frequency']),
                bonus_frequency=float(p['bonus_frequency']),
                description=p.get('description', ''),
                payout_scale=float(p.get('payout_scale', 1.0)),
            )
            for name, p in game['volatility_profiles'].items()
        }
        self.default_volatility = game['default_volatility']

        self.bet_steps = tuple(game['bet_steps'])
        self.default_bet = self.bet_steps[game['default_bet_index']]
        self.win_categories = tuple(sorted(
            (WinCategory(c['name'], c.get('label', c['name']), float(c['min_x'])) for c in game.get('win_categories', [])),
            key=lambda c: c.min_x,
            reverse=True,
        ))

    @classmethod
    def from_config(cls, config, slot_short_name=None):
        _validate_game_config(config, slot_short_name or config.get('game', {}).get('short_name', '?'))
        return cls(config)

    @classmethod
    def load(cls, slot_short_name=None, config_path=None):
        return cls(load_game_config(slot_short_name, config_path))

    @property
    def cell_count(self):
        return self.rows * self.columns

    def weight_table(self, mode):
        return self._weight_tables[GameMode(mode)]

    def is_paying(self, symbol_id):
        return symbol_id in self.symbols and self.symbols[symbol_id].is_paying

    def payout_tiers(self, symbol_id):
        if not self.is_paying(symbol_id):
            raise ConfigurationException(f"No paytable entry for symbol '{symbol_id}'", details={"symbol": str(symbol_id)})
        return self.symbols[symbol_id].payout_tiers

    def get_payout_multiplier(self, symbol_id, count):
        """Highest tier multiplier whose min_count <= count, or 0 below the lowest tier."""
        payout = 0.0
        for tier in self.payout_tiers(symbol_id):
            if count >= tier.min_count:
                payout = tier.multiplier
        return payout

    def profile(self, name=None) -> VolatilityProfile:
        key = (name or self.default_volatility).upper()
        if key not in self.profiles:
            raise ValidationException(
                f"Unknown volatility profile '{name}'",
                details={"volatility": name, "choices": sorted(self.profiles)},
                error_code=ErrorCodes.UNKNOWN_VOLATILITY,
            )
        return self.profiles[key]

    def scatter_award(self, scatter_count) -> int:
        awarded = 0
        for count, spins in self.scatter_awards.items():
            if scatter_count >= count:
                awarded = spins
        return awarded

    def win_category(self, win_x) -> Optional[WinCategory]:
        for category in self.win_categories:
            if win_x >= category.min_x:
                return category
        return None
