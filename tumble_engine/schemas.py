from marshmallow import Schema, fields, ValidationError, pre_load, validates
from marshmallow.validate import OneOf, Range

from tumble_engine.exceptions import ValidationException
from tumble_engine.utils.spin_handler import SPIN_MODES


def load_request(schema, data):
    """Load `data` with `schema`, turning marshmallow errors into ValidationException."""
    try:
        return schema.load(data)
    except ValidationError as e:
        raise ValidationException("Invalid request", details=e.messages) from e


class _VolatilityRequestSchema(Schema):
    """Shared volatility handling; pass the game's profile names to restrict choices."""
    volatility = fields.Str(load_default=None, allow_none=True)

    def __init__(self, volatility_choices=None, **kwargs):
        super().__init__(**kwargs)
        self.volatility_choices = [c.upper() for c in volatility_choices] if volatility_choices else None

    @pre_load
    def normalize_volatility(self, data, **kwargs):
        if isinstance(data, dict) and isinstance(data.get('volatility'), str):
            data = dict(data, volatility=data['volatility'].strip().upper())
        return data

    @validates('volatility')
    def validate_volatility(self, value, **kwargs):
        if value is not None and self.volatility_choices and value not in self.volatility_choices:
            raise ValidationError(f"Unknown volatility profile. Choose one of: {', '.join(self.volatility_choices)}.")


class _BetRequestSchema(_VolatilityRequestSchema):
    """Positive bet; pass the game's bet steps to restrict it to the configured ladder."""
    bet = fields.Float(required=True, validate=Range(min=0, min_inclusive=False, error="Bet must be a positive number"))

    def __init__(self, volatility_choices=None, bet_steps=None, **kwargs):
        super().__init__(volatility_choices=volatility_choices, **kwargs)
        self.bet_steps = tuple(bet_steps) if bet_steps else None

    @validates('bet')
    def validate_bet_step(self, value, **kwargs):
        if self.bet_steps and not any(abs(value - step) < 1e-9 for step in self.bet_steps):
            raise ValidationError(f"Bet must be one of the configured bet steps: {', '.join(f'{s:g}' for s in self.bet_steps)}.")


class SpinRequestSchema(_BetRequestSchema):
    mode = fields.Str(load_default='base', validate=OneOf(SPIN_MODES))


class BonusBuyRequestSchema(_BetRequestSchema):
    pass


class SimulationRequestSchema(_VolatilityRequestSchema):
    spins = fields.Int(required=True, validate=Range(min=1, max=100_000_000))
    bet = fields.Float(load_default=1.0, validate=Range(min=0, min_inclusive=False, error="Bet must be a positive number"))
    seed = fields.Int(load_default=None, allow_none=True, validate=Range(min=0))
    workers = fields.Int(load_default=1, validate=Range(min=1, max=256))


# --- Response Schemas ---
class GeneratedSymbolSchema(Schema):
    id = fields.Function(lambda s: s.id.value)
    multiplier_value = fields.Float(allow_none=True)


def grid_field():
    return fields.List(fields.List(fields.Nested(GeneratedSymbolSchema)))


def cells_field():
    return fields.List(fields.List(fields.Int()))


class SymbolWinSchema(Schema):
    symbol_id = fields.Function(lambda w: w.symbol_id.value)
    count = fields.Int()
    tier_multiplier = fields.Float()
    win_amount = fields.Float()
    cells = cells_field()


class MultiplierCellSchema(Schema):
    row = fields.Int()
    col = fields.Int()
    value = fields.Float()


class WinResultSchema(Schema):
    total_win_multiplier = fields.Float()
    symbol_wins = fields.List(fields.Nested(SymbolWinSchema))
    winning_cells = cells_field()
    scatter_count = fields.Int()
    scatter_cells = cells_field()
    multiplier_cells = fields.List(fields.Nested(MultiplierCellSchema))
    total_multiplier_sum = fields.Float()
    has_win = fields.Bool()


class FallingCellSchema(Schema):
    row = fields.Int()
    col = fields.Int()
    from_row = fields.Int()
    fall_distance = fields.Int()
    symbol = fields.Nested(GeneratedSymbolSchema)


class SpawnedCellSchema(Schema):
    row = fields.Int()
    col = fields.Int()
    spawn_depth = fields.Int()
    symbol = fields.Nested(GeneratedSymbolSchema)


class CascadeResultSchema(Schema):
    new_grid = grid_field()
    falling_cells = fields.List(fields.Nested(FallingCellSchema))
    spawned_cells = fields.List(fields.Nested(SpawnedCellSchema))
    removed_per_column = fields.Dict(keys=fields.Str(), values=fields.Int())


class CascadeStepSchema(Schema):
    winning_cells = fields.Function(lambda step: [list(c) for c in step.win_result.winning_cells])
    win_result = fields.Nested(WinResultSchema)
    cascade_result = fields.Nested(CascadeResultSchema)
    effective_multiplier = fields.Float()
    step_win = fields.Float()


class BonusStateSchema(Schema):
    spins_remaining = fields.Int()
    spins_awarded_total = fields.Int()
    spins_played = fields.Int()
    cumulative_win = fields.Float()
    collected_multipliers = fields.List(fields.Float())
    effective_multiplier = fields.Float()
    bought = fields.Bool()
    retriggers = fields.Int()


class SpinResultSchema(Schema):
    mode = fields.Function(lambda r: r.mode.value)
    bet = fields.Float()
    volatility = fields.Str()
    initial_grid = grid_field()
    final_grid = grid_field()
    steps = fields.List(fields.Nested(CascadeStepSchema))
    raw_win = fields.Float()
    total_win = fields.Float()
    cap_applied = fields.Bool()
    cascade_count = fields.Int()
    scatter_count = fields.Int()
    scatter_triggered = fields.Bool()
    bonus_spins_awarded = fields.Int()
    retriggered = fields.Bool()
    win_category = fields.Str(allow_none=True)
    multipliers_collected = fields.List(fields.Float())
    effective_multiplier = fields.Float()
    total_payout = fields.Float()
    bonus_round = fields.Nested("BonusRoundResultSchema", allow_none=True)


class BonusRoundResultSchema(Schema):
    trigger = fields.Str()
    bet = fields.Float()
    volatility = fields.Str()
    cost = fields.Float()
    spins_awarded = fields.Int()
    spins = fields.List(fields.Nested(SpinResultSchema(exclude=("bonus_round",))))
    raw_total_win = fields.Float()
    total_win = fields.Float()
    win_x = fields.Float()
    cap_applied = fields.Bool()
    state = fields.Nested(BonusStateSchema)
    multiplier_progression = fields.List(fields.Float())


class SimulationResultSchema(Schema):
    volatility = fields.Str()
    bet = fields.Float()
    seed = fields.Int(allow_none=True)
    target_rtp = fields.Float()
    spins_requested = fields.Int()
    spins_completed = fields.Int()
    aborted = fields.Bool()
    total_staked = fields.Float()
    total_returned = fields.Float()
    rtp = fields.Float()
    base_rtp_contribution = fields.Float()
    bonus_rtp_contribution = fields.Float()
    hit_frequency = fields.Float()
    bonus_trigger_frequency = fields.Float()
    avg_win_per_hit = fields.Float()
    avg_cascades_per_win = fields.Float()
    max_win_x = fields.Float()
    capped_spins = fields.Int()
    win_distribution = fields.Dict(keys=fields.Str(), values=fields.Int())
    bonus_stats = fields.Method("get_bonus_stats")
    volatility_index = fields.Float()
    rtp_over_time = fields.Method("get_rtp_over_time")
    fallback_count = fields.Int()
    duration_seconds = fields.Float()

    def get_bonus_stats(self, result):
        return {
            "triggered": result.bonus_triggered,
            "avg_spins_awarded": result.avg_bonus_spins_awarded,
            "avg_bonus_win_x": result.avg_bonus_win_x,
            "max_bonus_win_x": result.max_bonus_win_x,
        }

    def get_rtp_over_time(self, result):
        return result.rtp_over_time()
