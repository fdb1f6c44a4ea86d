import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from tumble_engine.error_codes import ErrorCodes
from tumble_engine.exceptions import CascadeLimitExceededException, ValidationException
from tumble_engine.utils.cascade_engine import CascadeResult, handle_cascade_fill
from tumble_engine.utils.grid_generator import GridGenerator, copy_grid
from tumble_engine.utils.rng import make_random_source
from tumble_engine.utils.symbol_catalog import GameMode
from tumble_engine.utils.win_evaluator import (
    WinResult,
    calculate_win,
    check_bonus_trigger,
    check_retrigger,
    get_win_category,
)

logger = logging.getLogger(__name__)

SPIN_MODES = ('base', 'bonus_buy')


class SpinPhase(Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    CASCADING = "cascading"
    SETTLED = "settled"


@dataclass
class CascadeStep:
    grid: list
    win_result: WinResult
    cascade_result: CascadeResult
    effective_multiplier: float
    step_win: float


@dataclass
class BonusState:
    spins_remaining: int
    spins_awarded_total: int
    spins_played: int = 0
    cumulative_win: float = 0.0
    collected_multipliers: List[float] = field(default_factory=list)
    bought: bool = False
    retriggers: int = 0

    @property
    def is_active(self):
        return self.spins_remaining > 0

    @property
    def multiplier_sum(self):
        return sum(self.collected_multipliers)

    @property
    def effective_multiplier(self):
        # Nothing collected yet pays at x1.
        total = self.multiplier_sum
        return total if total > 0 else 1

    def collect(self, values):
        self.collected_multipliers.extend(values)

    def award(self, spins):
        self.spins_remaining += spins
        self.spins_awarded_total += spins


@dataclass
class SpinResult:
    mode: GameMode
    bet: float
    volatility: str
    initial_grid: list
    final_grid: list
    steps: List[CascadeStep]
    raw_win: float
    total_win: float
    cap_applied: bool
    scatter_count: int
    scatter_triggered: bool = False
    bonus_spins_awarded: int = 0
    retriggered: bool = False
    win_category: Optional[str] = None
    multipliers_collected: List[float] = field(default_factory=list)
    effective_multiplier: float = 1
    bonus_round: Optional["BonusRoundResult"] = None

    @property
    def cascade_count(self):
        return len(self.steps)

    @property
    def has_win(self):
        return self.total_win > 0

    @property
    def total_payout(self):
        """This spin's win plus any bonus round it triggered."""
        return self.total_win + (self.bonus_round.total_win if self.bonus_round else 0)


@dataclass
class BonusRoundResult:
    trigger: str
    bet: float
    volatility: str
    cost: float
    spins_awarded: int
    spins: List[SpinResult]
    raw_total_win: float
    total_win: float
    cap_applied: bool
    state: BonusState
    multiplier_progression: List[float]

    @property
    def win_x(self):
        return self.total_win / self.bet if self.bet else 0


class SpinOrchestrator:
    """
    Runs spins to completion: generate, evaluate, cascade until the grid stops paying,
    cap the total, and play any free-spins round the spin triggers.

    One orchestrator owns its random stream and grid generator; give each concurrent
    simulation its own instance.
    """

    def __init__(self, catalog, rng=None, config=None):
        self.catalog = catalog
        self.rng = rng if rng is not None else make_random_source(config)
        self.generator = GridGenerator(catalog, self.rng, max_redraws=getattr(config, 'MAX_REDRAWS', None))
        # Settings override the game's own choice only when set explicitly.
        scatter_control = getattr(config, 'SCATTER_CONTROL', None)
        self.scatter_control = catalog.scatter_control if scatter_control is None else bool(scatter_control)
        self.default_volatility = getattr(config, 'DEFAULT_VOLATILITY', None) or catalog.default_volatility
        self.phase = SpinPhase.IDLE

    def resolve_volatility(self, volatility=None):
        return self.catalog.profile(volatility or self.default_volatility).name

    def validate_bet(self, bet):
        if isinstance(bet, bool) or not isinstance(bet, (int, float)) or not math.isfinite(bet) or bet <= 0:
            raise ValidationException(
                "Bet must be a positive number",
                details={"bet": bet},
                error_code=ErrorCodes.INVALID_BET,
            )
        return float(bet)

    def resolve_spin(self, grid, bet, mode=GameMode.BASE, volatility=None, bonus_state=None) -> SpinResult:
        """
        Evaluates `grid` and cascades until no win remains.

        In bonus mode every multiplier value that lands, on the starting grid or in a
        refill, is added to `bonus_state` before the next evaluation, and each step pays
        raw win x the round's effective multiplier. Base mode ignores multipliers.

        Raises:
            CascadeLimitExceededException: If the grid is still winning after the
                configured maximum number of cascades.
        """
        mode = GameMode(mode)
        volatility = self.resolve_volatility(volatility)
        in_bonus = mode == GameMode.BONUS and bonus_state is not None
        payout_scale = self.catalog.profile(volatility).payout_scale

        self.phase = SpinPhase.EVALUATING
        current = copy_grid(grid)
        win = calculate_win(current, bet, self.catalog, payout_scale)
        scatter_count = win.scatter_count
        collected = [m.value for m in win.multiplier_cells] if in_bonus else []
        if in_bonus:
            bonus_state.collect(collected)

        steps = []
        accumulated = 0.0
        while win.has_win:
            if len(steps) >= self.catalog.max_cascades:
                logger.error(f"Cascade limit of {self.catalog.max_cascades} reached with the grid still paying")
                raise CascadeLimitExceededException(
                    self.catalog.max_cascades,
                    details={"mode": mode.value, "accumulated_win": accumulated},
                )
            effective = bonus_state.effective_multiplier if in_bonus else 1
            step_win = win.total_win_multiplier * effective * bet
            accumulated += step_win

            self.phase = SpinPhase.CASCADING
            cascade = handle_cascade_fill(current, win.winning_cells, mode, volatility, self.generator)
            steps.append(CascadeStep(current, win, cascade, effective, step_win))
            current = cascade.new_grid
            if in_bonus:
                spawned = list(cascade.spawned_multipliers)
                bonus_state.collect(spawned)
                collected.extend(spawned)

            self.phase = SpinPhase.EVALUATING
            win = calculate_win(current, bet, self.catalog, payout_scale)

        cap = self.catalog.max_win_per_spin_x * bet
        total_win = min(accumulated, cap)
        result = SpinResult(
            mode=mode,
            bet=bet,
            volatility=volatility,
            initial_grid=copy_grid(grid),
            final_grid=current,
            steps=steps,
            raw_win=accumulated,
            total_win=total_win,
            cap_applied=accumulated > cap,
            scatter_count=scatter_count,
            win_category=get_win_category(total_win, bet, self.catalog),
            multipliers_collected=collected,
            effective_multiplier=bonus_state.effective_multiplier if in_bonus else 1,
        )
        if mode == GameMode.BASE:
            trigger = check_bonus_trigger(scatter_count, self.catalog)
            result.scatter_triggered = trigger['triggered']
            result.bonus_spins_awarded = trigger['spins_awarded']

        self.phase = SpinPhase.SETTLED
        return result

    def spin(self, bet, volatility=None) -> SpinResult:
        """Plays one paid base-game spin, including the full bonus round if it triggers one."""
        bet = self.validate_bet(bet)
        volatility = self.resolve_volatility(volatility)
        self.phase = SpinPhase.IDLE

        scatter_count = self.generator.generate_scatter_count(volatility) if self.scatter_control else None
        grid = self.generator.generate(GameMode.BASE, volatility, scatter_count=scatter_count)
        result = self.resolve_spin(grid, bet, GameMode.BASE, volatility)
        if result.scatter_triggered:
            logger.debug(f"{result.scatter_count} scatters: awarding {result.bonus_spins_awarded} free spins")
            result.bonus_round = self.run_bonus_round(bet, volatility, result.bonus_spins_awarded, trigger='scatter')
        return result

    def play_free_spin(self, bet, volatility, state) -> SpinResult:
        state.spins_remaining -= 1
        state.spins_played += 1
        grid = self.generator.generate(GameMode.BONUS, volatility)
        result = self.resolve_spin(grid, bet, GameMode.BONUS, volatility, bonus_state=state)

        extra = check_retrigger(result.scatter_count, self.catalog)
        if extra:
            state.award(extra)
            state.retriggers += 1
            result.retriggered = True
            result.bonus_spins_awarded = extra
            logger.debug(f"Retrigger: +{extra} free spins ({state.spins_remaining} remaining)")

        state.cumulative_win += result.total_win
        return result

    def run_bonus_round(self, bet, volatility, spins_awarded, trigger='scatter', cost=0.0) -> BonusRoundResult:
        """
        Plays free spins until none remain. Collected multipliers persist for the whole
        round, retriggers included, and start empty for every new round.
        """
        state = BonusState(spins_remaining=spins_awarded, spins_awarded_total=spins_awarded, bought=trigger == 'buy')
        spins = []
        progression = []
        while state.is_active:
            spins.append(self.play_free_spin(bet, volatility, state))
            progression.append(state.effective_multiplier)

        cap = self.catalog.max_win_per_bonus_x * bet
        total = min(state.cumulative_win, cap)
        logger.debug(
            f"Bonus round ({trigger}) finished after {state.spins_played} spins: "
            f"win {total:.2f} at x{state.effective_multiplier}"
        )
        return BonusRoundResult(
            trigger=trigger,
            bet=bet,
            volatility=volatility,
            cost=cost,
            spins_awarded=spins_awarded,
            spins=spins,
            raw_total_win=state.cumulative_win,
            total_win=total,
            cap_applied=state.cumulative_win > cap,
            state=state,
            multiplier_progression=progression,
        )

    def buy_bonus(self, bet, volatility=None) -> BonusRoundResult:
        bet = self.validate_bet(bet)
        volatility = self.resolve_volatility(volatility)
        cost = bet * self.catalog.bonus_buy_cost_x
        logger.info(f"Bonus buy at bet {bet}: cost {cost}, {self.catalog.bonus_buy_spins} free spins")
        return self.run_bonus_round(bet, volatility, self.catalog.bonus_buy_spins, trigger='buy', cost=cost)

    def handle_spin_request(self, bet, mode='base', volatility=None):
        """Entry point for a spin request: 'base' returns a SpinResult, 'bonus_buy' a BonusRoundResult."""
        if mode not in SPIN_MODES:
            raise ValidationException(f"Unknown spin mode '{mode}'", details={"mode": mode, "choices": list(SPIN_MODES)})
        if mode == 'bonus_buy':
            return self.buy_bonus(bet, volatility)
        return self.spin(bet, volatility)
