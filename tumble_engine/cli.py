#!/usr/bin/env python3
"""
Tumble engine command line.

Usage:
    tumble-engine paytable
    tumble-engine spin --bet 2 --volatility DEGEN --seed 7
    tumble-engine buy-bonus --bet 1 --brief
    tumble-engine simulate --spins 1000000 --workers 8 --graphs ./reports
"""

import json
import logging
import signal
import sys
from functools import wraps

import click
from pythonjsonlogger import jsonlogger

from tumble_engine.config import Config, settings_from
from tumble_engine.exceptions import EngineException
from tumble_engine.schemas import (
    BonusBuyRequestSchema,
    BonusRoundResultSchema,
    SimulationRequestSchema,
    SimulationResultSchema,
    SpinRequestSchema,
    SpinResultSchema,
    load_request,
)
from tumble_engine.utils.slot_tester import SlotTester, format_summary, generate_graphs, run_batched_simulation
from tumble_engine.utils.spin_handler import SPIN_MODES, SpinOrchestrator
from tumble_engine.utils.symbol_catalog import SymbolCatalog

logger = logging.getLogger(__name__)

BRIEF_SPIN_FIELDS = ("initial_grid", "final_grid", "steps")


def setup_logging(level, json_logs=False):
    handler = logging.StreamHandler(sys.stderr)
    if json_logs:
        handler.setFormatter(jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(module)s %(funcName)s %(lineno)d %(message)s'
        ))
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    root = logging.getLogger()
    if root.hasHandlers():
        root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def handle_engine_errors(f):
    """Report EngineExceptions as JSON on stderr and exit non-zero."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except EngineException as e:
            logger.error(f"{e.error_code}: {e.status_message}")
            click.echo(json.dumps(e.to_dict(), indent=2, default=str), err=True)
            sys.exit(1)
    return decorated_function


def emit(data):
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.option('--game', default=None, help='Slot short name under public/slots (default: TUMBLE_GAME).')
@click.option('--config-path', type=click.Path(exists=True, dir_okay=False), default=None,
              help='Explicit gameConfig.json path.')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              default=None, help='Overrides TUMBLE_LOG_LEVEL.')
@click.option('--json-logs', is_flag=True, help='Emit logs as JSON lines.')
@click.pass_context
def cli(ctx, game, config_path, log_level, json_logs):
    """Cascading scatter-pay slot engine: spins, bonus buys and RTP simulation."""
    settings = settings_from(Config, game_short_name=game, game_config_path=config_path)
    level = getattr(logging, log_level.upper()) if log_level else settings.LOG_LEVEL
    setup_logging(level, json_logs or settings.LOG_JSON)

    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings


def load_catalog(ctx):
    if 'catalog' not in ctx.obj:
        settings = ctx.obj['settings']
        try:
            ctx.obj['catalog'] = SymbolCatalog.load(settings.GAME_SHORT_NAME, settings.GAME_CONFIG_PATH)
        except FileNotFoundError as e:
            raise click.ClickException(str(e))
    return ctx.obj['catalog']


@cli.command()
@click.pass_context
@handle_engine_errors
def paytable(ctx):
    """Show symbols, weights, payout tiers and volatility profiles."""
    catalog = load_catalog(ctx)
    click.echo(f"{catalog.name} ({catalog.rows}x{catalog.columns}, pays {catalog.min_match}+ anywhere)")
    click.echo("")
    click.echo(f"{'Symbol':<12}{'Tier':<9}{'Base wt':>9}{'Bonus wt':>10}  Payouts (x bet)")
    for definition in catalog.symbols.values():
        tiers = ", ".join(f"{t.min_count}+: {t.multiplier:g}" for t in definition.payout_tiers) or "-"
        click.echo(f"{definition.id.value:<12}{definition.tier:<9}{definition.weight:>9.3f}"
                   f"{definition.bonus_weight:>10.3f}  {tiers}")
    click.echo("")
    awards = ", ".join(f"{count}: {spins}" for count, spins in catalog.scatter_awards.items())
    click.echo(f"Free spins by scatter count: {awards}; retrigger {catalog.retrigger_count}+ adds {catalog.retrigger_spins}")
    click.echo(f"Bonus buy: {catalog.bonus_buy_cost_x:g}x bet for {catalog.bonus_buy_spins} spins")
    click.echo(f"Caps: {catalog.max_win_per_spin_x:g}x per spin, {catalog.max_win_per_bonus_x:g}x per bonus round")
    click.echo("")
    for profile in catalog.profiles.values():
        marker = "*" if profile.name == catalog.default_volatility else " "
        click.echo(f"{marker}{profile.name:<6} RTP {profile.target_rtp:.2%}  hit {profile.hit_frequency:.0%}  "
                   f"bonus {profile.bonus_frequency:.2%}  pays x{profile.payout_scale:g}  {profile.description}")


@cli.command()
@click.option('--bet', type=float, default=None, help='Bet amount (default: the game default bet).')
@click.option('--volatility', default=None, help='Volatility profile name.')
@click.option('--mode', type=click.Choice(SPIN_MODES), default='base')
@click.option('--seed', type=int, default=None, help='Seed for a reproducible spin.')
@click.option('--brief', is_flag=True, help='Omit grids and cascade steps from the output.')
@click.pass_context
@handle_engine_errors
def spin(ctx, bet, volatility, mode, seed, brief):
    """Play one spin (or a bonus buy) and print the result as JSON."""
    catalog = load_catalog(ctx)
    request = load_request(
        SpinRequestSchema(volatility_choices=list(catalog.profiles), bet_steps=catalog.bet_steps),
        {'bet': bet if bet is not None else catalog.default_bet, 'mode': mode, 'volatility': volatility},
    )
    settings = settings_from(ctx.obj['settings'], rng_seed=seed)
    orchestrator = SpinOrchestrator(catalog, config=settings)
    result = orchestrator.handle_spin_request(request['bet'], request['mode'], request['volatility'])
    if request['mode'] == 'bonus_buy':
        emit(BonusRoundResultSchema().dump(result))
    else:
        emit(SpinResultSchema(exclude=BRIEF_SPIN_FIELDS if brief else ()).dump(result))


@cli.command('buy-bonus')
@click.option('--bet', type=float, default=None)
@click.option('--volatility', default=None)
@click.option('--seed', type=int, default=None)
@click.option('--brief', is_flag=True, help='Only print the round summary.')
@click.pass_context
@handle_engine_errors
def buy_bonus(ctx, bet, volatility, seed, brief):
    """Buy straight into the free-spins round."""
    catalog = load_catalog(ctx)
    request = load_request(
        BonusBuyRequestSchema(volatility_choices=list(catalog.profiles), bet_steps=catalog.bet_steps),
        {'bet': bet if bet is not None else catalog.default_bet, 'volatility': volatility},
    )
    settings = settings_from(ctx.obj['settings'], rng_seed=seed)
    orchestrator = SpinOrchestrator(catalog, config=settings)
    result = orchestrator.buy_bonus(request['bet'], request['volatility'])
    emit(BonusRoundResultSchema(exclude=("spins",) if brief else ()).dump(result))


@cli.command()
@click.option('--spins', type=int, default=100_000, show_default=True)
@click.option('--bet', type=float, default=1.0, show_default=True)
@click.option('--volatility', default=None)
@click.option('--seed', type=int, default=None)
@click.option('--workers', type=int, default=1, show_default=True, help='Worker processes.')
@click.option('--scatter-control/--no-scatter-control', default=None,
              help="Override the game's scatter control (scatters placed from the tiered bonus-frequency roll).")
@click.option('--graphs', 'graphs_dir', type=click.Path(file_okay=False), default=None,
              help='Directory for matplotlib charts.')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON instead of a summary.')
@click.pass_context
@handle_engine_errors
def simulate(ctx, spins, bet, volatility, seed, workers, scatter_control, graphs_dir, as_json):
    """Monte-Carlo RTP simulation."""
    catalog = load_catalog(ctx)
    request = load_request(
        SimulationRequestSchema(volatility_choices=list(catalog.profiles)),
        {'spins': spins, 'bet': bet, 'volatility': volatility, 'seed': seed, 'workers': workers},
    )
    settings = settings_from(ctx.obj['settings'], scatter_control=scatter_control)
    seed = request['seed'] if request['seed'] is not None else settings.RNG_SEED

    with click.progressbar(length=100, label='Simulating', file=sys.stderr) as bar:
        def on_progress(percent):
            bar.update(int(percent) - bar.pos)

        if request['workers'] > 1:
            result = run_batched_simulation(
                catalog, request['volatility'], request['spins'], request['bet'], seed=seed,
                workers=request['workers'], progress_callback=on_progress, config=settings,
            )
        else:
            tester = SlotTester(
                catalog, request['volatility'], request['spins'], request['bet'], seed=seed,
                progress_callback=on_progress, config=settings,
            )
            previous = signal.signal(signal.SIGINT, lambda *_: tester.request_abort())
            try:
                result = tester.run_simulation()
            finally:
                signal.signal(signal.SIGINT, previous)

    if as_json:
        emit(SimulationResultSchema().dump(result))
    else:
        click.echo(format_summary(result, game_name=catalog.name))
    if graphs_dir:
        for path in generate_graphs(result, graphs_dir):
            click.echo(f"Graph saved: {path}", err=True)


if __name__ == '__main__':
    cli()
