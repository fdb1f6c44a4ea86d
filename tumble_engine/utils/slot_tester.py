import logging
import multiprocessing as mp
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use a non-interactive backend suitable for saving files
import matplotlib.pyplot as plt

from tumble_engine.utils.rng import make_random_source, spawn_seeds
from tumble_engine.utils.spin_handler import SpinOrchestrator

logger = logging.getLogger(__name__)

# (label, lower bound inclusive) in ascending order; "0x" is an exact-zero bucket.
WIN_BUCKETS = (
    ("0x", 0),
    ("0-1x", 0),
    ("1-5x", 1),
    ("5-10x", 5),
    ("10-25x", 10),
    ("25-50x", 25),
    ("50-100x", 50),
    ("100x+", 100),
)


def classify_win(win_x):
    if win_x <= 0:
        return "0x"
    label = "0-1x"
    for name, lower in WIN_BUCKETS[1:]:
        if win_x >= lower:
            label = name
    return label


def _empty_distribution():
    return {name: 0 for name, _ in WIN_BUCKETS}


@dataclass
class SimulationResult:
    """
    Raw counters from a run. Ratios are properties, so results from several workers can
    be merged by adding counters (see `merge_results`).

    Win sizes and hit counts refer to the paid base spin itself; bonus rounds are
    tracked in the bonus_* counters and included in `total_returned`.
    """
    volatility: str
    bet: float
    target_rtp: float
    spins_requested: int
    spins_completed: int = 0
    aborted: bool = False
    seed: Optional[int] = None
    total_staked: float = 0.0
    base_returned: float = 0.0
    bonus_returned: float = 0.0
    winning_spins: int = 0
    cascades_in_wins: int = 0
    capped_spins: int = 0
    max_win_x: float = 0.0
    win_distribution: Dict[str, int] = field(default_factory=_empty_distribution)
    bonus_triggered: int = 0
    bonus_spins_awarded: int = 0
    max_bonus_win_x: float = 0.0
    fallback_count: int = 0
    duration_seconds: float = 0.0
    returns: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def total_returned(self):
        return self.base_returned + self.bonus_returned

    @property
    def rtp(self):
        return self.total_returned / self.total_staked if self.total_staked > 0 else 0.0

    @property
    def hit_frequency(self):
        return self.winning_spins / self.spins_completed if self.spins_completed else 0.0

    @property
    def bonus_trigger_frequency(self):
        return self.bonus_triggered / self.spins_completed if self.spins_completed else 0.0

    @property
    def avg_win_per_hit(self):
        return self.base_returned / self.winning_spins if self.winning_spins else 0.0

    @property
    def avg_cascades_per_win(self):
        return self.cascades_in_wins / self.winning_spins if self.winning_spins else 0.0

    @property
    def avg_bonus_spins_awarded(self):
        return self.bonus_spins_awarded / self.bonus_triggered if self.bonus_triggered else 0.0

    @property
    def avg_bonus_win_x(self):
        if not self.bonus_triggered or self.bet <= 0:
            return 0.0
        return self.bonus_returned / self.bonus_triggered / self.bet

    @property
    def base_rtp_contribution(self):
        return self.base_returned / self.total_staked if self.total_staked > 0 else 0.0

    @property
    def bonus_rtp_contribution(self):
        return self.bonus_returned / self.total_staked if self.total_staked > 0 else 0.0

    @property
    def volatility_index(self):
        """Standard deviation of per-spin return in multiples of the bet."""
        return float(np.std(self.returns)) if self.returns.size else 0.0

    def rtp_over_time(self, points=50):
        if not self.returns.size:
            return []
        cumulative = np.cumsum(self.returns) / np.arange(1, self.returns.size + 1)
        indices = np.unique(np.linspace(0, self.returns.size - 1, min(points, self.returns.size)).astype(int))
        return [{'spin_count': int(i) + 1, 'rtp': float(cumulative[i])} for i in indices]


class SlotTester:
    """
    Monte-Carlo driver: plays `num_spins` paid base spins through a private
    SpinOrchestrator, nested bonus rounds included, and aggregates the outcome.
    """

    def __init__(self, catalog, volatility=None, num_spins=100_000, bet=1.0, seed=None,
                 progress_callback=None, progress_interval=None, config=None, rng=None):
        self.catalog = catalog
        self.num_spins = num_spins
        self.seed = seed
        self.progress_callback = progress_callback
        self.progress_interval = progress_interval or getattr(config, 'PROGRESS_INTERVAL', None) or 1000
        self.orchestrator = SpinOrchestrator(catalog, rng or make_random_source(config, seed), config)
        self.bet = self.orchestrator.validate_bet(bet)
        self.volatility = self.orchestrator.resolve_volatility(volatility)
        self._abort_requested = False
        self.result = None

    def request_abort(self):
        """Stop before the next spin; the partial result is flagged `aborted`."""
        self._abort_requested = True

    def run_simulation(self) -> SimulationResult:
        profile = self.catalog.profile(self.volatility)
        result = SimulationResult(
            volatility=self.volatility,
            bet=self.bet,
            target_rtp=profile.target_rtp,
            spins_requested=self.num_spins,
            seed=self.seed,
        )
        returns = np.zeros(self.num_spins)
        fallbacks_before = self.orchestrator.generator.fallback_count
        logger.info(f"Starting simulation: {self.num_spins} spins at bet {self.bet} ({self.volatility})")
        started = time.perf_counter()

        for i in range(self.num_spins):
            if self._abort_requested:
                result.aborted = True
                logger.warning(f"Simulation aborted after {i} spins")
                break
            spin = self.orchestrator.spin(self.bet, self.volatility)
            self._collect_spin_statistics(result, spin)
            returns[i] = spin.total_payout / self.bet
            if self.progress_callback and (i + 1) % self.progress_interval == 0:
                self.progress_callback((i + 1) / self.num_spins * 100)

        result.returns = returns[:result.spins_completed]
        result.fallback_count = self.orchestrator.generator.fallback_count - fallbacks_before
        result.duration_seconds = time.perf_counter() - started
        if result.fallback_count:
            logger.warning(f"{result.fallback_count} grids needed the redraw fallback; RTP may be skewed")
        logger.info(f"Simulation finished: RTP {result.rtp:.4%} over {result.spins_completed} spins "
                    f"in {result.duration_seconds:.1f}s")
        self.result = result
        return result

    def _collect_spin_statistics(self, result, spin):
        result.spins_completed += 1
        result.total_staked += spin.bet
        result.base_returned += spin.total_win
        if spin.cap_applied:
            result.capped_spins += 1

        win_x = spin.total_win / spin.bet
        result.max_win_x = max(result.max_win_x, win_x)
        result.win_distribution[classify_win(win_x)] += 1
        if spin.has_win:
            result.winning_spins += 1
            result.cascades_in_wins += spin.cascade_count

        bonus = spin.bonus_round
        if bonus is not None:
            result.bonus_triggered += 1
            result.bonus_spins_awarded += bonus.state.spins_awarded_total
            result.bonus_returned += bonus.total_win
            result.max_bonus_win_x = max(result.max_bonus_win_x, bonus.win_x)


def merge_results(results):
    """Combine worker results in order; per-spin returns are concatenated."""
    results = list(results)
    first = results[0]
    merged = SimulationResult(
        volatility=first.volatility,
        bet=first.bet,
        target_rtp=first.target_rtp,
        spins_requested=sum(r.spins_requested for r in results),
        seed=first.seed,
    )
    for r in results:
        merged.spins_completed += r.spins_completed
        merged.aborted = merged.aborted or r.aborted
        merged.total_staked += r.total_staked
        merged.base_returned += r.base_returned
        merged.bonus_returned += r.bonus_returned
        merged.winning_spins += r.winning_spins
        merged.cascades_in_wins += r.cascades_in_wins
        merged.capped_spins += r.capped_spins
        merged.max_win_x = max(merged.max_win_x, r.max_win_x)
        for label, count in r.win_distribution.items():
            merged.win_distribution[label] += count
        merged.bonus_triggered += r.bonus_triggered
        merged.bonus_spins_awarded += r.bonus_spins_awarded
        merged.max_bonus_win_x = max(merged.max_bonus_win_x, r.max_bonus_win_x)
        merged.fallback_count += r.fallback_count
        merged.duration_seconds = max(merged.duration_seconds, r.duration_seconds)
    merged.returns = np.concatenate([r.returns for r in results])
    return merged


def _split_work(total, parts):
    """Divide work into roughly equal integer chunks."""
    base, remainder = divmod(total, parts)
    sizes = [base + (1 if i < remainder else 0) for i in range(parts)]
    return [size for size in sizes if size > 0]


def _run_simulation_chunk(catalog, volatility, num_spins, bet, seed, config):
    return SlotTester(catalog, volatility, num_spins, bet, seed=seed, config=config).run_simulation()


def run_batched_simulation(catalog, volatility=None, num_spins=100_000, bet=1.0, seed=None,
                           workers=None, progress_callback=None, config=None) -> SimulationResult:
    """
    Splits the run across worker processes, each with an independent stream derived from
    `seed`. With one worker this is a plain SlotTester run on the root seed.
    """
    if workers is None:
        workers = os.cpu_count() or 1
    workers = max(1, min(workers, num_spins))
    if workers == 1:
        tester = SlotTester(catalog, volatility, num_spins, bet, seed=seed,
                            progress_callback=progress_callback, config=config)
        return tester.run_simulation()

    chunks = _split_work(num_spins, workers)
    seeds = spawn_seeds(seed, len(chunks))
    logger.info(f"Running {num_spins} spins across {len(chunks)} workers")
    started = time.perf_counter()
    with mp.Pool(len(chunks)) as pool:
        pending = [
            pool.apply_async(_run_simulation_chunk, (catalog, volatility, size, bet, chunk_seed, config))
            for size, chunk_seed in zip(chunks, seeds)
        ]
        results = []
        done = 0
        for job, size in zip(pending, chunks):
            results.append(job.get())
            done += size
            if progress_callback:
                progress_callback(done / num_spins * 100)

    merged = merge_results(results)
    merged.seed = seed
    merged.duration_seconds = time.perf_counter() - started
    return merged


def format_summary(result, game_name=None):
    lines = [
        "--- Simulation Summary ---",
    ]
    if game_name:
        lines.append(f"Slot Game: {game_name}")
    lines += [
        f"Volatility: {result.volatility} (target RTP {result.target_rtp:.2%})",
        f"Spins: {result.spins_completed}/{result.spins_requested}" + (" (aborted)" if result.aborted else ""),
        f"Bet Per Spin: {result.bet:g}",
        f"Total Staked: {result.total_staked:.2f}",
        f"Total Returned: {result.total_returned:.2f}",
        f"RTP: {result.rtp:.4%}",
        f"  Base Game Contribution: {result.base_rtp_contribution:.4%}",
        f"  Bonus Contribution: {result.bonus_rtp_contribution:.4%}",
        f"Hit Frequency: {result.hit_frequency:.2%}",
        f"Avg Win Per Hit: {result.avg_win_per_hit:.2f}",
        f"Avg Cascades Per Win: {result.avg_cascades_per_win:.2f}",
        f"Max Win Observed: {result.max_win_x:.1f}x",
        f"Volatility Index: {result.volatility_index:.3f}",
        f"Spins Hitting The Win Cap: {result.capped_spins}",
        "",
        "Win Distribution:",
    ]
    for label, count in result.win_distribution.items():
        share = count / result.spins_completed if result.spins_completed else 0
        lines.append(f"  {label:>8}: {share:.3%} ({count})")
    one_in = f" (1 in {1 / result.bonus_trigger_frequency:.0f})" if result.bonus_trigger_frequency else ""
    lines += [
        "",
        f"Bonus Triggers: {result.bonus_triggered}{one_in}",
        f"Avg Spins Awarded: {result.avg_bonus_spins_awarded:.1f}",
        f"Avg Bonus Win: {result.avg_bonus_win_x:.1f}x",
        f"Max Bonus Win: {result.max_bonus_win_x:.1f}x",
        f"Redraw Fallbacks: {result.fallback_count}",
        f"Duration: {result.duration_seconds:.2f}s",
    ]
    return "\n".join(lines)


def generate_graphs(result, output_dir, prefix="simulation"):
    """Writes the win distribution, RTP convergence and RTP split charts; returns the paths."""
    os.makedirs(output_dir, exist_ok=True)
    paths = []

    fig, ax = plt.subplots(figsize=(10, 5))
    labels = list(result.win_distribution)
    ax.bar(labels, [result.win_distribution[label] for label in labels])
    ax.set_yscale('log')
    ax.set_title(f"Win Distribution ({result.volatility})")
    ax.set_xlabel("Win size (x bet)")
    ax.set_ylabel("Spins")
    path = os.path.join(output_dir, f"{prefix}_win_distribution.png")
    fig.savefig(path)
    plt.close(fig)
    paths.append(path)

    samples = result.rtp_over_time(points=200)
    if samples:
        fig, ax = plt.subplots(figsize=(10, 5))
        ax.plot([s['spin_count'] for s in samples], [s['rtp'] * 100 for s in samples], label="RTP")
        ax.axhline(result.target_rtp * 100, color='red', linestyle='--', label="Target")
        ax.set_title("RTP Convergence")
        ax.set_xlabel("Spins")
        ax.set_ylabel("RTP (%)")
        ax.legend()
        path = os.path.join(output_dir, f"{prefix}_rtp_over_time.png")
        fig.savefig(path)
        plt.close(fig)
        paths.append(path)

    fig, ax = plt.subplots(figsize=(6, 5))
    ax.bar(["Base game", "Bonus"], [result.base_rtp_contribution * 100, result.bonus_rtp_contribution * 100])
    ax.set_title("RTP Contribution")
    ax.set_ylabel("RTP (%)")
    path = os.path.join(output_dir, f"{prefix}_rtp_contribution.png")
    fig.savefig(path)
    plt.close(fig)
    paths.append(path)

    logger.info(f"Wrote {len(paths)} graphs to {output_dir}")
    return paths
