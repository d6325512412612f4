"""Monte Carlo runner: grow the same configuration under many seeds."""
import logging
import multiprocessing as mp

import numpy as np
from tqdm.auto import tqdm

from .analysis import compute_graph_metrics

logger = logging.getLogger(__name__)

_ENGINE = {}


def init_worker(engine_dict):
    """Called once per worker process to set engine globals."""
    global _ENGINE
    _ENGINE = engine_dict


def ci95(arr):
    """95% confidence interval: (mean, lo, hi)."""
    arr = np.array(arr, dtype=float)
    mean = np.mean(arr)
    if len(arr) < 2:
        return mean, mean, mean
    se = np.std(arr, ddof=1) / np.sqrt(len(arr))
    return mean, mean - 1.96 * se, mean + 1.96 * se


def run_seed(seed):
    """One full run. Uses _ENGINE globals set via init_worker."""
    from .engine import WorldEngine

    config = _ENGINE['build_config']()
    engine = WorldEngine(config, seed=seed, seed_fragment=_ENGINE['seed_fragment']())
    graph = engine.run(_ENGINE['n_epochs'])
    metrics = compute_graph_metrics(graph)
    summary = engine.tracker.get_summary()
    kinds = metrics['entities_by_kind']

    return {
        'seed': seed,
        'ticks': graph.tick,
        'entities': metrics['n_entities'],
        'relationships': metrics['n_relationships'],
        'H': metrics['H'],
        'Q': metrics['Q'],
        'gcc_fraction': metrics['gcc_fraction'],
        'avg_deviation': summary['avg_deviation'],
        'max_deviation': summary['max_deviation'],
        'eras_reached': len([e for e in graph.era_entities() if e.status != 'future']),
        'occurrences': kinds.get('occurrence', 0),
        'meta_entities': sum(1 for e in graph.entities.values() if 'meta-entity' in e.tags),
        'history_events': len(graph.history),
        'valid_config': engine.validation.valid,
    }


def run_monte_carlo(build_config, seed_fragment, n_seeds=20, base_seed=42, n_epochs=None,
                    n_workers=None, progress=True):
    """Run `n_seeds` independent worlds.

    Args:
        build_config: zero-argument callable returning a fresh EngineConfig
        seed_fragment: zero-argument callable returning the initial fragment
        n_workers: parallel processes (default min(cpu_count, 8)); 1 runs inline

    Returns:
        list of dicts (one per seed)
    """
    if n_workers is None:
        n_workers = min(mp.cpu_count(), 8)
    seeds = list(range(base_seed, base_seed + n_seeds))
    engine_globals = {
        'build_config': build_config,
        'seed_fragment': seed_fragment,
        'n_epochs': n_epochs,
    }

    results = []
    if n_workers <= 1:
        init_worker(engine_globals)
        for seed in tqdm(seeds, desc='seeds', disable=not progress):
            results.append(run_seed(seed))
        return results

    ctx = mp.get_context('fork')
    with ctx.Pool(n_workers, initializer=init_worker, initargs=(engine_globals,)) as pool:
        for result in tqdm(pool.imap_unordered(run_seed, seeds), total=n_seeds,
                           desc='seeds', disable=not progress):
            results.append(result)
    results.sort(key=lambda r: r['seed'])
    logger.info('monte carlo: %d seeds finished', len(results))
    return results


def report_monte_carlo(results):
    """Format Monte Carlo results as a printable table string."""
    n_mc = len(results)
    mc = {key: [r[key] for r in results] for key in results[0]}

    def _fmt_ci(lo, hi, decimals=3):
        fmt = f'%.{decimals}f'
        return f'[{fmt % lo}, {fmt % hi}]'

    W_NAME, W_MEAN, W_CI = 28, 10, 22
    lines = []
    lines.append(f"{'Metric':<{W_NAME}} {'Mean':>{W_MEAN}} {'95% CI':>{W_CI}}")
    lines.append('=' * (W_NAME + W_MEAN + W_CI + 2))
    rows = [
        ('entities', 'Entities', 1),
        ('relationships', 'Relationships', 1),
        ('H', 'Hub dominance H', 2),
        ('Q', 'Modularity Q', 3),
        ('gcc_fraction', 'Giant component fraction', 3),
        ('avg_deviation', 'Mean |deviation|', 3),
        ('max_deviation', 'Max |deviation|', 3),
        ('eras_reached', 'Eras reached', 2),
        ('occurrences', 'Occurrences', 2),
        ('meta_entities', 'Meta-entities', 2),
    ]
    for key, label, decimals in rows:
        m, lo, hi = ci95(mc[key])
        lines.append(f"{label:<{W_NAME}} {m:>{W_MEAN}.{decimals}f} "
                     f"{_fmt_ci(lo, hi, decimals):>{W_CI}}")
    valid = sum(mc['valid_config'])
    lines.append(f"\nValid configuration: {valid}/{n_mc}")
    return '\n'.join(lines)
