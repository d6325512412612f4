"""Grow the demo world from the command line.

    python -m loreweave.generate --epochs 8 --seed 7 --out results --plots
"""
import argparse
import json
import logging
import os
import time

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from .analysis import compute_graph_metrics, report_run
from .content import build_default_config, default_seed_fragment
from .engine import WorldEngine
from .montecarlo import run_monte_carlo, report_monte_carlo


def _to_json(obj):
    """json.dump fallback for numpy scalars, sets and dataclasses."""
    if hasattr(obj, 'item'):
        return obj.item()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if hasattr(obj, '__dataclass_fields__'):
        return vars(obj)
    raise TypeError(f'not JSON serializable: {type(obj).__name__}')


def save_plots(engine, out_dir):
    from .plotting import setup_style, plot_population, plot_pressures, plot_growth, \
        visualize_world

    setup_style()
    figures = {
        'population.png': plot_population(engine.metric_history),
        'pressures.png': plot_pressures(engine.epoch_stats),
        'growth.png': plot_growth(engine.epoch_stats),
        'world.png': visualize_world(engine.graph),
    }
    for name, fig in figures.items():
        fig.savefig(os.path.join(out_dir, name), dpi=150)
        plt.close(fig)
        print(f"  → {name}")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Grow a procedural world knowledge graph.")
    ap.add_argument("--epochs", type=int, default=None,
                    help="epochs to run (default: two per era)")
    ap.add_argument("--seed", type=int, default=42, help="random seed (default: %(default)s)")
    ap.add_argument("--out", default="results", help="output directory (default: %(default)s)")
    ap.add_argument("--plots", action="store_true", help="write PNG figures to --out")
    ap.add_argument("--strict", action="store_true",
                    help="refuse to run when the configuration has validation errors")
    ap.add_argument("--seeds", type=int, default=0,
                    help="also run a Monte Carlo batch over this many seeds")
    ap.add_argument("-v", "--verbose", action="count", default=0,
                    help="-v for INFO, -vv for DEBUG logging")
    args = ap.parse_args(argv)

    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')
    os.makedirs(args.out, exist_ok=True)

    print("=" * 60)
    print("loreweave: world growth")
    print("=" * 60)

    t_start = time.time()
    engine = WorldEngine(build_default_config(), seed=args.seed,
                         seed_fragment=default_seed_fragment(), strict=args.strict,
                         progress=True)
    graph = engine.run(args.epochs)
    print(f"\nGrown in {time.time() - t_start:.1f}s")

    result = engine.validation
    if result.errors or result.warnings:
        print(f"\nValidation: {len(result.errors)} errors, {len(result.warnings)} warnings")
        for msg in result.errors:
            print(f"  ERROR {msg}")
        for msg in result.warnings:
            print(f"  warn  {msg}")

    print()
    print(report_run(graph, compute_graph_metrics(graph), engine.epoch_stats))

    json_path = os.path.join(args.out, 'world.json')
    with open(json_path, 'w') as f:
        json.dump(engine.export(), f, indent=2, default=_to_json)
    print(f"\nJSON: {json_path}")

    if args.plots:
        print("\nGenerating plots...")
        save_plots(engine, args.out)

    if args.seeds > 0:
        print("\n── Monte Carlo ──")
        results = run_monte_carlo(build_default_config, default_seed_fragment,
                                  n_seeds=args.seeds, base_seed=args.seed,
                                  n_epochs=args.epochs)
        print(report_monte_carlo(results))


if __name__ == '__main__':
    main()
