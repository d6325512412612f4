"""Structural analysis of a grown world: counts, degree metrics, communities."""
import numpy as np
import networkx as nx

from .graph import prominence_value


def count_by(items, key):
    out = {}
    for item in items:
        k = key(item)
        out[k] = out.get(k, 0) + 1
    return dict(sorted(out.items()))


def compute_graph_metrics(graph, include_eras=False):
    """Counts by kind, degree distribution, hub dominance H, modularity Q."""
    G = graph.to_networkx()
    if not include_eras:
        G = G.subgraph([n for n, d in G.nodes(data=True) if d['kind'] != 'era']).copy()
    U = nx.Graph(G)

    entities = [e for e in graph.entities.values() if include_eras or e.kind != 'era']
    active_rels = graph.find_relationships()
    degrees = np.array([U.degree(n) for n in U.nodes()], dtype=float)

    # Hub dominance
    if degrees.size and degrees.mean() > 0:
        k_max, k_mean = float(degrees.max()), float(degrees.mean())
        H = k_max / k_mean
    else:
        k_max = k_mean = H = 0.0
    top_hubs = sorted(U.degree(), key=lambda nd: nd[1], reverse=True)[:5]

    # Modularity (Louvain)
    if U.number_of_edges() > 0:
        communities = nx.community.louvain_communities(U, seed=42)
        Q = nx.community.modularity(U, communities)
    else:
        communities, Q = [], 0.0
    comm_sizes = sorted([len(c) for c in communities], reverse=True)

    isolated = [n for n in U.nodes() if U.degree(n) == 0]
    gcc = max(nx.connected_components(U), key=len) if U.number_of_nodes() else set()

    return {
        'n_entities': len(entities),
        'n_relationships': len(active_rels),
        'n_historical_relationships': len(graph.relationships) - len(active_rels),
        'entities_by_kind': count_by(entities, lambda e: e.kind),
        'entities_by_status': count_by(entities, lambda e: e.status),
        'entities_by_prominence': count_by(
            sorted(entities, key=lambda e: prominence_value(e.prominence)),
            lambda e: e.prominence),
        'relationships_by_kind': count_by(active_rels, lambda r: r.kind),
        'degrees': degrees,
        'k_max': k_max, 'k_mean': k_mean, 'H': H,
        'top_hubs': [(graph.get_entity(n).name, d) for n, d in top_hubs],
        'Q': Q, 'communities': communities, 'comm_sizes': comm_sizes,
        'n_isolated': len(isolated),
        'gcc_fraction': len(gcc) / U.number_of_nodes() if U.number_of_nodes() else 0.0,
    }


def history_summary(graph):
    by_type = count_by(graph.history, lambda h: h.type)
    by_era = count_by(graph.history, lambda h: h.era or '-')
    return {'events': len(graph.history), 'by_type': by_type, 'by_era': by_era}


def report_run(graph, metrics=None, epoch_stats=None):
    """Format a finished run as a printable table string."""
    if metrics is None:
        metrics = compute_graph_metrics(graph)
    W_NAME, W_VAL = 32, 12
    lines = []
    lines.append(f"{'Metric':<{W_NAME}} {'Value':>{W_VAL}}")
    lines.append('=' * (W_NAME + W_VAL + 1))
    lines.append(f"{'Ticks':<{W_NAME}} {graph.tick:>{W_VAL}}")
    era = graph.current_era.name if graph.current_era is not None else '-'
    lines.append(f"{'Final era':<{W_NAME}} {era:>{W_VAL}}")
    lines.append(f"{'Entities':<{W_NAME}} {metrics['n_entities']:>{W_VAL}}")
    lines.append(f"{'Relationships (active)':<{W_NAME}} {metrics['n_relationships']:>{W_VAL}}")
    lines.append(f"{'Relationships (historical)':<{W_NAME}} "
                 f"{metrics['n_historical_relationships']:>{W_VAL}}")
    lines.append(f"{'Hub dominance H':<{W_NAME}} {metrics['H']:>{W_VAL}.2f}")
    lines.append(f"{'Modularity Q':<{W_NAME}} {metrics['Q']:>{W_VAL}.3f}")
    lines.append(f"{'Communities':<{W_NAME}} {len(metrics['comm_sizes']):>{W_VAL}}")
    lines.append(f"{'Giant component':<{W_NAME}} {metrics['gcc_fraction']:>{W_VAL}.1%}")
    lines.append(f"{'Isolated entities':<{W_NAME}} {metrics['n_isolated']:>{W_VAL}}")

    lines.append('\nEntities by kind')
    for kind, n in metrics['entities_by_kind'].items():
        lines.append(f"  {kind:<{W_NAME - 2}} {n:>{W_VAL}}")
    lines.append('\nRelationships by kind')
    for kind, n in metrics['relationships_by_kind'].items():
        lines.append(f"  {kind:<{W_NAME - 2}} {n:>{W_VAL}}")
    lines.append('\nPressures')
    for name, v in graph.pressures.items():
        lines.append(f"  {name:<{W_NAME - 2}} {v:>{W_VAL}.1f}")

    if metrics['top_hubs']:
        lines.append('\nTop hubs: ' + ', '.join(f'{n} ({d})' for n, d in metrics['top_hubs']))

    if epoch_stats:
        lines.append(f"\n{'Epoch':>5} {'Era':<16} {'Target':>6} {'Grown':>6} "
                     f"{'Entities':>9} {'Rels':>6} {'AvgDev':>7}")
        for s in epoch_stats:
            lines.append(f"{s['epoch']:>5} {str(s['era']):<16} {s['growth_target']:>6} "
                         f"{s['entities_grown']:>6} {s['entities']:>9} "
                         f"{s['relationships']:>6} {s['avg_deviation']:>7.2f}")

    h = history_summary(graph)
    lines.append(f"\nHistory: {h['events']} events "
                 + ', '.join(f'{k}={v}' for k, v in h['by_type'].items()))
    return '\n'.join(lines)
