"""Visualization functions for world growth runs."""
import numpy as np
import networkx as nx
import matplotlib.pyplot as plt

KIND_COLORS = {
    'location': '#2ca02c',
    'npc': '#6baed6',
    'faction': '#d62728',
    'abilities': '#9467bd',
    'rules': '#ff7f0e',
    'occurrence': '#e377c2',
    'era': '#7f7f7f',
}


def setup_style():
    """Configure matplotlib dark_background style."""
    plt.style.use('dark_background')


def plot_population(metric_history, title='Population deviation'):
    """Deviation per tracked kind:subtype over epochs, plus the ±threshold band."""
    from .config import DEVIATION_THRESHOLD

    fig, ax = plt.subplots(figsize=(10, 5))
    steps = range(len(metric_history))
    keys = sorted({k for snap in metric_history for k, m in snap['entities'].items()
                   if m['target'] > 0})
    for key in keys:
        ys = [snap['entities'].get(key, {}).get('deviation', np.nan) for snap in metric_history]
        ax.plot(steps, ys, label=key, lw=1.5)
    ax.axhspan(-DEVIATION_THRESHOLD, DEVIATION_THRESHOLD, color='#444', alpha=0.4, lw=0)
    ax.axhline(0, color='#aaa', lw=0.8, ls='--')
    ax.set_xlabel('Epoch')
    ax.set_ylabel('(count - target) / target')
    ax.set_title(title, fontsize=13)
    ax.legend(fontsize=7, ncol=2, loc='upper right')
    plt.tight_layout()
    return fig


def plot_pressures(epoch_stats, title='Pressures'):
    fig, ax = plt.subplots(figsize=(10, 4))
    names = sorted({n for s in epoch_stats for n in s['pressures']})
    ticks = [s['tick'] for s in epoch_stats]
    for name in names:
        ax.plot(ticks, [s['pressures'].get(name, np.nan) for s in epoch_stats],
                label=name, lw=2)
    # era boundaries
    for prev, cur in zip(epoch_stats, epoch_stats[1:]):
        if prev['era'] != cur['era']:
            ax.axvline(prev['tick'], color='#aaa', lw=0.8, ls=':')
            ax.text(prev['tick'], 98, str(cur['era']), fontsize=8, color='#aaa', va='top')
    ax.set_ylim(0, 100)
    ax.set_xlabel('Tick')
    ax.set_ylabel('Level')
    ax.set_title(title, fontsize=13)
    ax.legend(fontsize=8, loc='upper left')
    plt.tight_layout()
    return fig


def plot_growth(epoch_stats, title='Growth per epoch'):
    fig, axes = plt.subplots(1, 2, figsize=(12, 4))
    epochs = [s['epoch'] for s in epoch_stats]

    ax = axes[0]
    ax.bar(epochs, [s['growth_target'] for s in epoch_stats], color='#444', label='target')
    ax.bar(epochs, [s['entities_grown'] for s in epoch_stats], color='#fc8d59',
           width=0.5, label='grown')
    ax.set_xlabel('Epoch')
    ax.set_title('Entities: target vs grown')
    ax.legend(fontsize=8)

    ax = axes[1]
    ax.plot(epochs, [s['entities'] for s in epoch_stats], color='#6baed6', lw=2, label='entities')
    ax.plot(epochs, [s['relationships'] for s in epoch_stats], color='#2ca02c', lw=2,
            label='relationships')
    ax.set_xlabel('Epoch')
    ax.set_title('Totals')
    ax.legend(fontsize=8)

    fig.suptitle(title, fontsize=13)
    plt.tight_layout()
    return fig


def visualize_world(graph, title='World graph', include_eras=False):
    """Active graph, nodes colored by kind, size = degree. Conflict edges red dashed."""
    fig, ax = plt.subplots(figsize=(12, 9))
    G = nx.Graph(graph.to_networkx())
    if not include_eras:
        G = G.subgraph([n for n, d in G.nodes(data=True) if d['kind'] != 'era'])
    pos = nx.spring_layout(G, k=1.2 / np.sqrt(max(G.number_of_nodes(), 1)),
                           iterations=80, seed=42)
    degrees = dict(G.degree())

    conflict = [(u, v) for u, v, d in G.edges(data=True) if d.get('kind') == 'at_war_with']
    other = [(u, v) for u, v, d in G.edges(data=True) if d.get('kind') != 'at_war_with']
    nx.draw_networkx_edges(G, pos, edgelist=other, alpha=0.2, edge_color='#aaa', ax=ax)
    if conflict:
        nx.draw_networkx_edges(G, pos, edgelist=conflict, alpha=0.6, edge_color='#d62728',
                               style='dashed', width=1.5, ax=ax)

    for kind, color in KIND_COLORS.items():
        nodes = [n for n, d in G.nodes(data=True) if d['kind'] == kind]
        if not nodes:
            continue
        nx.draw_networkx_nodes(G, pos, nodelist=nodes, node_color=color,
                               node_size=[60 + degrees.get(n, 0) * 25 for n in nodes],
                               label=kind, ax=ax)

    hub_labels = {n: G.nodes[n]['name'] for n in G.nodes() if degrees.get(n, 0) >= 8}
    nx.draw_networkx_labels(G, pos, labels=hub_labels, font_size=7, font_color='white', ax=ax)

    ax.legend(fontsize=8, loc='upper left')
    ax.set_title(title, fontsize=14)
    ax.axis('off')
    plt.tight_layout()
    return fig
