"""Meta-entity formation: fold clusters of related entities into one abstraction."""
import logging

from .config import (
    STATUS_HISTORICAL, META_TAG, NAME_TAG_PREFIX, CLUSTER_JOIN_FACTOR,
    DEFAULT_JACCARD_THRESHOLD, DEFAULT_TEMPORAL_WINDOW,
)
from .model import Cluster
from .view import GraphView

logger = logging.getLogger(__name__)


def _ids(entities):
    return {e.id for e in entities}


class MetaEntityFormation:
    """Holds one MetaEntityConfig per source kind and runs them at epoch end.

    Already-meta entities and historical originals never re-enter clustering, so
    a second pass over unchanged state forms nothing."""

    def __init__(self, configs=None):
        self.configs = {}
        for config in configs or []:
            self.register_config(config)

    def register_config(self, config):
        self.configs[config.source_kind] = config

    # ── Similarity ──

    def calculate_similarity(self, view, a, b, criteria):
        """Sum of weights of matched criteria, plus the names of those criteria."""
        score = 0.0
        matched = []
        for c in criteria:
            if c.type == 'shared_practitioner':
                hit = bool(_ids(view.get_related_entities(a.id, 'practitioner_of', 'dst'))
                           & _ids(view.get_related_entities(b.id, 'practitioner_of', 'dst')))
            elif c.type == 'shared_location':
                hit = bool(_ids(view.get_related_entities(a.id, 'applies_in', 'src'))
                           & _ids(view.get_related_entities(b.id, 'applies_in', 'src')))
                if not hit:
                    hit = bool(_ids(view.get_related_entities(a.id, 'active_during', 'src'))
                               & _ids(view.get_related_entities(b.id, 'active_during', 'src')))
            elif c.type == 'same_creator':
                hit = bool(_ids(view.get_related_entities(a.id, 'created_by', 'src'))
                           & _ids(view.get_related_entities(b.id, 'created_by', 'src')))
            elif c.type == 'same_location':
                loc_a, loc_b = view.get_location(a.id), view.get_location(b.id)
                hit = loc_a is not None and loc_b is not None and loc_a.id == loc_b.id
            elif c.type == 'shared_tags':
                tags_a = {t for t in a.tags if not t.startswith(NAME_TAG_PREFIX)}
                tags_b = {t for t in b.tags if not t.startswith(NAME_TAG_PREFIX)}
                union = tags_a | tags_b
                jaccard = len(tags_a & tags_b) / len(union) if union else 0.0
                hit = jaccard >= (c.threshold if c.threshold is not None
                                  else DEFAULT_JACCARD_THRESHOLD)
            elif c.type == 'temporal_proximity':
                window = c.threshold if c.threshold is not None else DEFAULT_TEMPORAL_WINDOW
                hit = abs(a.created_at - b.created_at) <= window
            else:
                logger.warning('unknown clustering criterion %r', c.type)
                hit = False
            if hit:
                score += c.weight
                matched.append(c.type)
        return score, matched

    # ── Clustering ──

    def candidates(self, graph, source_kind):
        return [e for e in graph.find_entities(kind=source_kind)
                if e.status != STATUS_HISTORICAL and not e.has_tag(META_TAG)]

    def detect_clusters(self, graph, source_kind):
        """Greedy chronological grouping. An entity joins the first cluster whose
        average similarity reaches minimum_score * 0.7."""
        config = self.configs.get(source_kind)
        if config is None:
            return []
        spec = config.clustering
        entities = self.candidates(graph, source_kind)
        if len(entities) < spec.min_size:
            return []
        entities.sort(key=lambda e: e.created_at)
        view = GraphView(graph)
        join_at = spec.minimum_score * CLUSTER_JOIN_FACTOR

        clusters = []
        for entity in entities:
            for cluster in clusters:
                total, n_match, matched = 0.0, 0, set()
                for member in cluster.entities:
                    s, crit = self.calculate_similarity(view, entity, member, spec.criteria)
                    if s > 0:
                        total += s
                        n_match += 1
                        matched.update(crit)
                avg = total / n_match if n_match else 0.0
                if avg >= join_at:
                    cluster.entities.append(entity)
                    cluster.score = (cluster.score + avg) / 2
                    cluster.matched_criteria = sorted(set(cluster.matched_criteria) | matched)
                    break
            else:
                clusters.append(Cluster(entities=[entity], score=spec.minimum_score))

        valid = []
        for cluster in clusters:
            if len(cluster.entities) < spec.min_size:
                continue
            if spec.max_size is not None:
                cluster.entities = cluster.entities[:spec.max_size]
            valid.append(cluster)
        return valid

    # ── Formation ──

    def _transfer(self, graph, originals, meta_id):
        """Move every active relationship of the originals onto the meta entity.
        The original record is archived; links between two originals are dropped."""
        ids = _ids(originals)
        moved = set()
        created = []
        for rel in list(graph.find_relationships()):
            if rel.kind == 'part_of' or not (rel.src in ids or rel.dst in ids):
                continue
            graph.archive_relationship(rel.src, rel.dst, rel.kind)
            src = meta_id if rel.src in ids else rel.src
            dst = meta_id if rel.dst in ids else rel.dst
            if src == dst or (src, dst, rel.kind) in moved:
                continue
            moved.add((src, dst, rel.kind))
            made = graph.add_relationship(rel.kind, src, dst, strength=rel.strength,
                                          distance=rel.distance, catalyzed_by=rel.catalyzed_by)
            if made is not None:
                created.append(made)
        return created

    def form_meta_entity(self, graph, cluster, config):
        originals = cluster.entities if isinstance(cluster, Cluster) else list(cluster)
        fields = dict(config.factory(originals, graph))
        kind = fields.pop('kind', config.meta_kind)
        subtype = fields.pop('subtype', kind)
        name = fields.pop('name')
        fields['tags'] = [META_TAG] + list(fields.get('tags', []))
        meta = graph.add_entity(kind, subtype, name, **fields)

        created = []
        t = config.transformation
        if t.transfer_relationships:
            created += self._transfer(graph, originals, meta.id)
        if t.preserve_original_links:
            for e in originals:
                rel = graph.add_relationship('part_of', e.id, meta.id, strength=1.0)
                if rel is not None:
                    created.append(rel)
        if t.mark_originals_historical:
            for e in originals:
                graph.update_entity(e.id, status=STATUS_HISTORICAL)
                for rel in list(e.links):
                    if rel.kind != 'part_of':
                        graph.archive_relationship(rel.src, rel.dst, rel.kind)
        if t.redirect_future_relationships:
            for e in originals:
                graph.redirects[e.id] = meta.id
        if config.on_formed is not None:
            created += [r for r in config.on_formed(meta, originals, graph) if r is not None]

        description = f'{meta.name} formed from {len(originals)} {config.source_kind} entities'
        graph.record('special', description, entities_created=[meta.id],
                     relationships_created=created,
                     entities_modified=[e.id for e in originals])
        logger.info('tick %d: %s', graph.tick, description)
        return meta

    def run(self, graph, trigger='epoch_end'):
        formed = []
        for source_kind, config in self.configs.items():
            if config.trigger != trigger:
                continue
            for cluster in self.detect_clusters(graph, source_kind):
                formed.append(self.form_meta_entity(graph, cluster, config))
        return formed
