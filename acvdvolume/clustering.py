"""Approximated centroidal Voronoi clustering of items joined by a graph.

The items are points with positive weights. A clustering assigns each item
to one of ``number_of_clusters`` clusters and is improved by moving items
across cluster boundaries until the total energy stops decreasing. The
value ``number_of_clusters`` marks an item that belongs to no cluster.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Optional, Sequence

from .partition import (
    ClusteringGraph,
    clean_clustering,
    cluster_sizes,
    fill_holes,
    random_initial_sampling,
    weighted_initial_sampling,
)

logger = logging.getLogger(__name__)

_SENTINEL = -1
_BLOCKED_SHRINK = 100000000.0
_BLOCKED_GROW = 1000000000.0


class SamplingType(IntEnum):
    """How the clusters are seeded before minimisation."""

    BY_INDEX = -1
    RANDOM = 0
    WEIGHTED = 1
    USER = 2


@dataclass
class _ClusterStats:
    weight: float = 0.0
    total: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    squares: float = 0.0


class ClusterMetric:
    """Weighted points joined by a graph, clustered by centroidal energy.

    The energy of a cluster is the weighted sum of squared distances of its
    items to its centroid.
    """

    def __init__(
        self,
        positions: Sequence[Sequence[float]],
        graph: ClusteringGraph,
        weights: Optional[Sequence[float]] = None,
    ) -> None:
        self.positions = [tuple(float(c) for c in p) for p in positions]
        if any(len(p) != 3 for p in self.positions):
            raise ValueError("every position must have three coordinates")
        if len(self.positions) != graph.number_of_items():
            raise ValueError("the graph and the positions disagree on the number of items")
        if weights is None:
            weights = [1.0] * len(self.positions)
        self.weights = [float(w) for w in weights]
        if len(self.weights) != len(self.positions):
            raise ValueError("one weight is needed for each item")
        if any(w <= 0 for w in self.weights):
            raise ValueError("weights must be positive")
        self.graph = graph
        self.constrained = True

    def __len__(self) -> int:
        return len(self.positions)

    def new_cluster(self) -> _ClusterStats:
        """Return an empty cluster."""
        return _ClusterStats()

    def copy(self, cluster: _ClusterStats) -> _ClusterStats:
        return _ClusterStats(cluster.weight, list(cluster.total), cluster.squares)

    def item_weight(self, item: int) -> float:
        return self.weights[item]

    def item_position(self, item: int) -> tuple[float, float, float]:
        return self.positions[item]

    def add_item(self, cluster: _ClusterStats, item: int) -> None:
        w = self.weights[item]
        p = self.positions[item]
        cluster.weight += w
        for axis in range(3):
            cluster.total[axis] += w * p[axis]
        cluster.squares += w * (p[0] * p[0] + p[1] * p[1] + p[2] * p[2])

    def remove_item(self, cluster: _ClusterStats, item: int) -> None:
        w = self.weights[item]
        p = self.positions[item]
        cluster.weight -= w
        for axis in range(3):
            cluster.total[axis] -= w * p[axis]
        cluster.squares -= w * (p[0] * p[0] + p[1] * p[1] + p[2] * p[2])

    def added(self, cluster: _ClusterStats, item: int) -> _ClusterStats:
        result = self.copy(cluster)
        self.add_item(result, item)
        return result

    def removed(self, cluster: _ClusterStats, item: int) -> _ClusterStats:
        result = self.copy(cluster)
        self.remove_item(result, item)
        return result

    def centroid(self, cluster: _ClusterStats) -> tuple[float, float, float]:
        if cluster.weight == 0:
            return (0.0, 0.0, 0.0)
        return tuple(v / cluster.weight for v in cluster.total)

    def energy(self, cluster: _ClusterStats) -> float:
        if cluster.weight == 0:
            return 0.0
        norm = sum(v * v for v in cluster.total)
        return cluster.squares - norm / cluster.weight


def _distance2(a: Sequence[float], b: Sequence[float]) -> float:
    return sum((x - y) ** 2 for x, y in zip(a, b))


class UniformClustering:
    """Minimises the clustering energy by moving items across boundaries."""

    def __init__(self, metric: ClusterMetric) -> None:
        self.metric = metric
        self.number_of_clusters = 0
        self.clusters: list[_ClusterStats] = []
        self.clustering: list[int] = []
        self.sizes: list[int] = []
        self.minimize_using_energy = True
        self.unconstrained_initialization = False
        self.max_number_of_convergences = 1_000_000_000
        self.max_number_of_loops = 5_000_000
        self.initial_sampling_type = SamplingType.WEIGHTED
        self.fixed_clusters: Optional[list[int]] = None
        self.save_energy = False
        self.output_directory: Optional[str] = None
        self.connexity_constraint = False
        self.number_of_loops = 0
        # Per-item types used when cleaning; items of type 0 do not count
        # towards a component's size. None means every item has type 1.
        self.item_types: Optional[Sequence[int]] = None
        # Clusters whose disconnected components are left alone when cleaning.
        self.uncleanable_clusters: set[int] = set()
        self._initial_clustering: Optional[list[int]] = None
        self._queue: deque[int] = deque()
        self._edges_last_loop: list[int] = []
        self._relative_loops = 1
        self._last_modification: list[int] = []
        self._frozen: list[bool] = []
        self._energy_log = None
        self._start_time = 0.0

    @property
    def graph(self) -> ClusteringGraph:
        return self.metric.graph

    def set_number_of_clusters(self, count: int) -> None:
        if count < 0:
            raise ValueError("number of clusters must not be negative")
        self.number_of_clusters = count
        self.clusters = [self.metric.new_cluster() for _ in range(count)]

    def set_initial_clustering(self, clustering: Sequence[int]) -> None:
        values = list(clustering)
        if len(values) != self.graph.number_of_items():
            raise ValueError("the initial clustering needs one value for each item")
        self.initial_sampling_type = SamplingType.USER
        self._initial_clustering = values

    def cluster_size(self, cluster: int) -> int:
        return self.sizes[cluster]

    def build_metric(self) -> None:
        """Check the metric against the graph and reset the clusters."""
        if len(self.metric) != self.graph.number_of_items():
            raise ValueError("the metric and the graph disagree on the number of items")
        self.clusters = [self.metric.new_cluster() for _ in range(self.number_of_clusters)]

    def item_coordinates(self, item: int) -> tuple[float, float, float]:
        return self.metric.item_position(item)

    def connexity_problem(self, item: int, edge: int, cluster: int, other_cluster: int) -> bool:
        """Whether moving ``item`` out of ``cluster`` would split that cluster."""
        if not self.connexity_constraint or not 0 <= cluster < self.number_of_clusters:
            return False
        targets = [n for n in self.graph.item_neighbours(item) if self.clustering[n] == cluster]
        if len(targets) <= 1:
            return False
        remaining = set(targets)
        remaining.discard(targets[0])
        seen = {item, targets[0]}
        queue = deque([targets[0]])
        while queue and remaining:
            current = queue.popleft()
            for neighbour in self.graph.item_neighbours(current):
                if neighbour not in seen and self.clustering[neighbour] == cluster:
                    seen.add(neighbour)
                    remaining.discard(neighbour)
                    queue.append(neighbour)
        return bool(remaining)

    def _item_type(self, item: int) -> int:
        if self.item_types is None:
            return 1
        return int(self.item_types[item])

    def _is_cluster_cleanable(self, cluster: int) -> bool:
        return cluster not in self.uncleanable_clusters

    def _init(self) -> None:
        self.build_metric()
        k = self.number_of_clusters
        self.clustering = [k] * self.graph.number_of_items()
        self.sizes = [0] * k
        self._last_modification = [0] * k
        self._frozen = [False] * k
        self._edges_last_loop = [0] * self.graph.number_of_edges()
        self._relative_loops = 1
        self.number_of_loops = 0
        self._queue.clear()

    def _init_samples(self, items: Optional[Sequence[int]]) -> None:
        count = self.graph.number_of_items()
        k = self.number_of_clusters
        kind = self.initial_sampling_type
        if kind in (SamplingType.RANDOM, SamplingType.BY_INDEX):
            self.clustering = random_initial_sampling(
                count, k, items, by_index=kind == SamplingType.BY_INDEX
            )
        elif kind == SamplingType.WEIGHTED:
            self.clustering = weighted_initial_sampling(
                self.graph, self.metric.weights, k, self.fixed_clusters
            )
        elif kind == SamplingType.USER:
            if self._initial_clustering is None:
                raise ValueError("no initial clustering was given")
            self.clustering = list(self._initial_clustering)
        else:
            raise ValueError(f"unknown initial sampling type {kind!r}")

    def process(self, items: Optional[Sequence[int]] = None) -> list[int]:
        """Cluster the items and return the clustering."""
        if self.number_of_clusters == 0:
            raise ValueError("the number of clusters must be more than zero")
        self._init()
        self._init_samples(items)
        if self.unconstrained_initialization:
            logger.info("performing unconstrained initialization")
            self.metric.constrained = False
        self._start_time = time.monotonic()
        if self.save_energy:
            directory = Path(self.output_directory) if self.output_directory else Path()
            with open(directory / "energy.txt", "w", encoding="ascii") as log:
                self._energy_log = log
                try:
                    self.minimize_energy()
                    self.recompute_statistics()
                    log.write(f"Final Energy :{self.compute_global_energy():.15g}\n")
                finally:
                    self._energy_log = None
        else:
            self.minimize_energy()
        logger.info(
            "clustering took %.3f s in %d loops",
            time.monotonic() - self._start_time,
            self.number_of_loops,
        )
        return list(self.clustering)

    def _write_energy(self) -> None:
        if self._energy_log is not None:
            elapsed = time.monotonic() - self._start_time
            self._energy_log.write(
                f"{self.number_of_loops} {elapsed:g} {self.compute_global_energy():.15g}\n"
            )

    def _fill_queue(self) -> None:
        self._queue.clear()
        for edge in range(self.graph.number_of_edges()):
            first, second = self.graph.edge_items(edge)
            if second < 0:
                continue
            if self.clustering[first] != self.clustering[second]:
                self._queue.append(edge)
        self._queue.append(_SENTINEL)

    def _set_all_modified(self) -> None:
        self._last_modification = [self.number_of_loops] * self.number_of_clusters

    def _add_item_ring(self, item: int) -> None:
        self._queue.extend(self.graph.item_edges(item))

    def recompute_statistics(self) -> None:
        """Rebuild cluster sizes and accumulators from the clustering."""
        k = self.number_of_clusters
        self.sizes = cluster_sizes(self.clustering, k)
        self.clusters = [self.metric.new_cluster() for _ in range(k)]
        for item, cluster in enumerate(self.clustering):
            if 0 <= cluster < k:
                self.metric.add_item(self.clusters[cluster], item)

    def compute_global_energy(self) -> float:
        return math.fsum(self.metric.energy(cluster) for cluster in self.clusters)

    def _clean_and_fill(self) -> int:
        k = self.number_of_clusters
        disconnected = clean_clustering(
            self.graph,
            self.clustering,
            k,
            self._item_type,
            self.fixed_clusters,
            self._is_cluster_cleanable,
        )
        fill_holes(self.graph, self.clustering, k, self.connexity_problem)
        self.sizes = cluster_sizes(self.clustering, k)
        return disconnected

    def minimize_energy(self) -> None:
        """Run minimisation loops until the clustering converges."""
        if len(self.clustering) != self.graph.number_of_items() or not self.clusters:
            raise RuntimeError("the clustering has not been initialised")
        k = self.number_of_clusters
        fill_holes(self.graph, self.clustering, k, self.connexity_problem)
        self._fill_queue()
        self.recompute_statistics()
        self._set_all_modified()
        convergences = 0
        early_stop = sum(size for size, frozen in zip(self.sizes, self._frozen) if not frozen)

        while True:
            modifications = self.process_one_loop()
            self._write_energy()
            logger.debug("loop %d: %d modifications", self.number_of_loops, modifications)
            self.number_of_loops += 1
            if self._relative_loops == 255:
                self._edges_last_loop = [0] * self.graph.number_of_edges()
                self._relative_loops = 1
            else:
                self._relative_loops += 1

            if not (
                modifications == 0
                or self.number_of_loops > self.max_number_of_loops
                or (modifications <= early_stop // 1000 and convergences <= 1)
            ):
                continue

            if self.unconstrained_initialization and convergences == 0:
                logger.info("unconstrained initialization done")
                self.metric.constrained = True
            elif modifications:
                logger.info("triggering early convergence")
            if convergences >= 1:
                self.connexity_constraint = True
            convergences += 1
            disconnected = self._clean_and_fill()
            logger.info("convergence: %d disconnected clusters", disconnected)
            if disconnected == 0 and modifications == 0:
                break
            if self.number_of_loops >= self.max_number_of_loops:
                logger.info("maximum number of loops reached")
                break
            if convergences >= self.max_number_of_convergences:
                logger.info("maximum number of convergences reached")
                break
            self.recompute_statistics()
            self._fill_queue()
            self._set_all_modified()

    def _assign_unassigned(self, item: int, cluster: int) -> None:
        self.metric.add_item(self.clusters[cluster], item)
        self.sizes[cluster] += 1
        self._add_item_ring(item)
        self.clustering[item] = cluster
        self._last_modification[cluster] = self.number_of_loops

    def _next_edge(self) -> Optional[tuple[int, int, int, int, int]]:
        """Pop edges until one joins two different clusters; None at loop end."""
        while True:
            edge = self._queue.popleft()
            if edge == _SENTINEL:
                return None
            first, second = self.graph.edge_items(edge)
            if self._edges_last_loop[edge] == self._relative_loops or second < 0:
                continue
            self._edges_last_loop[edge] = self._relative_loops
            v1, v2 = self.clustering[first], self.clustering[second]
            if v1 != v2:
                return edge, first, second, v1, v2

    def _skippable(self, v1: int, v2: int) -> bool:
        stale = self.number_of_loops - 1
        return (
            (self._last_modification[v1] < stale and self._last_modification[v2] < stale)
            or self._frozen[v1]
            or self._frozen[v2]
        )

    def process_one_loop(self) -> int:
        """Process the boundary edge queue once; return the number of moves."""
        if not self.minimize_using_energy:
            return self._process_one_loop_with_distances()
        k = self.number_of_clusters
        metric = self.metric
        modifications = 0
        while True:
            found = self._next_edge()
            if found is None:
                self._queue.append(_SENTINEL)
                return modifications
            edge, i1, i2, v1, v2 = found
            if v1 == k:
                self._assign_unassigned(i1, v2)
                modifications += 1
                continue
            if v2 == k:
                self._assign_unassigned(i2, v1)
                modifications += 1
                continue
            if self._skippable(v1, v2):
                self._queue.append(edge)
                continue

            c1, c2 = self.clusters[v1], self.clusters[v2]
            try1 = metric.energy(c1) + metric.energy(c2)
            if self.sizes[v1] == 1 or self.connexity_problem(i1, edge, v1, v2):
                try2 = _BLOCKED_SHRINK
            else:
                c21 = metric.removed(c1, i1)
                c22 = metric.added(c2, i1)
                try2 = metric.energy(c21) + metric.energy(c22)
            if self.sizes[v2] == 1 or self.connexity_problem(i2, edge, v2, v1):
                try3 = _BLOCKED_GROW
            else:
                c32 = metric.removed(c2, i2)
                c31 = metric.added(c1, i2)
                try3 = metric.energy(c31) + metric.energy(c32)

            if try1 <= try2 and try1 <= try3:
                self._queue.append(edge)
                continue
            if try2 < try1 and try2 < try3:
                self.clustering[i1] = v2
                self.sizes[v2] += 1
                self.sizes[v1] -= 1
                self.clusters[v1], self.clusters[v2] = c21, c22
                self._add_item_ring(i1)
            else:
                self.clustering[i2] = v1
                self.sizes[v1] += 1
                self.sizes[v2] -= 1
                self.clusters[v1], self.clusters[v2] = c31, c32
                self._add_item_ring(i2)
            modifications += 1
            self._last_modification[v1] = self.number_of_loops
            self._last_modification[v2] = self.number_of_loops

    def _process_one_loop_with_distances(self) -> int:
        k = self.number_of_clusters
        metric = self.metric
        modifications = 0
        while True:
            found = self._next_edge()
            if found is None:
                break
            edge, i1, i2, v1, v2 = found
            if v1 == k:
                self._assign_unassigned(i1, v2)
                modifications += 1
                continue
            if v2 == k:
                self._assign_unassigned(i2, v1)
                modifications += 1
                continue
            if self._skippable(v1, v2):
                self._queue.append(edge)
                continue

            c1, c2 = self.clusters[v1], self.clusters[v2]
            centroid1, centroid2 = metric.centroid(c1), metric.centroid(c2)
            moved = False
            if self.sizes[v1] != 1 and not self.connexity_problem(i1, edge, v1, v2):
                p = self.item_coordinates(i1)
                if _distance2(p, centroid1) > _distance2(p, centroid2):
                    moved = True
                    self.clustering[i1] = v2
                    self.sizes[v2] += 1
                    self.sizes[v1] -= 1
                    metric.add_item(c2, i1)
                    metric.remove_item(c1, i1)
                    self._add_item_ring(i1)
                    modifications += 1
                    self._last_modification[v1] = self.number_of_loops
                    self._last_modification[v2] = self.number_of_loops
            if self.sizes[v2] != 1 and not self.connexity_problem(i2, edge, v2, v1):
                p = self.item_coordinates(i2)
                if _distance2(p, centroid1) < _distance2(p, centroid2):
                    moved = True
                    self.clustering[i2] = v1
                    self.sizes[v2] -= 1
                    self.sizes[v1] += 1
                    metric.add_item(c1, i2)
                    metric.remove_item(c2, i2)
                    self._add_item_ring(i2)
                    modifications += 1
                    self._last_modification[v1] = self.number_of_loops
                    self._last_modification[v2] = self.number_of_loops
            if not moved:
                self._queue.append(edge)

        self._queue.append(_SENTINEL)
        return modifications