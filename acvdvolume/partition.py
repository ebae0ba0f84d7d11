"""Graph partition helpers used to initialise and repair a clustering.

A clustering is a mutable list with one cluster index per item. The value
``number_of_clusters`` marks an item that belongs to no cluster. The
functions that repair a clustering change the given list in place, the
way ``list.sort`` does, and return a count describing what they did.
"""

from __future__ import annotations

import logging
import math
import struct
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

_MT_N = 624
_MT_M = 397
_MASK32 = 0xFFFFFFFF


class MersenneTwister:
    """The 32-bit Mersenne Twister (MT19937) with its standard seeding."""

    def __init__(self, seed: int = 5489) -> None:
        state = [seed & _MASK32]
        for i in range(1, _MT_N):
            previous = state[-1]
            state.append((1812433253 * (previous ^ (previous >> 30)) + i) & _MASK32)
        self._state = state
        self._index = _MT_N

    def _twist(self) -> None:
        mt = self._state
        for i in range(_MT_N):
            y = (mt[i] & 0x80000000) | (mt[(i + 1) % _MT_N] & 0x7FFFFFFF)
            value = mt[(i + _MT_M) % _MT_N] ^ (y >> 1)
            if y & 1:
                value ^= 0x9908B0DF
            mt[i] = value
        self._index = 0

    def __call__(self) -> int:
        """Return the next 32-bit output."""
        if self._index >= _MT_N:
            self._twist()
        y = self._state[self._index]
        self._index += 1
        y ^= y >> 11
        y ^= (y << 7) & 0x9D2C5680
        y ^= (y << 15) & 0xEFC60000
        y ^= y >> 18
        return y & _MASK32


class _MinimalStandardRandom:
    """Park-Miller minimal standard generator, seeded the usual way."""

    _MODULUS = 2147483647
    _MULTIPLIER = 16807

    def __init__(self, seed: int) -> None:
        if seed < 1:
            seed += self._MODULUS - 1
        elif seed == self._MODULUS:
            seed = 1
        self._seed = seed
        for _ in range(3):
            self._next()

    def _next(self) -> None:
        self._seed = (self._seed * self._MULTIPLIER) % self._MODULUS

    def random(self, low: float = 0.0, high: float = 1.0) -> float:
        self._next()
        return low + (self._seed / self._MODULUS) * (high - low)


def _float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


@dataclass
class ClusteringGraph:
    """Items joined by edges.

    An edge whose second item is negative lies on the boundary and joins
    nothing; it still counts as an edge of its first item.
    """

    size: int
    edge_list: Sequence[tuple[int, int]] = ()
    _neighbours: list[list[int]] = field(init=False, repr=False)
    _edges_of: list[list[int]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError("number of items must not be negative")
        self.edge_list = [tuple(edge) for edge in self.edge_list]
        self._neighbours = [[] for _ in range(self.size)]
        self._edges_of = [[] for _ in range(self.size)]
        for index, (first, second) in enumerate(self.edge_list):
            if not 0 <= first < self.size or second >= self.size:
                raise ValueError(f"edge {index} ({first}, {second}) is out of range")
            self._edges_of[first].append(index)
            if second >= 0:
                self._edges_of[second].append(index)
                self._neighbours[first].append(second)
                self._neighbours[second].append(first)

    def number_of_items(self) -> int:
        return self.size

    def item_neighbours(self, item: int) -> list[int]:
        return list(self._neighbours[item])

    def number_of_edges(self) -> int:
        return len(self.edge_list)

    def edge_items(self, edge: int) -> tuple[int, int]:
        return self.edge_list[edge]

    def item_edges(self, item: int) -> list[int]:
        return list(self._edges_of[item])


def cluster_sizes(clustering: Sequence[int], number_of_clusters: int) -> list[int]:
    """Count the items of each cluster, ignoring unassigned items."""
    sizes = [0] * number_of_clusters
    for item, cluster in enumerate(clustering):
        if 0 <= cluster < number_of_clusters:
            sizes[cluster] += 1
        elif cluster != number_of_clusters:
            logger.warning("item %d belongs to cluster %d", item, cluster)
    for cluster, size in enumerate(sizes):
        if size == 0:
            logger.warning("cluster %d is empty", cluster)
    return sizes


def clean_clustering(
    graph: ClusteringGraph,
    clustering: list[int],
    number_of_clusters: int,
    item_type: Optional[Callable[[int], int]] = None,
    fixed_clusters: Optional[Sequence[int]] = None,
    is_cleanable: Optional[Callable[[int], bool]] = None,
) -> int:
    """Keep only the largest connected component of each cluster.

    Items of the smaller components become unassigned. Items whose type is
    0 do not count towards a component's size; a component holding the
    fixed item of its cluster always wins. Returns the number of clusters
    that were split into several components and cleaned.
    """
    if item_type is None:
        item_type = lambda item: 1  # noqa: E731
    if is_cleanable is None:
        is_cleanable = lambda cluster: True  # noqa: E731
    fixed = list(fixed_clusters) if fixed_clusters else []
    fixed_count = len(fixed) if fixed_clusters else -1

    count = graph.number_of_items()
    visited = [False] * count
    first_component: list[Optional[tuple[int, int]]] = [None] * number_of_clusters
    components: dict[int, list[tuple[int, int]]] = {}

    for start in range(count):
        label = clustering[start]
        if visited[start] or label == number_of_clusters:
            continue
        fixed_item = fixed[label] if label < fixed_count else -1
        size = 0
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if visited[current]:
                continue
            if item_type(current) != 0:
                size += 1_000_000_000 if current == fixed_item else 1
            visited[current] = True
            for neighbour in graph.item_neighbours(current):
                if not visited[neighbour] and clustering[neighbour] == label:
                    queue.append(neighbour)

        if not 0 <= label < number_of_clusters:
            continue
        if first_component[label] is None:
            first_component[label] = (start, size)
        else:
            components.setdefault(label, [first_component[label]]).append((start, size))

    visited = [False] * count
    cleaned = 0
    for label in sorted(components):
        if not is_cleanable(label):
            continue
        cleaned += 1
        parts = components[label]
        keep, best = 0, 0
        for index, (_, size) in enumerate(parts):
            if size > best:
                keep, best = index, size
        for index, (seed, _) in enumerate(parts):
            if index == keep:
                continue
            seed_label = clustering[seed]
            queue = deque([seed])
            while queue:
                current = queue.popleft()
                if visited[current]:
                    continue
                visited[current] = True
                clustering[current] = number_of_clusters
                for neighbour in graph.item_neighbours(current):
                    if clustering[neighbour] == seed_label:
                        queue.append(neighbour)
    return cleaned


def fill_holes(
    graph: ClusteringGraph,
    clustering: list[int],
    number_of_clusters: int,
    connexity_problem: Optional[Callable[[int, int, int, int], bool]] = None,
) -> int:
    """Grow clusters greedily into unassigned items.

    ``connexity_problem(item, edge, cluster, other_cluster)`` may forbid
    moving ``item`` into ``other_cluster``. Returns the number of items
    still outside every cluster.
    """
    if connexity_problem is None:
        connexity_problem = lambda item, edge, cluster, other: False  # noqa: E731

    def valid(cluster: int) -> bool:
        return 0 <= cluster < number_of_clusters

    initial_problems = sum(1 for cluster in clustering if not valid(cluster))

    queue: deque[int] = deque()
    for edge in range(graph.number_of_edges()):
        first, second = graph.edge_items(edge)
        if first < 0 or second < 0:
            continue
        if valid(clustering[first]) != valid(clustering[second]):
            queue.append(edge)

    while queue:
        edge = queue.popleft()
        first, second = graph.edge_items(edge)
        if first < 0 or second < 0:
            continue
        cluster1, cluster2 = clustering[first], clustering[second]
        if cluster1 == number_of_clusters:
            first, second = second, first
            cluster1, cluster2 = cluster2, number_of_clusters
        if (
            cluster1 != number_of_clusters
            and cluster2 == number_of_clusters
            and not connexity_problem(second, edge, cluster2, cluster1)
        ):
            clustering[second] = cluster1
            queue.extend(graph.item_edges(second))

    problems = sum(1 for cluster in clustering if not valid(cluster))
    if problems:
        logger.warning(
            "the number of wrongly assigned items was reduced from %d to %d",
            initial_problems,
            problems,
        )
    return problems


def random_initial_sampling(
    number_of_items: int,
    number_of_clusters: int,
    items: Optional[Sequence[int]] = None,
    by_index: bool = False,
) -> list[int]:
    """Give each cluster one item picked at random, the same on every call.

    With ``items`` the picks are taken from that list only. With
    ``by_index`` cluster ``i`` gets the ``i``-th candidate. All other items
    are left unassigned.
    """
    candidates = list(items) if items else None
    available = len(set(candidates)) if candidates else number_of_items
    if number_of_clusters > available:
        raise ValueError(
            f"cannot seed {number_of_clusters} clusters from {available} items"
        )
    clustering = [number_of_clusters] * number_of_items
    generator = _MinimalStandardRandom(5000)
    generator.random()
    size = _float32(len(candidates) - 1 if candidates else number_of_items)

    for cluster in range(number_of_clusters):
        while True:
            test = _float32(generator.random(0.0, size))
            number = int(math.floor(test + 0.5))
            if by_index:
                number = cluster
            if candidates:
                if number >= len(candidates):
                    continue
                number = candidates[number]
            if number >= number_of_items:
                continue
            if clustering[number] == number_of_clusters:
                clustering[number] = cluster
                break
    return clustering


def weighted_initial_sampling(
    graph: ClusteringGraph,
    weights: Sequence[float],
    number_of_clusters: int,
    fixed_clusters: Optional[Sequence[int]] = None,
) -> list[int]:
    """Grow regions of roughly equal weight from shuffled seed items.

    Cluster ``i`` of ``fixed_clusters`` starts at item ``fixed_clusters[i]``.
    Regions that could not be grown get one item taken from a larger
    region. Items reached by no region stay unassigned.
    """
    count = graph.number_of_items()
    unassigned = number_of_clusters
    sampling = [unassigned] * count
    fixed = list(fixed_clusters) if fixed_clusters else []
    for label, item in enumerate(fixed):
        sampling[item] = label
    offset = len(fixed)

    rng = MersenneTwister(0)

    def shuffled() -> list[int]:
        order = list(range(count))
        for i in range(count - 1, 0, -1):
            j = rng() % count
            order[i], order[j] = order[j], order[i]
        return order

    order = shuffled()
    target = sum(weights[:count]) / number_of_clusters
    remaining_items = count
    remaining_regions = number_of_clusters - offset
    position = 0

    while remaining_items > 0 and remaining_regions > 0:
        while position < count and sampling[order[position]] != unassigned:
            position += 1
        if position >= count:
            break
        queue = deque([order[position]])
        accumulated = 0.0
        remaining_regions -= 1
        while queue:
            item = queue.popleft()
            if sampling[item] != unassigned:
                continue
            sampling[item] = remaining_regions + offset
            accumulated += weights[item]
            remaining_items -= 1
            queue.extend(graph.item_neighbours(item))
            if accumulated > target:
                break

    if remaining_regions == 0:
        return sampling

    sizes = cluster_sizes(sampling, number_of_clusters)
    order = shuffled()
    logger.info("number of remaining regions: %d", remaining_regions)
    position = 0
    while remaining_regions:
        while True:
            if position >= count:
                raise ValueError("not enough items to seed every cluster")
            item = order[position]
            position += 1
            label = sampling[item]
            if label == unassigned:
                break
            if sizes[label] == 1:
                continue
            sampling[item] = remaining_regions + offset
            sizes[label] -= 1
            if remaining_regions + offset < number_of_clusters:
                sizes[remaining_regions + offset] += 1
            break
        remaining_regions -= 1
        sampling[item] = remaining_regions + offset
    return sampling