import pytest

from acvdvolume.partition import (
    ClusteringGraph,
    MersenneTwister,
    clean_clustering,
    cluster_sizes,
    fill_holes,
    random_initial_sampling,
    weighted_initial_sampling,
)


def path_graph(n, boundary=False):
    edges = [(i, i + 1) for i in range(n - 1)]
    if boundary:
        edges.append((0, -1))
    return ClusteringGraph(n, edges)


def test_mersenne_twister_seed_zero_first_output():
    assert MersenneTwister(0)() == 2357136044


def test_mersenne_twister_default_seed_first_output():
    assert MersenneTwister()() == 3499211612


def test_mersenne_twister_ten_thousandth_output():
    rng = MersenneTwister(5489)
    value = None
    for _ in range(10000):
        value = rng()
    assert value == 4123659995


def test_mersenne_twister_is_deterministic():
    a, b = MersenneTwister(42), MersenneTwister(42)
    assert [a() for _ in range(700)] == [b() for _ in range(700)]


def test_graph_neighbours_and_boundary_edges():
    graph = path_graph(3, boundary=True)
    assert graph.number_of_items() == 3
    assert graph.number_of_edges() == 3
    assert graph.edge_items(2) == (0, -1)
    assert graph.item_neighbours(0) == [1]
    assert sorted(graph.item_neighbours(1)) == [0, 2]
    assert graph.item_edges(0) == [0, 2]


def test_graph_rejects_bad_edge():
    with pytest.raises(ValueError):
        ClusteringGraph(2, [(0, 5)])


def test_cluster_sizes_ignores_unassigned():
    assert cluster_sizes([0, 1, 1, 2, 2, 2], 2) == [1, 2]


def test_clean_clustering_keeps_largest_component():
    graph = path_graph(5)
    clustering = [0, 0, 1, 0, 1]
    cleaned = clean_clustering(graph, clustering, 2)
    assert cleaned == 2
    assert clustering == [0, 0, 1, 2, 2]


def test_clean_clustering_respects_cleanable():
    graph = path_graph(5)
    clustering = [0, 0, 1, 0, 1]
    cleaned = clean_clustering(graph, clustering, 2, is_cleanable=lambda c: c != 1)
    assert cleaned == 1
    assert clustering == [0, 0, 1, 2, 1]


def test_clean_clustering_fixed_item_wins():
    graph = path_graph(5)
    clustering = [0, 0, 1, 0, 1]
    clean_clustering(graph, clustering, 2, fixed_clusters=[3])
    assert clustering[3] == 0
    assert clustering[0] == 2 and clustering[1] == 2


def test_clean_clustering_connected_is_untouched():
    graph = path_graph(4)
    clustering = [0, 0, 1, 1]
    assert clean_clustering(graph, clustering, 2) == 0
    assert clustering == [0, 0, 1, 1]


def test_fill_holes_assigns_everything():
    graph = path_graph(5)
    clustering = [0, 2, 2, 2, 1]
    assert fill_holes(graph, clustering, 2) == 0
    assert all(0 <= c < 2 for c in clustering)
    assert clustering[0] == 0 and clustering[4] == 1


def test_fill_holes_blocked_by_connexity():
    graph = path_graph(5)
    clustering = [0, 2, 2, 2, 1]
    remaining = fill_holes(graph, clustering, 2, connexity_problem=lambda *args: True)
    assert remaining == 3
    assert clustering == [0, 2, 2, 2, 1]


def test_random_initial_sampling_one_item_per_cluster():
    clustering = random_initial_sampling(50, 7)
    assert len(clustering) == 50
    for cluster in range(7):
        assert clustering.count(cluster) == 1
    assert clustering.count(7) == 43
    assert clustering == random_initial_sampling(50, 7)


def test_random_initial_sampling_by_index():
    clustering = random_initial_sampling(6, 3, by_index=True)
    assert clustering[:3] == [0, 1, 2]
    assert clustering[3:] == [3, 3, 3]


def test_random_initial_sampling_from_list():
    items = [10, 11, 12, 13, 14]
    clustering = random_initial_sampling(20, 3, items=items)
    picked = [i for i, c in enumerate(clustering) if c != 3]
    assert len(picked) == 3
    assert set(picked) <= set(items)


def test_random_initial_sampling_too_many_clusters():
    with pytest.raises(ValueError):
        random_initial_sampling(3, 5)


def test_weighted_initial_sampling_covers_all_clusters():
    graph = path_graph(30)
    sampling = weighted_initial_sampling(graph, [1.0] * 30, 4)
    assert set(range(4)) <= set(sampling)
    assert all(0 <= c <= 4 for c in sampling)
    assert sampling == weighted_initial_sampling(graph, [1.0] * 30, 4)


def test_weighted_initial_sampling_fixed_clusters():
    graph = path_graph(20)
    sampling = weighted_initial_sampling(graph, [1.0] * 20, 3, fixed_clusters=[5])
    assert sampling[5] == 0
    assert set(range(3)) <= set(sampling)


def test_weighted_initial_sampling_steals_for_missing_regions():
    graph = ClusteringGraph(4, [(0, 1), (1, 2), (2, 3)])
    sampling = weighted_initial_sampling(graph, [0.0, 0.0, 0.0, 10.0], 4)
    assert sorted(sampling) == [0, 1, 2, 3]