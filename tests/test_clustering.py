from collections import deque

import pytest

from acvdvolume.clustering import ClusterMetric, SamplingType, UniformClustering
from acvdvolume.partition import ClusteringGraph


def line_metric(n):
    graph = ClusteringGraph(n, [(i, i + 1) for i in range(n - 1)])
    return ClusterMetric([(float(i), 0.0, 0.0) for i in range(n)], graph)


def grid_metric(w, h):
    edges = []
    for y in range(h):
        for x in range(w):
            i = y * w + x
            if x + 1 < w:
                edges.append((i, i + 1))
            if y + 1 < h:
                edges.append((i, i + w))
    graph = ClusteringGraph(w * h, edges)
    positions = [(float(x), float(y), 0.0) for y in range(h) for x in range(w)]
    return ClusterMetric(positions, graph)


def is_connected(graph, clustering, cluster):
    members = [i for i, c in enumerate(clustering) if c == cluster]
    if not members:
        return False
    seen = {members[0]}
    queue = deque([members[0]])
    while queue:
        cur = queue.popleft()
        for n in graph.item_neighbours(cur):
            if n not in seen and clustering[n] == cluster:
                seen.add(n)
                queue.append(n)
    return len(seen) == len(members)


def test_line_two_clusters_balanced_and_connected():
    metric = line_metric(10)
    uc = UniformClustering(metric)
    uc.set_number_of_clusters(2)
    result = uc.process()
    assert result == uc.clustering
    assert all(c in (0, 1) for c in result)
    assert abs(result.count(0) - result.count(1)) <= 1
    assert is_connected(metric.graph, result, 0)
    assert is_connected(metric.graph, result, 1)


def test_grid_clustering_valid_and_deterministic():
    first = UniformClustering(grid_metric(6, 6))
    first.set_number_of_clusters(4)
    a = first.process()
    second = UniformClustering(grid_metric(6, 6))
    second.set_number_of_clusters(4)
    b = second.process()
    assert a == b
    assert sorted(set(a)) == [0, 1, 2, 3]
    for cluster in range(4):
        assert is_connected(first.graph, a, cluster)
        assert first.cluster_size(cluster) == a.count(cluster)


def test_energy_decreases_from_bad_initial_clustering():
    metric = line_metric(10)
    initial = [0] + [1] * 9
    c0 = metric.new_cluster()
    metric.add_item(c0, 0)
    c1 = metric.new_cluster()
    for i in range(1, 10):
        metric.add_item(c1, i)
    initial_energy = metric.energy(c0) + metric.energy(c1)

    uc = UniformClustering(metric)
    uc.set_number_of_clusters(2)
    uc.set_initial_clustering(initial)
    result = uc.process()
    uc.recompute_statistics()
    assert uc.compute_global_energy() < initial_energy
    assert abs(result.count(0) - result.count(1)) <= 1


def test_distance_minimisation_gives_valid_clustering():
    metric = grid_metric(5, 4)
    uc = UniformClustering(metric)
    uc.minimize_using_energy = False
    uc.set_number_of_clusters(3)
    result = uc.process()
    assert sorted(set(result)) == [0, 1, 2]
    assert sum(uc.cluster_size(c) for c in range(3)) == 20


def test_random_sampling_works():
    metric = line_metric(12)
    uc = UniformClustering(metric)
    uc.initial_sampling_type = SamplingType.RANDOM
    uc.set_number_of_clusters(3)
    result = uc.process()
    assert sorted(set(result)) == [0, 1, 2]
    for cluster in range(3):
        assert is_connected(metric.graph, result, cluster)


def test_zero_clusters_raises():
    uc = UniformClustering(line_metric(5))
    with pytest.raises(ValueError):
        uc.process()


def test_negative_clusters_raises():
    uc = UniformClustering(line_metric(5))
    with pytest.raises(ValueError):
        uc.set_number_of_clusters(-1)


def test_initial_clustering_wrong_length_raises():
    uc = UniformClustering(line_metric(5))
    with pytest.raises(ValueError):
        uc.set_initial_clustering([0, 1])


def test_too_many_random_clusters_raises():
    uc = UniformClustering(line_metric(3))
    uc.initial_sampling_type = SamplingType.RANDOM
    uc.set_number_of_clusters(5)
    with pytest.raises(ValueError):
        uc.process()


def test_minimize_without_init_raises():
    uc = UniformClustering(line_metric(4))
    uc.set_number_of_clusters(2)
    with pytest.raises(RuntimeError):
        uc.minimize_energy()


def test_connexity_problem_detects_split():
    metric = line_metric(10)
    uc = UniformClustering(metric)
    uc.set_number_of_clusters(2)
    result = uc.process()
    uc.connexity_constraint = True
    first = result[0]
    members = [i for i, c in enumerate(result) if c == first]
    assert len(members) >= 3
    assert uc.connexity_problem(members[1], 0, first, 1 - first) is True
    assert uc.connexity_problem(members[-1], 0, first, 1 - first) is False
    assert uc.connexity_problem(members[1], 0, 2, first) is False


def test_connexity_problem_off_without_constraint():
    metric = line_metric(6)
    uc = UniformClustering(metric)
    uc.set_number_of_clusters(2)
    result = uc.process()
    uc.connexity_constraint = False
    members = [i for i, c in enumerate(result) if c == result[0]]
    assert uc.connexity_problem(members[1], 0, result[0], 1 - result[0]) is False


def test_energy_log_written(tmp_path):
    uc = UniformClustering(line_metric(8))
    uc.set_number_of_clusters(2)
    uc.save_energy = True
    uc.output_directory = str(tmp_path)
    uc.process()
    lines = (tmp_path / "energy.txt").read_text().splitlines()
    assert lines[-1].startswith("Final Energy :")
    assert float(lines[-1][len("Final Energy :"):]) == pytest.approx(uc.compute_global_energy())


def test_item_coordinates_from_metric():
    uc = UniformClustering(line_metric(4))
    assert uc.item_coordinates(2) == (2.0, 0.0, 0.0)


def test_metric_rejects_bad_weights():
    graph = ClusteringGraph(2, [(0, 1)])
    with pytest.raises(ValueError):
        ClusterMetric([(0, 0, 0), (1, 0, 0)], graph, weights=[1.0])
    with pytest.raises(ValueError):
        ClusterMetric([(0, 0, 0), (1, 0, 0)], graph, weights=[1.0, 0.0])


def test_metric_rejects_mismatched_graph():
    graph = ClusteringGraph(3, [(0, 1)])
    with pytest.raises(ValueError):
        ClusterMetric([(0, 0, 0), (1, 0, 0)], graph)


def test_metric_add_remove_round_trip():
    metric = line_metric(4)
    cluster = metric.new_cluster()
    metric.add_item(cluster, 1)
    metric.add_item(cluster, 3)
    before = metric.energy(cluster)
    metric.add_item(cluster, 2)
    metric.remove_item(cluster, 2)
    assert metric.energy(cluster) == pytest.approx(before)
    assert metric.centroid(cluster) == pytest.approx((2.0, 0.0, 0.0))


def test_single_item_cluster_has_zero_energy():
    metric = line_metric(3)
    cluster = metric.new_cluster()
    metric.add_item(cluster, 2)
    assert metric.energy(cluster) == pytest.approx(0.0)
    assert metric.energy(metric.new_cluster()) == 0.0