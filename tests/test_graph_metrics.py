"""
Tests for graph statistics on small graphs with known answers.
"""

import bct
import numpy as np
import pytest

from conngraph.config import ConfigurationError
from conngraph.connectome.functional_connectivity import compute_functional_connectivity
from conngraph.connectome.graph_metrics import (
    GLOBAL_METRICS,
    NODAL_METRICS,
    NetworkXMetrics,
    characteristic_path,
    compute_graph_stats,
    graph_stats_from_record,
    normalize_weights,
)
from conngraph.connectome.store import GraphRecord
from conngraph.connectome.thresholding import threshold_graph

from conftest import make_timeseries


def star(n_leaves=4):
    adj = np.zeros((n_leaves + 1, n_leaves + 1))
    adj[0, 1:] = adj[1:, 0] = 1
    return adj


def test_path_graph_global_metrics(path_graph):
    stats = compute_graph_stats(path_graph, graph_type='bin')
    g = stats.global_metrics

    assert g['num_nodes'] == 4
    assert g['num_edges'] == 3
    assert g['density'] == pytest.approx(0.5)
    assert g['transitivity'] == 0.0
    assert g['charpathlen'] == pytest.approx(10 / 6)
    assert g['global_efficiency'] == pytest.approx((1 + 1 / 2 + 1 / 3 + 1 + 1 / 2 + 1) / 6)
    assert g['radius'] == 2
    assert g['diameter'] == 3


def test_path_graph_nodal_metrics(path_graph):
    stats = compute_graph_stats(path_graph, graph_type='bin')

    np.testing.assert_array_equal(stats.nodal['degree'], [1, 2, 2, 1])
    np.testing.assert_array_equal(stats.nodal['eccentricity'], [3, 2, 2, 3])
    np.testing.assert_array_equal(stats.nodal['clustering_coeff'], np.zeros(4))
    np.testing.assert_allclose(stats.nodal['betweenness_centrality'], [0, 2 / 3, 2 / 3, 0])
    np.testing.assert_array_equal(stats.nodal['kcoreness'], np.ones(4))
    np.testing.assert_array_equal(stats.nodal['kcore_size'], np.full(4, 4))


def test_isolated_node_conventions(triangle_plus_isolated):
    stats = compute_graph_stats(triangle_plus_isolated, graph_type='bin')
    g = stats.global_metrics

    np.testing.assert_array_equal(stats.nodal['clustering_coeff'], [1, 1, 1, 0])
    np.testing.assert_array_equal(stats.nodal['local_efficiency'], [1, 1, 1, 0])
    assert np.isnan(stats.nodal['eccentricity'][3])
    np.testing.assert_array_equal(stats.nodal['eccentricity'][:3], [1, 1, 1])
    # unreachable pairs contribute 0 to efficiency but are excluded from path length
    assert g['global_efficiency'] == pytest.approx(0.5)
    assert g['charpathlen'] == pytest.approx(1.0)
    assert g['efficiency_excl_inf'] == pytest.approx(1.0)
    assert g['radius'] == 1
    assert g['diameter'] == 1
    assert g['transitivity'] == pytest.approx(1.0)
    np.testing.assert_array_equal(stats.nodal['kcoreness'], [2, 2, 2, 0])
    np.testing.assert_array_equal(stats.nodal['kcore_size'], [3, 3, 3, 0])
    np.testing.assert_array_equal(stats.communities, [1, 1, 1, 2])


def test_edgeless_graph_does_not_fail():
    stats = compute_graph_stats(np.zeros((4, 4)), graph_type='wei')
    g = stats.global_metrics

    assert g['num_edges'] == 0
    assert g['global_efficiency'] == 0
    assert np.isnan(g['charpathlen'])
    assert np.isnan(g['radius'])
    assert np.isnan(g['assortativity'])
    assert g['max_modularity'] == 0
    assert g['n_communities'] == 4
    np.testing.assert_array_equal(stats.communities, [1, 2, 3, 4])
    np.testing.assert_array_equal(stats.nodal['vulnerability'], np.zeros(4))
    np.testing.assert_array_equal(stats.nodal['participation_coeff'], np.zeros(4))
    assert np.all(np.isnan(stats.nodal['eccentricity']))


def test_star_graph_centralities():
    stats = compute_graph_stats(star(), graph_type='bin')

    np.testing.assert_allclose(stats.nodal['betweenness_centrality'], [1, 0, 0, 0, 0])
    assert np.argmax(stats.nodal['eigenvector_centrality']) == 0
    assert np.linalg.norm(stats.nodal['eigenvector_centrality']) == pytest.approx(1.0)
    assert np.argmax(stats.nodal['pagerank_centrality']) == 0
    assert stats.nodal['pagerank_centrality'].sum() == pytest.approx(1.0)
    assert stats.global_metrics['assortativity'] == pytest.approx(-1.0)


def test_star_center_is_most_vulnerable():
    stats = compute_graph_stats(star(), graph_type='bin')

    vulnerability = stats.nodal['vulnerability']
    assert np.argmax(vulnerability) == 0
    # removing the hub leaves only isolated leaves
    assert vulnerability[0] == pytest.approx(1.0)


def test_subgraph_centrality_of_single_edge():
    backend = NetworkXMetrics()

    centrality = backend.subgraph_centrality(np.array([[0.0, 1.0], [1.0, 0.0]]))

    np.testing.assert_allclose(centrality, [np.cosh(1), np.cosh(1)])


def test_two_cliques_split_into_two_communities(two_cliques):
    stats = compute_graph_stats(two_cliques, graph_type='bin', seed=0)

    np.testing.assert_array_equal(stats.communities, [1, 1, 1, 1, 2, 2, 2, 2])
    assert stats.global_metrics['n_communities'] == 2
    assert stats.global_metrics['max_modularity'] > 0.3
    # bridge nodes have 3 of 4 edges inside their module
    assert stats.nodal['participation_coeff'][3] == pytest.approx(1 - (9 + 1) / 16)
    assert stats.nodal['participation_coeff'][0] == 0


def test_participation_coefficient_even_split():
    mat = np.array([
        [0, 1, 1],
        [1, 0, 0],
        [1, 0, 0],
    ], dtype=float)

    participation = NetworkXMetrics().participation_coefficient(mat, np.array([1, 1, 2]))

    assert participation[0] == pytest.approx(0.5)


def test_module_zscore_zero_for_singleton_modules():
    mat = np.ones((3, 3)) - np.eye(3)

    z = NetworkXMetrics().module_degree_zscore(mat, np.array([1, 2, 3]))

    np.testing.assert_array_equal(z, np.zeros(3))


def test_weighted_clustering_matches_binary_for_uniform_weights(triangle_plus_isolated):
    weighted = compute_graph_stats(triangle_plus_isolated * 0.5, graph_type='wei', normalize=True)
    binary = compute_graph_stats(triangle_plus_isolated, graph_type='bin')

    np.testing.assert_allclose(weighted.nodal['clustering_coeff'], binary.nodal['clustering_coeff'])
    np.testing.assert_allclose(weighted.nodal['local_efficiency'], binary.nodal['local_efficiency'])
    assert weighted.global_metrics['transitivity'] == pytest.approx(1.0)


def test_weighted_paths_use_inverse_weights():
    adj = np.zeros((3, 3))
    adj[0, 1] = adj[1, 0] = 0.5
    adj[1, 2] = adj[2, 1] = 0.25

    distances = NetworkXMetrics().distance_matrix(adj, weighted=True)

    assert distances[0, 2] == pytest.approx(2 + 4)
    paths = characteristic_path(distances)
    assert paths['diameter'] == pytest.approx(6)


def test_weighted_record_has_strength_and_normalized_flag(two_cliques):
    adj = two_cliques * 0.4

    weighted = compute_graph_stats(adj, graph_type='wei', normalize=False)
    binary = compute_graph_stats(adj, graph_type='bin')

    np.testing.assert_allclose(weighted.nodal['strength'], adj.sum(axis=1))
    assert weighted.global_metrics['normalized'] == 0.0
    assert 'strength' not in binary.nodal
    assert 'normalized' not in binary.global_metrics
    assert set(NODAL_METRICS) == set(weighted.nodal)
    assert set(GLOBAL_METRICS) <= set(weighted.global_metrics)


def test_negative_weights_use_magnitude():
    adj = np.array([
        [0, -0.5, 0.5],
        [-0.5, 0, 0],
        [0.5, 0, 0],
    ])

    stats = compute_graph_stats(adj, graph_type='wei', normalize=False)

    np.testing.assert_allclose(stats.nodal['strength'], [1.0, 0.5, 0.5])


def test_results_are_deterministic(two_cliques):
    rng = np.random.default_rng(0)
    adj = two_cliques * rng.uniform(0.2, 1.0, size=two_cliques.shape)
    adj = np.triu(adj, k=1) + np.triu(adj, k=1).T

    first = compute_graph_stats(adj, graph_type='wei', seed=3)
    second = compute_graph_stats(adj, graph_type='wei', seed=3)

    for name in first.nodal:
        np.testing.assert_array_equal(first.nodal[name], second.nodal[name])
    assert first.global_metrics == second.global_metrics


def test_backend_can_be_swapped(path_graph):
    class ConstantDegree(NetworkXMetrics):
        def degree(self, mat):
            return np.full(mat.shape[0], 7.0)

    stats = compute_graph_stats(path_graph, graph_type='bin', backend=ConstantDegree())

    np.testing.assert_array_equal(stats.nodal['degree'], np.full(4, 7.0))


def test_stats_from_record_reads_graph_type(path_graph):
    record = GraphRecord(
        adj=path_graph * 0.3,
        roi_names=['a', 'b', 'c', 'd'],
        notes={'graph_type': 'bin', 'subject': 'sub-01'},
    )

    stats = graph_stats_from_record(record)

    assert stats.roi_names == ['a', 'b', 'c', 'd']
    assert stats.notes['subject'] == 'sub-01'
    assert stats.notes['graph_type'] == 'bin'
    np.testing.assert_array_equal(stats.nodal['degree'], [1, 2, 2, 1])


def test_default_roi_names():
    stats = compute_graph_stats(np.zeros((3, 3)), graph_type='bin')

    assert stats.roi_names == ['Node_000', 'Node_001', 'Node_002']


def test_unknown_graph_type(path_graph):
    with pytest.raises(ConfigurationError):
        compute_graph_stats(path_graph, graph_type='directed')


@pytest.fixture
def fisher_graph():
    """Thresholded 12-ROI Fisher graph"""
    conn = compute_functional_connectivity(make_timeseries(120, 12, seed=5), conn_type='fisher')
    return threshold_graph(conn.conn_mat, 'proportional', 0.4)


def test_weighted_measures_follow_bct(fisher_graph):
    seg = normalize_weights(fisher_graph)

    stats = compute_graph_stats(fisher_graph, graph_type='wei', normalize=True, seed=0)

    np.testing.assert_allclose(stats.nodal['clustering_coeff'], bct.clustering_coef_wu(seg))
    np.testing.assert_allclose(stats.nodal['local_efficiency'], bct.efficiency_wei(seg, local=True))
    assert stats.global_metrics['transitivity'] == pytest.approx(bct.transitivity_wu(seg))
    assert stats.global_metrics['assortativity'] == pytest.approx(
        bct.assortativity_wei(fisher_graph, flag=0)
    )
    np.testing.assert_allclose(
        stats.nodal['participation_coeff'],
        bct.participation_coef(fisher_graph, stats.communities),
    )


def test_binary_local_efficiency_follows_bct(fisher_graph):
    binary = (fisher_graph != 0).astype(float)

    stats = compute_graph_stats(binary, graph_type='bin')

    np.testing.assert_allclose(stats.nodal['local_efficiency'], bct.efficiency_bin(binary, local=True))


def test_module_zscore_uses_sample_std(fisher_graph):
    labels = np.array([1] * 6 + [2] * 6)

    z = NetworkXMetrics().module_degree_zscore(fisher_graph, labels)

    for module in (1, 2):
        idx = np.flatnonzero(labels == module)
        k_intra = fisher_graph[np.ix_(idx, idx)].sum(axis=1)
        expected = (k_intra - k_intra.mean()) / np.std(k_intra, ddof=1)
        np.testing.assert_allclose(z[idx], expected)
