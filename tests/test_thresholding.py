"""
Tests for graph thresholding.
"""

import numpy as np
import pytest

from conngraph.config import ConfigurationError, validate_thresh_weights
from conngraph.connectome.functional_connectivity import compute_functional_connectivity
from conngraph.connectome.thresholding import (
    autofix,
    n_edges_to_keep,
    threshold_connectivity,
    threshold_graph,
)

from conftest import make_timeseries, symmetric_matrix


def _upper_edges(adj):
    return int(np.count_nonzero(np.triu(adj, k=1)))


def test_absolute_threshold_keeps_only_strong_positive_edge():
    conn = np.array([
        [1.0, 0.8, -0.3],
        [0.8, 1.0, 0.1],
        [-0.3, 0.1, 1.0],
    ])

    adj = threshold_graph(conn, 'absolute', 0.5, binarize=False, neg_discard=True)

    expected = np.array([
        [0.0, 0.8, 0.0],
        [0.8, 0.0, 0.0],
        [0.0, 0.0, 0.0],
    ])
    np.testing.assert_array_equal(adj, expected)


def test_absolute_threshold_compares_magnitudes():
    conn = symmetric_matrix(8, seed=1)

    adj = threshold_graph(conn, 'absolute', 0.3, neg_discard=False)

    off_diag = ~np.eye(8, dtype=bool)
    kept = off_diag & (adj != 0)
    dropped = off_diag & (adj == 0)
    assert np.all(np.abs(conn[kept]) >= 0.3)
    assert np.all(np.abs(conn[dropped]) < 0.3)
    np.testing.assert_array_equal(adj[kept], conn[kept])


@pytest.mark.parametrize('weight', [0.1, 0.25, 0.5, 1.0])
def test_proportional_threshold_edge_count(weight):
    conn = symmetric_matrix(10, seed=2)

    adj = threshold_graph(conn, 'proportional', weight, neg_discard=False)

    assert _upper_edges(adj) == int(np.floor(weight * 45 + 0.5))


@pytest.mark.parametrize('conn_type', ['corr', 'fisher', 'partcorr'])
@pytest.mark.parametrize('weight', [0.1, 0.25, 0.33])
def test_proportional_edge_count_on_computed_connectivity(conn_type, weight):
    for seed in range(10):
        timeseries = np.random.default_rng(seed).standard_normal((150, 37))
        conn = compute_functional_connectivity(timeseries, conn_type=conn_type).conn_mat

        adj = threshold_graph(conn, 'proportional', weight, neg_discard=False)

        assert _upper_edges(adj) == n_edges_to_keep(37, weight, symmetric=True)


def test_nearly_symmetric_matrix_ranked_as_symmetric():
    conn = symmetric_matrix(9, seed=4)
    conn[np.tril_indices(9, k=-1)] += 1e-15

    adj = threshold_graph(conn, 'proportional', 0.25, neg_discard=False)

    assert _upper_edges(adj) == n_edges_to_keep(9, 0.25, symmetric=True)


def test_proportional_threshold_keeps_strongest():
    conn = symmetric_matrix(10, seed=4)

    adj = threshold_graph(conn, 'proportional', 0.3, neg_discard=False)

    upper = np.triu(np.ones((10, 10), dtype=bool), k=1)
    kept = np.abs(conn[upper & (adj != 0)])
    dropped = np.abs(conn[upper & (adj == 0)])
    assert kept.min() > dropped.max()


def test_proportional_ties_follow_row_major_order():
    conn = np.full((4, 4), 0.5)
    np.fill_diagonal(conn, 1.0)

    adj = threshold_graph(conn, 'proportional', 0.5, binarize=True)

    expected = np.zeros((4, 4))
    for j in (1, 2, 3):
        expected[0, j] = expected[j, 0] = 1.0
    np.testing.assert_array_equal(adj, expected)


def test_n_edges_to_keep_rounds_half_up():
    assert n_edges_to_keep(10, 0.01, symmetric=True) == 0
    assert n_edges_to_keep(10, 0.1, symmetric=True) == 5
    assert n_edges_to_keep(4, 0.25, symmetric=True) == 2
    assert n_edges_to_keep(4, 0.25, symmetric=False) == 3


def test_binarize_matches_weighted_support():
    conn = symmetric_matrix(9, seed=5)

    weighted = threshold_graph(conn, 'proportional', 0.4, binarize=False)
    binary = threshold_graph(conn, 'proportional', 0.4, binarize=True)

    assert set(np.unique(binary)) <= {0.0, 1.0}
    np.testing.assert_array_equal(binary != 0, weighted != 0)


@pytest.mark.parametrize('thresh_type,weight', [('absolute', 0.2), ('proportional', 0.6)])
def test_negative_discard(thresh_type, weight):
    conn = symmetric_matrix(9, seed=6)

    adj = threshold_graph(conn, thresh_type, weight, neg_discard=True)

    assert np.all(adj >= 0)


def test_negative_weights_kept_when_requested():
    conn = symmetric_matrix(9, seed=6)

    adj = threshold_graph(conn, 'absolute', 0.2, neg_discard=False)

    assert np.any(adj < 0)


def test_output_is_symmetric_with_zero_diagonal():
    conn = symmetric_matrix(12, seed=7)

    for thresh_type, weight in [('absolute', 0.5), ('proportional', 0.2)]:
        adj = threshold_graph(conn, thresh_type, weight)
        np.testing.assert_array_equal(adj, adj.T)
        np.testing.assert_array_equal(np.diag(adj), np.zeros(12))


def test_autofix_cleans_matrix():
    matrix = np.array([
        [5.0, 0.4, np.nan],
        [0.3, 2.0, 1e-12],
        [np.inf, 0.2, 1.0],
    ])

    fixed = autofix(matrix)

    expected = np.array([
        [0.0, 0.4, 0.0],
        [0.4, 0.0, 0.0],
        [0.0, 0.0, 0.0],
    ])
    np.testing.assert_array_equal(fixed, expected)


def test_weights_are_applied_independently():
    record = compute_functional_connectivity(make_timeseries(80, 8, seed=9), conn_type='fisher')

    graphs = threshold_connectivity(record, 'proportional', [0.5, 0.1], binarize=False)

    assert [w for w, _ in graphs] == [0.5, 0.1]
    for weight, graph in graphs:
        np.testing.assert_array_equal(
            graph.adj, threshold_graph(record.conn_mat, 'proportional', weight)
        )


def test_thresholding_is_idempotent():
    conn = symmetric_matrix(10, seed=8)

    once = threshold_graph(conn, 'proportional', 0.3)
    twice = threshold_graph(once, 'proportional', 0.3)

    np.testing.assert_array_equal(once, twice)


def test_graph_records_carry_threshold_notes():
    record = compute_functional_connectivity(
        make_timeseries(50, 4, seed=3), roi_names=['a', 'b', 'c', 'd'],
        conn_type='corr', notes={'subject': 'sub-01'},
    )

    [(weight, graph)] = threshold_connectivity(
        record, 'absolute', 0.2, binarize=True, neg_discard=False, input_dir='/data/conn'
    )

    assert weight == 0.2
    assert graph.roi_names == ['a', 'b', 'c', 'd']
    assert graph.notes['subject'] == 'sub-01'
    assert graph.notes['conn_type'] == 'corr'
    assert graph.notes['thresh_type'] == 'absolute'
    assert graph.notes['thresh_weight'] == 0.2
    assert graph.notes['graph_type'] == 'bin'
    assert graph.notes['binarize'] is True
    assert graph.notes['neg_discard'] is False
    assert graph.notes['input_dir'] == '/data/conn'


def test_proportional_weights_default_to_percent_grid():
    weights = validate_thresh_weights('proportional', None)

    assert len(weights) == 100
    assert weights[0] == pytest.approx(0.01)
    assert weights[-1] == pytest.approx(1.0)


@pytest.mark.parametrize('thresh_type,weights', [
    ('proportional', [0.0]),
    ('proportional', [1.5]),
    ('absolute', None),
    ('absolute', [-0.1]),
])
def test_invalid_weights_rejected(thresh_type, weights):
    with pytest.raises(ConfigurationError):
        validate_thresh_weights(thresh_type, weights)


def test_unknown_threshold_type():
    with pytest.raises(ConfigurationError):
        threshold_graph(np.eye(3), 'percentile', 0.5)
