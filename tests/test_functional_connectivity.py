"""
Tests for connectivity matrix construction.
"""

import numpy as np
import pytest
from scipy import stats

from conngraph.config import ConfigurationError
from conngraph.connectome.functional_connectivity import (
    compute_correlation_matrix,
    compute_functional_connectivity,
    compute_partial_correlation_matrix,
    fisher_z_transform,
    inverse_fisher_z_transform,
    merge_timeseries,
)
from conngraph.connectome.store import DimensionMismatch, TimeSeriesRecord

from conftest import make_timeseries, symmetric_matrix


def test_correlation_matches_numpy(sample_timeseries):
    r, p = compute_correlation_matrix(sample_timeseries)

    np.testing.assert_allclose(r, np.corrcoef(sample_timeseries.T))
    np.testing.assert_allclose(r, r.T)
    np.testing.assert_array_equal(np.diag(p), np.ones(5))


def test_p_values_match_pearsonr(sample_timeseries):
    _, p = compute_correlation_matrix(sample_timeseries)

    for i, j in [(0, 1), (1, 3), (2, 4)]:
        _, expected = stats.pearsonr(sample_timeseries[:, i], sample_timeseries[:, j])
        assert p[i, j] == pytest.approx(expected, rel=1e-6)
        assert p[j, i] == pytest.approx(expected, rel=1e-6)


def test_fisher_of_half_is_atanh():
    z = fisher_z_transform(np.array([[1.0, 0.5], [0.5, 1.0]]))

    assert z[0, 1] == pytest.approx(0.5493061443340549)
    assert z[1, 0] == pytest.approx(0.5493061443340549)
    np.testing.assert_array_equal(np.diag(z), [0.0, 0.0])


def test_inverse_fisher_recovers_correlations():
    r = symmetric_matrix(6, seed=3) * 0.99
    np.fill_diagonal(r, 1.0)

    recovered = inverse_fisher_z_transform(fisher_z_transform(r))

    np.testing.assert_allclose(recovered, r, atol=1e-12)


def test_fisher_leaves_p_values_untransformed(sample_timeseries):
    corr = compute_functional_connectivity(sample_timeseries, conn_type='corr')
    fisher = compute_functional_connectivity(sample_timeseries, conn_type='fisher')

    np.testing.assert_array_equal(corr.p_vals, fisher.p_vals)
    off_diag = ~np.eye(5, dtype=bool)
    np.testing.assert_allclose(fisher.conn_mat[off_diag], np.arctanh(corr.conn_mat[off_diag]))


def test_partial_correlation_three_variables():
    ts = make_timeseries(500, 3, seed=11)
    pcorr, p = compute_partial_correlation_matrix(ts)

    r = np.corrcoef(ts.T)
    expected = (r[0, 1] - r[0, 2] * r[1, 2]) / np.sqrt((1 - r[0, 2] ** 2) * (1 - r[1, 2] ** 2))

    assert pcorr[0, 1] == pytest.approx(expected, rel=1e-8)
    np.testing.assert_array_equal(np.diag(pcorr), np.ones(3))
    np.testing.assert_array_equal(np.diag(p), np.ones(3))
    assert 0 <= p[0, 1] <= 1


def test_partial_correlation_needs_more_timepoints_than_rois():
    with pytest.raises(ValueError, match="n_timepoints"):
        compute_partial_correlation_matrix(make_timeseries(4, 4))


def test_merged_atlases_give_pooled_matrix():
    aal = TimeSeriesRecord(make_timeseries(40, 3, 1), ['a1', 'a2', 'a3'], notes={'atlas': 'aal'})
    dmn = TimeSeriesRecord(make_timeseries(40, 2, 2), ['d1', 'd2'], notes={'atlas': 'dmn'})

    merged = merge_timeseries([aal, dmn])
    conn = compute_functional_connectivity(
        merged.timeseries, merged.roi_names, merged.xyz, conn_type='corr'
    )

    assert conn.conn_mat.shape == (5, 5)
    assert conn.roi_names == ['a1', 'a2', 'a3', 'd1', 'd2']
    assert conn.xyz.shape == (5, 3)
    assert merged.notes['atlas'] == ['aal', 'dmn']


def test_merge_with_different_timepoints_fails():
    aal = TimeSeriesRecord(make_timeseries(40, 3), ['a1', 'a2', 'a3'])
    dmn = TimeSeriesRecord(make_timeseries(39, 2), ['d1', 'd2'])

    with pytest.raises(DimensionMismatch):
        merge_timeseries([aal, dmn])


def test_roi_name_count_must_match(sample_timeseries):
    with pytest.raises(DimensionMismatch):
        compute_functional_connectivity(sample_timeseries, roi_names=['a', 'b'])


def test_unknown_conn_type(sample_timeseries):
    with pytest.raises(ConfigurationError, match="conn_type"):
        compute_functional_connectivity(sample_timeseries, conn_type='spearman')


@pytest.mark.parametrize('conn_type', ['corr', 'fisher', 'partcorr'])
def test_matrices_are_exactly_symmetric(conn_type):
    timeseries = np.random.default_rng(0).standard_normal((150, 37))

    conn = compute_functional_connectivity(timeseries, conn_type=conn_type).conn_mat

    np.testing.assert_array_equal(conn, conn.T)


def test_repeated_runs_are_identical(sample_timeseries):
    first = compute_functional_connectivity(sample_timeseries, conn_type='partcorr')
    second = compute_functional_connectivity(sample_timeseries, conn_type='partcorr')

    np.testing.assert_array_equal(first.conn_mat, second.conn_mat)
    np.testing.assert_array_equal(first.p_vals, second.p_vals)


def test_notes_carry_provenance(sample_timeseries):
    conn = compute_functional_connectivity(
        sample_timeseries,
        conn_type='fisher',
        notes={'atlas': 'aal', 'condition': 'rest', 'subject': 'sub-01'},
    )

    assert conn.notes['conn_type'] == 'fisher'
    assert conn.notes['ts_type'] == 'HRF weighted TS'
    assert conn.notes['subject'] == 'sub-01'
    assert conn.notes['n_timepoints'] == sample_timeseries.shape[0]
