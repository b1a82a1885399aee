"""
Shared fixtures: synthetic ROI timeseries laid out like an extraction output.
"""

from pathlib import Path

import numpy as np
import pytest

from conngraph.connectome.store import SeriesKey, TimeSeriesRecord, record_path

ATLAS_ROIS = {
    'aal': ['aal.Precentral_L', 'aal.Precentral_R', 'aal.Frontal_Sup_L'],
    'dmn': ['dmn.PCC', 'dmn.mPFC'],
}
CONDITIONS = ['rest', 'task_a']
SUBJECTS = ['sub-HS01', 'sub-HS02', 'sub-SZ01']
N_TIMEPOINTS = 60


def make_timeseries(n_timepoints: int, n_rois: int, seed: int = 0) -> np.ndarray:
    """Correlated random timeseries: a shared signal plus ROI-specific noise"""
    rng = np.random.default_rng(seed)
    shared = rng.standard_normal((n_timepoints, 1))
    loadings = rng.uniform(-1, 1, size=(1, n_rois))
    return shared @ loadings + rng.standard_normal((n_timepoints, n_rois))


def symmetric_matrix(n: int, seed: int = 0) -> np.ndarray:
    """Random symmetric matrix in (-1, 1) with a unit diagonal and no ties"""
    rng = np.random.default_rng(seed)
    upper = np.triu(rng.uniform(-1, 1, size=(n, n)), k=1)
    matrix = upper + upper.T
    np.fill_diagonal(matrix, 1.0)
    return matrix


def write_timeseries_tree(root: Path, n_timepoints=N_TIMEPOINTS, atlas_timepoints=None) -> Path:
    """Write TS_<atlas>_<condition>_<subject>.npz for every combination"""
    atlas_timepoints = atlas_timepoints or {}
    seed = 0
    for atlas, roi_names in ATLAS_ROIS.items():
        for condition in CONDITIONS:
            for subject in SUBJECTS:
                seed += 1
                key = SeriesKey(atlas, condition, subject)
                xyz = np.arange(len(roi_names) * 3, dtype=float).reshape(-1, 3)
                TimeSeriesRecord(
                    timeseries=make_timeseries(
                        atlas_timepoints.get(atlas, n_timepoints), len(roi_names), seed
                    ),
                    roi_names=roi_names,
                    xyz=xyz,
                ).save(record_path('timeseries', root, key))
    return root


@pytest.fixture
def ts_root(tmp_path):
    return write_timeseries_tree(tmp_path / 'timeseries')


@pytest.fixture
def sample_timeseries():
    return make_timeseries(N_TIMEPOINTS, 5, seed=7)


@pytest.fixture
def two_cliques():
    """Two 4-node cliques joined by a single edge (3-4)"""
    adj = np.zeros((8, 8))
    adj[:4, :4] = 1
    adj[4:, 4:] = 1
    np.fill_diagonal(adj, 0)
    adj[3, 4] = adj[4, 3] = 1
    return adj


@pytest.fixture
def path_graph():
    """Binary path 0-1-2-3"""
    adj = np.zeros((4, 4))
    for i in range(3):
        adj[i, i + 1] = adj[i + 1, i] = 1
    return adj


@pytest.fixture
def triangle_plus_isolated():
    """Triangle on 0, 1, 2 and an isolated node 3"""
    adj = np.zeros((4, 4))
    for i, j in [(0, 1), (1, 2), (0, 2)]:
        adj[i, j] = adj[j, i] = 1
    return adj
