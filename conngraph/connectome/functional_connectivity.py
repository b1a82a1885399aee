#!/usr/bin/env python3
"""
Functional Connectivity Module

Compute functional connectivity matrices from ROI timeseries.

Key Features:
- ROI-to-ROI Pearson correlation with two-sided p-values
- Fisher z-transformation of the correlation matrix
- Partial correlation (all other ROIs controlled) via the precision matrix
- Column-wise merging of timeseries from several atlases

Usage:
    record = TimeSeriesRecord.load('TS_aal_rest_sub-01.npz')

    conn = compute_functional_connectivity(
        timeseries=record.timeseries,
        roi_names=record.roi_names,
        xyz=record.xyz,
        conn_type='fisher'
    )
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from conngraph.config import validate_conn_type
from conngraph.connectome.store import (
    ConnectivityRecord,
    DimensionMismatch,
    TimeSeriesRecord,
)

logger = logging.getLogger(__name__)

TS_TYPE = 'HRF weighted TS'


def correlation_p_values(r: np.ndarray, df: int) -> np.ndarray:
    """
    Two-sided p-values for (partial) correlation coefficients

    Uses t = r * sqrt(df / (1 - r^2)) against Student's t with df degrees
    of freedom.

    Args:
        r: Matrix of correlation coefficients
        df: Degrees of freedom (T - 2 for Pearson, T - N for partial)

    Returns:
        P-value matrix with a diagonal of 1.0
    """
    if df < 1:
        raise ValueError(f"Need at least 1 degree of freedom for p-values, got {df}")

    with np.errstate(divide='ignore', invalid='ignore'):
        t = r * np.sqrt(df / (1.0 - r ** 2))
    p = 2.0 * stats.t.sf(np.abs(t), df)
    p = np.where(np.isnan(r), np.nan, p)
    np.fill_diagonal(p, 1.0)
    return p


def compute_correlation_matrix(timeseries: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute Pearson correlation matrix and p-values from timeseries data

    Args:
        timeseries: Array of shape (n_timepoints, n_rois)

    Returns:
        Tuple of (correlation matrix, p-value matrix), each (n_rois, n_rois)

    Raises:
        ValueError: If timeseries invalid
    """
    if timeseries.ndim != 2:
        raise ValueError(f"Expected 2D timeseries, got shape {timeseries.shape}")

    n_timepoints, n_rois = timeseries.shape
    if n_timepoints < 3:
        raise ValueError(f"Need at least 3 timepoints for correlation, got {n_timepoints}")

    logger.info("Computing pearson correlation matrix...")
    logger.info(f"  Timeseries shape: {timeseries.shape}")

    # Constant ROIs give NaN rows, cleaned later by thresholding
    with np.errstate(divide='ignore', invalid='ignore'):
        corr_matrix = np.atleast_2d(np.corrcoef(timeseries.T))

    # corrcoef is symmetric only up to rounding
    corr_matrix = (corr_matrix + corr_matrix.T) / 2

    n_flat = int(np.sum(np.std(timeseries, axis=0) == 0))
    if n_flat:
        logger.warning(f"  {n_flat} ROI(s) have zero variance, their correlations are NaN")

    p_values = correlation_p_values(corr_matrix, n_timepoints - 2)

    return corr_matrix, p_values


def compute_partial_correlation_matrix(timeseries: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute partial correlation matrix using precision matrix

    Partial correlation removes the effect of all other ROIs when computing
    the correlation between two ROIs.

    Args:
        timeseries: Array of shape (n_timepoints, n_rois)

    Returns:
        Tuple of (partial correlation matrix, p-value matrix)

    Note:
        Uses the negative normalized precision matrix. Requires n_timepoints > n_rois.
        P-values use n_timepoints - n_rois degrees of freedom.
    """
    if timeseries.ndim != 2:
        raise ValueError(f"Expected 2D timeseries, got shape {timeseries.shape}")

    n_timepoints, n_rois = timeseries.shape

    if n_timepoints <= n_rois:
        raise ValueError(
            f"Partial correlation requires n_timepoints ({n_timepoints}) > "
            f"n_rois ({n_rois})"
        )

    logger.info("Computing partial correlation matrix...")
    logger.info(f"  Timeseries shape: {timeseries.shape}")

    cov_matrix = np.atleast_2d(np.cov(timeseries.T))
    precision_matrix = np.linalg.inv(cov_matrix)

    # pcorr_ij = -prec_ij / sqrt(prec_ii * prec_jj)
    diag = np.sqrt(np.diag(precision_matrix))
    partial_corr = -precision_matrix / np.outer(diag, diag)
    partial_corr = (partial_corr + partial_corr.T) / 2
    np.fill_diagonal(partial_corr, 1.0)

    p_values = correlation_p_values(partial_corr, n_timepoints - n_rois)

    return partial_corr, p_values


def fisher_z_transform(correlation_matrix: np.ndarray) -> np.ndarray:
    """
    Apply Fisher z-transformation to correlation matrix

    z = atanh(r) = 0.5 * ln((1 + r) / (1 - r))

    Args:
        correlation_matrix: Correlation matrix (n_rois, n_rois)

    Returns:
        Z-transformed matrix (n_rois, n_rois)

    Note:
        Diagonal is set to 0 (self-connections not meaningful). Off-diagonal
        |r| == 1 maps to +/-inf and is removed by graph autofix.
    """
    with np.errstate(divide='ignore'):
        z = np.arctanh(correlation_matrix)

    np.fill_diagonal(z, 0.0)

    logger.info("Applied Fisher z-transformation")

    return z


def inverse_fisher_z_transform(z_matrix: np.ndarray) -> np.ndarray:
    """
    Apply inverse Fisher z-transformation

    r = tanh(z)

    Args:
        z_matrix: Z-transformed matrix (n_rois, n_rois)

    Returns:
        Correlation matrix (n_rois, n_rois)
    """
    r = np.tanh(z_matrix)

    # Restore diagonal
    np.fill_diagonal(r, 1.0)

    logger.info("Applied inverse Fisher z-transformation")

    return r


def merge_timeseries(records: Sequence[TimeSeriesRecord]) -> TimeSeriesRecord:
    """
    Concatenate timeseries from several atlases column-wise

    ROI names and centroids are concatenated in the same (atlas) order.

    Args:
        records: Time series of one subject/condition, one per atlas

    Returns:
        Merged TimeSeriesRecord

    Raises:
        DimensionMismatch: If the atlases have different numbers of timepoints
    """
    if not records:
        raise ValueError("No timeseries given to merge")

    n_timepoints = {record.n_timepoints for record in records}
    if len(n_timepoints) != 1:
        atlases = [record.notes.get('atlas', '?') for record in records]
        raise DimensionMismatch(
            f"Cannot merge atlases {atlases}: timepoint counts differ "
            f"({[record.n_timepoints for record in records]})"
        )

    roi_names: List[str] = []
    for record in records:
        roi_names.extend(record.roi_names)

    return TimeSeriesRecord(
        timeseries=np.hstack([record.timeseries for record in records]),
        roi_names=roi_names,
        xyz=np.vstack([record.xyz for record in records]),
        notes={'atlas': [record.notes.get('atlas') for record in records]},
    )


def summarize_connectivity(connectivity_matrix: np.ndarray) -> Dict[str, float]:
    """Summary statistics over the finite, non-zero upper-triangle edges"""
    upper_triangle = connectivity_matrix[np.triu_indices_from(connectivity_matrix, k=1)]
    nonzero_edges = upper_triangle[np.isfinite(upper_triangle) & (upper_triangle != 0)]

    return {
        'n_rois': int(connectivity_matrix.shape[0]),
        'n_edges_total': int(len(upper_triangle)),
        'n_edges_nonzero': int(len(nonzero_edges)),
        'mean_connectivity': float(np.mean(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
        'std_connectivity': float(np.std(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
        'min_connectivity': float(np.min(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
        'max_connectivity': float(np.max(nonzero_edges)) if len(nonzero_edges) > 0 else 0.0,
    }


def compute_functional_connectivity(
    timeseries: np.ndarray,
    roi_names: Optional[List[str]] = None,
    xyz: Optional[np.ndarray] = None,
    conn_type: str = 'fisher',
    notes: Optional[Dict[str, Any]] = None
) -> ConnectivityRecord:
    """
    Compute functional connectivity matrix from timeseries

    Main function that orchestrates connectivity computation.

    Args:
        timeseries: Array of shape (n_timepoints, n_rois)
        roi_names: Optional list of ROI names for labeling
        xyz: Optional ROI centroids (n_rois, 3)
        conn_type: 'corr', 'fisher' or 'partcorr'
        notes: Provenance merged into the record notes (atlas, condition, subject)

    Returns:
        ConnectivityRecord with the matrix, p-values, ROI metadata and notes

    Example:
        conn = compute_functional_connectivity(
            timeseries=ts,
            roi_names=names,
            conn_type='fisher',
            notes={'atlas': 'aal', 'condition': 'rest', 'subject': 'sub-01'}
        )
    """
    validate_conn_type(conn_type)

    timeseries = np.asarray(timeseries, dtype=float)
    if timeseries.ndim != 2:
        raise ValueError(f"Expected 2D timeseries, got shape {timeseries.shape}")

    n_timepoints, n_rois = timeseries.shape

    logger.info("=" * 80)
    logger.info("FUNCTIONAL CONNECTIVITY ANALYSIS")
    logger.info("=" * 80)
    logger.info(f"Timeseries shape: {timeseries.shape}")
    logger.info(f"Connectivity type: {conn_type}")

    if roi_names is None:
        roi_names = [f"ROI_{i:03d}" for i in range(n_rois)]

    if len(roi_names) != n_rois:
        raise DimensionMismatch(
            f"Number of ROI names ({len(roi_names)}) doesn't match "
            f"number of ROIs ({n_rois})"
        )

    if conn_type == 'partcorr':
        connectivity_matrix, p_values = compute_partial_correlation_matrix(timeseries)
    else:
        connectivity_matrix, p_values = compute_correlation_matrix(timeseries)
        if conn_type == 'fisher':
            connectivity_matrix = fisher_z_transform(connectivity_matrix)

    summary = summarize_connectivity(connectivity_matrix)

    logger.info("\nSummary Statistics:")
    logger.info(f"  ROIs: {summary['n_rois']}")
    logger.info(f"  Edges (non-zero): {summary['n_edges_nonzero']} / {summary['n_edges_total']}")
    logger.info(f"  Mean connectivity: {summary['mean_connectivity']:.4f}")
    logger.info(f"  Range: [{summary['min_connectivity']:.4f}, {summary['max_connectivity']:.4f}]")

    record_notes = dict(notes or {})
    record_notes.update({
        'conn_type': conn_type,
        'ts_type': TS_TYPE,
        'n_timepoints': int(n_timepoints),
        'created': datetime.now().isoformat(timespec='seconds'),
    })

    return ConnectivityRecord(
        conn_mat=connectivity_matrix,
        p_vals=p_values,
        roi_names=list(roi_names),
        xyz=xyz,
        notes=record_notes,
    )


def connectivity_from_record(
    record: TimeSeriesRecord,
    conn_type: str = 'fisher',
    notes: Optional[Dict[str, Any]] = None
) -> ConnectivityRecord:
    """Compute connectivity for a loaded TimeSeriesRecord, carrying its notes"""
    record_notes = {k: v for k, v in record.notes.items() if k in ('atlas', 'condition', 'subject', 'source')}
    record_notes.update(notes or {})
    return compute_functional_connectivity(
        timeseries=record.timeseries,
        roi_names=record.roi_names,
        xyz=record.xyz,
        conn_type=conn_type,
        notes=record_notes,
    )
