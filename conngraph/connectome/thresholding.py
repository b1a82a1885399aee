#!/usr/bin/env python3
"""
Graph Thresholding Module

Turn dense connectivity matrices into adjacency matrices.

Thresholds:
- absolute: keep entries with |w| >= thresh_weight
- proportional: keep the strongest thresh_weight fraction of off-diagonal
  entries. Ranking is a stable sort on descending |w|, so ties go to the
  entry that comes first in row-major order.

Steps run in the order threshold -> neg_discard -> binarize -> autofix, and
every weight is applied to the original matrix (outputs are independent).
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from conngraph.config import validate_thresh_type, validate_thresh_weights
from conngraph.connectome.store import ConnectivityRecord, GraphRecord

logger = logging.getLogger(__name__)

AUTOFIX_TOLERANCE = 1e-10


def _clean(matrix: np.ndarray) -> np.ndarray:
    """Float copy with zero diagonal and non-finite entries set to 0"""
    matrix = np.array(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"Expected square matrix, got shape {matrix.shape}")
    matrix[~np.isfinite(matrix)] = 0
    np.fill_diagonal(matrix, 0)
    return matrix


def threshold_absolute(matrix: np.ndarray, thresh_weight: float) -> np.ndarray:
    """Zero every entry with |w| < thresh_weight (and the diagonal)"""
    matrix = _clean(matrix)
    matrix[np.abs(matrix) < thresh_weight] = 0
    return matrix


def n_edges_to_keep(n_nodes: int, thresh_weight: float, symmetric: bool) -> int:
    """Number of entries a proportional threshold keeps (round half up)"""
    n_total = n_nodes * (n_nodes - 1)
    if symmetric:
        n_total = n_total / 2
    return int(np.floor(thresh_weight * n_total + 0.5))


def threshold_proportional(matrix: np.ndarray, thresh_weight: float) -> np.ndarray:
    """
    Keep the strongest fraction of off-diagonal entries

    For a symmetric matrix (to floating-point tolerance) only the upper
    triangle is ranked and the result is mirrored, so round(p * N(N-1)/2)
    edges survive. Otherwise all
    off-diagonal entries are ranked and round(p * N(N-1)) survive. Zero
    entries are never ranked, so a sparse input can keep fewer.

    Args:
        matrix: Square connectivity matrix
        thresh_weight: Fraction in (0, 1]

    Returns:
        Thresholded matrix with zero diagonal
    """
    if not 0 < thresh_weight <= 1:
        raise ValueError(f"Proportional thresh_weight must be in (0, 1], got {thresh_weight}")

    matrix = _clean(matrix)
    n_nodes = matrix.shape[0]
    symmetric = np.allclose(matrix, matrix.T)

    if symmetric:
        matrix = (matrix + matrix.T) / 2
        rows, cols = np.triu_indices(n_nodes, k=1)
    else:
        rows, cols = np.nonzero(~np.eye(n_nodes, dtype=bool))

    values = matrix[rows, cols]
    nonzero = values != 0
    rows, cols, values = rows[nonzero], cols[nonzero], values[nonzero]

    order = np.argsort(-np.abs(values), kind='stable')
    keep = order[:n_edges_to_keep(n_nodes, thresh_weight, symmetric)]

    thresholded = np.zeros_like(matrix)
    thresholded[rows[keep], cols[keep]] = values[keep]
    if symmetric:
        thresholded = thresholded + thresholded.T

    return thresholded


def discard_negative(matrix: np.ndarray) -> np.ndarray:
    """Zero negative weights"""
    matrix = np.array(matrix, dtype=float)
    matrix[matrix < 0] = 0
    return matrix


def binarize_matrix(matrix: np.ndarray) -> np.ndarray:
    """Nonzero -> 1.0"""
    return (np.asarray(matrix) != 0).astype(float)


def autofix(matrix: np.ndarray) -> np.ndarray:
    """
    Make an adjacency matrix safe for graph statistics

    Zeroes the diagonal, replaces NaN/Inf with 0, removes |w| < 1e-10 and
    forces exact symmetry by mirroring the upper triangle.
    """
    matrix = _clean(matrix)
    matrix[np.abs(matrix) < AUTOFIX_TOLERANCE] = 0
    upper = np.triu(matrix, k=1)
    return upper + upper.T


def threshold_graph(
    matrix: np.ndarray,
    thresh_type: str,
    thresh_weight: float,
    binarize: bool = False,
    neg_discard: bool = True
) -> np.ndarray:
    """
    Threshold a single connectivity matrix at one weight

    Args:
        matrix: Connectivity matrix (n_rois, n_rois)
        thresh_type: 'absolute' or 'proportional'
        thresh_weight: Threshold weight
        binarize: Convert surviving edges to 1.0
        neg_discard: Zero negative edges after thresholding

    Returns:
        Symmetric adjacency matrix with zero diagonal
    """
    validate_thresh_type(thresh_type)

    if thresh_type == 'absolute':
        adj = threshold_absolute(matrix, thresh_weight)
    else:
        adj = threshold_proportional(matrix, thresh_weight)

    if neg_discard:
        adj = discard_negative(adj)
    if binarize:
        adj = binarize_matrix(adj)

    return autofix(adj)


def graph_type_label(binarize: bool) -> str:
    return 'bin' if binarize else 'wei'


def threshold_connectivity(
    record: ConnectivityRecord,
    thresh_type: str = 'proportional',
    thresh_weights: Union[None, float, Sequence[float]] = None,
    binarize: bool = False,
    neg_discard: bool = True,
    input_dir: Optional[str] = None
) -> List[Tuple[float, GraphRecord]]:
    """
    Threshold a connectivity record at every requested weight

    Args:
        record: Connectivity matrix with ROI metadata
        thresh_type: 'absolute' or 'proportional'
        thresh_weights: Weight or weights; proportional defaults to 0.01..1.00
        binarize: Produce binary graphs
        neg_discard: Discard negative weights
        input_dir: Provenance recorded in the graph notes

    Returns:
        List of (weight, GraphRecord) in the order the weights were given
    """
    weights = validate_thresh_weights(thresh_type, thresh_weights)

    graphs = []
    for weight in weights:
        adj = threshold_graph(
            record.conn_mat,
            thresh_type=thresh_type,
            thresh_weight=weight,
            binarize=binarize,
            neg_discard=neg_discard
        )
        notes: Dict[str, Any] = dict(record.notes)
        notes.update({
            'binarize': bool(binarize),
            'neg_discard': bool(neg_discard),
            'thresh_type': thresh_type,
            'thresh_weight': float(weight),
            'graph_type': graph_type_label(binarize),
            'input_dir': input_dir,
        })
        n_edges = int(np.count_nonzero(np.triu(adj, k=1)))
        logger.debug(f"  {thresh_type} {weight:.2f}: {n_edges} edges")
        graphs.append((weight, GraphRecord(
            adj=adj,
            roi_names=record.roi_names,
            xyz=record.xyz,
            notes=notes,
        )))

    return graphs
