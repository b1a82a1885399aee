#!/usr/bin/env python3
"""
Graph Theory Metrics Module

Compute nodal and global network metrics for thresholded brain graphs.

The numeric work sits behind the GraphMetrics interface so the aggregation
code never touches the graph library directly. NetworkXMetrics implements it
with networkx and the Brain Connectivity Toolbox (bctpy), plus numpy and scipy
where neither library has the measure.

Conventions:
- Metrics use edge magnitudes |W|.
- Weighted graphs: W / max(W) feeds clustering, transitivity and local
  efficiency when normalisation is on. Path-based metrics use the length
  matrix 1/W.
- Unreachable pairs add 0 to efficiency. Characteristic path length and
  efficiency_excl_inf average finite paths only (NaN when there are none).
  Eccentricity is NaN for a node that reaches nothing, and radius/diameter
  ignore NaN.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import bct  # Brain Connectivity Toolbox
import networkx as nx
import numpy as np
from scipy.sparse.csgraph import shortest_path

from conngraph.config import validate_graph_type
from conngraph.connectome.store import GraphRecord, GraphStatsRecord

logger = logging.getLogger(__name__)

PAGERANK_DAMPING = 0.85

NODAL_METRICS = (
    'degree',
    'strength',
    'clustering_coeff',
    'local_efficiency',
    'betweenness_centrality',
    'eigenvector_centrality',
    'subgraph_centrality',
    'pagerank_centrality',
    'community',
    'participation_coeff',
    'module_degree_zscore',
    'kcoreness',
    'kcore_size',
    'eccentricity',
    'vulnerability',
)

GLOBAL_METRICS = (
    'num_nodes',
    'num_edges',
    'density',
    'transitivity',
    'global_efficiency',
    'charpathlen',
    'efficiency_excl_inf',
    'radius',
    'diameter',
    'assortativity',
    'max_modularity',
    'n_communities',
    'mean_edge_betweenness',
)


def prepare_adjacency(adj: np.ndarray, weighted: bool = True) -> np.ndarray:
    """|W| with zero diagonal and non-finite entries removed (binary if not weighted)"""
    mat = np.abs(np.array(adj, dtype=float))
    mat[~np.isfinite(mat)] = 0
    np.fill_diagonal(mat, 0)
    if not weighted:
        mat = (mat != 0).astype(float)
    return mat


def normalize_weights(mat: np.ndarray) -> np.ndarray:
    """Scale weights into [0, 1] by the largest weight"""
    m = np.max(mat) if mat.size else 0
    if m > 0:
        return mat / m
    return mat.copy()


def length_matrix(mat: np.ndarray) -> np.ndarray:
    """Connection-length matrix 1/W (0 where there is no edge)"""
    lengths = np.zeros_like(mat)
    edges = mat > 0
    lengths[edges] = 1.0 / mat[edges]
    return lengths


def matrix_to_graph(mat: np.ndarray, weighted: bool = True) -> nx.Graph:
    """Convert adjacency matrix to NetworkX graph, with 'distance' = 1/weight"""
    if weighted:
        G = nx.from_numpy_array(mat)
    else:
        G = nx.from_numpy_array((mat != 0).astype(float))

    G.remove_edges_from(nx.selfloop_edges(G))
    for u, v, data in G.edges(data=True):
        data['distance'] = 1.0 / data['weight']
    return G


def _as_vector(values: Dict[int, float], n_nodes: int) -> np.ndarray:
    return np.array([values[i] for i in range(n_nodes)], dtype=float)


def _efficiency(distances: np.ndarray) -> float:
    n_nodes = distances.shape[0]
    if n_nodes < 2:
        return 0.0
    off_diag = ~np.eye(n_nodes, dtype=bool)
    d = distances[off_diag]
    inverse = np.zeros_like(d)
    finite = np.isfinite(d) & (d > 0)
    inverse[finite] = 1.0 / d[finite]
    return float(inverse.sum() / (n_nodes * (n_nodes - 1)))


class GraphMetrics:
    """
    Capability interface for graph statistics.

    Every method takes a prepared adjacency matrix (non-negative, symmetric,
    zero diagonal) and a weighted flag. Swap the backend passed to
    compute_graph_stats to change the numeric library.
    """

    def degree(self, mat: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def strength(self, mat: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def distance_matrix(self, mat: np.ndarray, weighted: bool) -> np.ndarray:
        raise NotImplementedError

    def clustering_coefficient(self, mat: np.ndarray, weighted: bool) -> np.ndarray:
        raise NotImplementedError

    def transitivity(self, mat: np.ndarray, weighted: bool) -> float:
        raise NotImplementedError

    def global_efficiency(self, mat: np.ndarray, weighted: bool) -> float:
        raise NotImplementedError

    def local_efficiency(self, mat: np.ndarray, weighted: bool) -> np.ndarray:
        raise NotImplementedError

    def betweenness_centrality(self, mat: np.ndarray, weighted: bool) -> np.ndarray:
        raise NotImplementedError

    def edge_betweenness_centrality(self, mat: np.ndarray, weighted: bool) -> np.ndarray:
        raise NotImplementedError

    def eigenvector_centrality(self, mat: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def subgraph_centrality(self, mat: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def pagerank_centrality(self, mat: np.ndarray, weighted: bool) -> np.ndarray:
        raise NotImplementedError

    def kcoreness(self, mat: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError

    def assortativity(self, mat: np.ndarray, weighted: bool) -> float:
        raise NotImplementedError

    def communities(self, mat: np.ndarray, weighted: bool, seed: int = 0) -> Tuple[np.ndarray, float]:
        raise NotImplementedError

    def participation_coefficient(self, mat: np.ndarray, labels: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def module_degree_zscore(self, mat: np.ndarray, labels: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class NetworkXMetrics(GraphMetrics):
    """GraphMetrics backed by networkx, bctpy and scipy.sparse.csgraph"""

    def degree(self, mat):
        return np.sum(mat != 0, axis=1).astype(float)

    def strength(self, mat):
        return np.sum(mat, axis=1)

    def distance_matrix(self, mat, weighted):
        """Shortest path lengths (inf when unreachable, 0 on the diagonal)"""
        if mat.shape[0] == 0:
            return np.zeros((0, 0))
        if weighted:
            return shortest_path(length_matrix(mat), method='D', directed=False)
        return shortest_path((mat != 0).astype(float), method='D', directed=False, unweighted=True)

    def clustering_coefficient(self, mat, weighted):
        if not weighted:
            G = matrix_to_graph(mat, weighted=False)
            return _as_vector(nx.clustering(G), mat.shape[0])

        # Onnela et al. (2005) geometric-mean clustering on the weights as
        # given, so the normalize flag stays in effect
        return bct.clustering_coef_wu(mat)

    def transitivity(self, mat, weighted):
        if not weighted:
            return float(nx.transitivity(matrix_to_graph(mat, weighted=False)))

        k = np.sum(mat != 0, axis=1)
        if np.sum(k * (k - 1)) == 0:
            return 0.0
        return float(bct.transitivity_wu(mat))

    def global_efficiency(self, mat, weighted):
        return _efficiency(self.distance_matrix(mat, weighted))

    def local_efficiency(self, mat, weighted):
        """
        Efficiency of each node's neighbourhood with the node removed.

        Binary graphs use efficiency_bin(local=True), weighted graphs the
        Rubinov & Sporns (2010) form in efficiency_wei(local=True).
        """
        if mat.shape[0] == 0:
            return np.zeros(0)
        if weighted:
            return np.asarray(bct.efficiency_wei(mat, local=True), dtype=float)
        return np.asarray(bct.efficiency_bin(mat, local=True), dtype=float)

    def betweenness_centrality(self, mat, weighted):
        G = matrix_to_graph(mat, weighted=weighted)
        betweenness = nx.betweenness_centrality(
            G, weight='distance' if weighted else None, normalized=True
        )
        return _as_vector(betweenness, mat.shape[0])

    def edge_betweenness_centrality(self, mat, weighted):
        G = matrix_to_graph(mat, weighted=weighted)
        if G.number_of_edges() == 0:
            return np.zeros(0)
        betweenness = nx.edge_betweenness_centrality(
            G, weight='distance' if weighted else None, normalized=True
        )
        return np.array([betweenness[edge] for edge in sorted(betweenness)], dtype=float)

    def eigenvector_centrality(self, mat):
        n_nodes = mat.shape[0]
        if n_nodes == 0 or not np.any(mat):
            return np.zeros(n_nodes)
        eigenvalues, eigenvectors = np.linalg.eigh(mat)
        centrality = np.abs(eigenvectors[:, np.argmax(eigenvalues)])
        return centrality / np.linalg.norm(centrality)

    def subgraph_centrality(self, mat):
        """Weighted sum of closed walks, diag(V^2 exp(lambda)), on the binary structure"""
        binary = (mat != 0).astype(float)
        if binary.shape[0] == 0:
            return np.zeros(0)
        eigenvalues, eigenvectors = np.linalg.eigh(binary)
        return (eigenvectors ** 2) @ np.exp(eigenvalues)

    def pagerank_centrality(self, mat, weighted):
        G = matrix_to_graph(mat, weighted=weighted)
        if G.number_of_nodes() == 0:
            return np.zeros(0)
        pagerank = nx.pagerank(G, alpha=PAGERANK_DAMPING, weight='weight' if weighted else None)
        return _as_vector(pagerank, mat.shape[0])

    def kcoreness(self, mat):
        """
        Coreness of each node and the size of its k-core

        Returns:
            Tuple of (coreness, size of the k-core at that coreness; 0 for
            coreness 0)
        """
        G = matrix_to_graph(mat, weighted=False)
        coreness = _as_vector(nx.core_number(G), mat.shape[0])
        sizes = np.array([
            np.sum(coreness >= c) if c > 0 else 0 for c in coreness
        ], dtype=float)
        return coreness, sizes

    def assortativity(self, mat, weighted):
        """Degree (binary) or strength (weighted) correlation across edges"""
        if not np.any(np.triu(mat, k=1)):
            return np.nan

        # regular graphs give 0/0
        with np.errstate(divide='ignore', invalid='ignore'):
            if weighted:
                r = bct.assortativity_wei(mat, flag=0)
            else:
                r = bct.assortativity_bin(mat, flag=0)
        return float(r) if np.isfinite(r) else np.nan

    def communities(self, mat, weighted, seed=0):
        """
        Louvain modularity maximisation

        Labels are 1..C ordered by each community's lowest node index.
        An edgeless graph is all singletons with Q = 0.
        """
        n_nodes = mat.shape[0]
        G = matrix_to_graph(mat, weighted=weighted)
        if G.number_of_edges() == 0:
            return np.arange(1, n_nodes + 1), 0.0

        weight = 'weight' if weighted else None
        partition = nx.community.louvain_communities(G, weight=weight, seed=seed)
        partition = sorted(partition, key=min)
        q = float(nx.community.modularity(G, partition, weight=weight))

        labels = np.zeros(n_nodes, dtype=int)
        for label, members in enumerate(partition, start=1):
            labels[list(members)] = label
        return labels, q

    def participation_coefficient(self, mat, labels):
        """P_i = 1 - sum_s (k_is / k_i)^2 (Guimera & Amaral, 2005); 0 for isolated nodes"""
        if mat.shape[0] == 0:
            return np.zeros(0)
        # isolated nodes give 0/0, which participation_coef sets to 0
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.asarray(bct.participation_coef(mat, labels), dtype=float)

    def module_degree_zscore(self, mat, labels):
        """
        Within-module degree z-score; undefined -> 0

        bctpy divides by the population std, MATLAB BCT by the sample std
        (ddof=1). The bctpy result is rescaled per module to the latter.
        """
        if mat.shape[0] == 0:
            return np.zeros(0)
        with np.errstate(divide='ignore', invalid='ignore'):
            z = np.asarray(bct.module_degree_zscore(mat, labels, flag=0), dtype=float)
        z[~np.isfinite(z)] = 0
        for module in np.unique(labels):
            idx = labels == module
            n_members = np.sum(idx)
            if n_members > 1:
                z[idx] *= np.sqrt((n_members - 1) / n_members)
        return z


def characteristic_path(distances: np.ndarray) -> Dict[str, Any]:
    """
    Path-length summary of a distance matrix (diagonal and infinite paths excluded)

    Returns:
        Dictionary with charpathlen, efficiency_excl_inf, eccentricity,
        radius, diameter
    """
    n_nodes = distances.shape[0]
    d = np.array(distances, dtype=float)
    d[~np.isfinite(d)] = np.nan
    np.fill_diagonal(d, np.nan)

    finite = d[~np.isnan(d)]
    if finite.size:
        charpathlen = float(np.mean(finite))
        efficiency = float(np.mean(1.0 / finite))
    else:
        charpathlen = np.nan
        efficiency = np.nan

    eccentricity = np.full(n_nodes, np.nan)
    for i in range(n_nodes):
        row = d[i][~np.isnan(d[i])]
        if row.size:
            eccentricity[i] = row.max()

    reachable = eccentricity[~np.isnan(eccentricity)]
    return {
        'charpathlen': charpathlen,
        'efficiency_excl_inf': efficiency,
        'eccentricity': eccentricity,
        'radius': float(reachable.min()) if reachable.size else np.nan,
        'diameter': float(reachable.max()) if reachable.size else np.nan,
    }


def compute_vulnerability(mat: np.ndarray, weighted: bool, backend: GraphMetrics) -> np.ndarray:
    """Relative drop in global efficiency when each node is removed"""
    n_nodes = mat.shape[0]
    efficiency = backend.global_efficiency(mat, weighted)
    vulnerability = np.zeros(n_nodes)
    if efficiency == 0:
        return vulnerability

    for i in range(n_nodes):
        keep = np.arange(n_nodes) != i
        reduced = backend.global_efficiency(mat[np.ix_(keep, keep)], weighted)
        vulnerability[i] = (efficiency - reduced) / efficiency
    return vulnerability


def compute_graph_stats(
    adj: np.ndarray,
    graph_type: str = 'wei',
    normalize: bool = True,
    roi_names: Optional[List[str]] = None,
    xyz: Optional[np.ndarray] = None,
    notes: Optional[Dict[str, Any]] = None,
    seed: int = 0,
    backend: Optional[GraphMetrics] = None
) -> GraphStatsRecord:
    """
    Compute nodal and global statistics for one adjacency matrix

    Args:
        adj: Adjacency matrix (n_rois, n_rois)
        graph_type: 'wei' or 'bin'
        normalize: Scale weights into [0, 1] for clustering, transitivity
            and local efficiency (weighted graphs only)
        roi_names: Optional ROI names
        xyz: Optional ROI centroids
        notes: Provenance carried into the record
        seed: Seed for community detection
        backend: GraphMetrics implementation (default NetworkXMetrics)

    Returns:
        GraphStatsRecord
    """
    validate_graph_type(graph_type)
    backend = backend or NetworkXMetrics()
    weighted = graph_type == 'wei'

    mat = prepare_adjacency(adj, weighted=weighted)
    n_nodes = mat.shape[0]
    if roi_names is None:
        roi_names = [f"Node_{i:03d}" for i in range(n_nodes)]

    logger.info(f"Computing {'weighted' if weighted else 'binary'} graph statistics for {n_nodes} nodes...")

    seg = normalize_weights(mat) if weighted and normalize else mat

    degree = backend.degree(mat)
    n_edges = int(np.count_nonzero(np.triu(mat, k=1)))
    n_pairs = (n_nodes ** 2 - n_nodes) / 2

    distances = backend.distance_matrix(mat, weighted)
    paths = characteristic_path(distances)
    labels, q = backend.communities(mat, weighted, seed=seed)
    coreness, core_size = backend.kcoreness(mat)
    edge_betweenness = backend.edge_betweenness_centrality(mat, weighted)

    nodal = {
        'degree': degree,
        'clustering_coeff': backend.clustering_coefficient(seg, weighted),
        'local_efficiency': backend.local_efficiency(seg, weighted),
        'betweenness_centrality': backend.betweenness_centrality(mat, weighted),
        'eigenvector_centrality': backend.eigenvector_centrality(mat),
        'subgraph_centrality': backend.subgraph_centrality(mat),
        'pagerank_centrality': backend.pagerank_centrality(mat, weighted),
        'community': labels.astype(float),
        'participation_coeff': backend.participation_coefficient(mat, labels),
        'module_degree_zscore': backend.module_degree_zscore(mat, labels),
        'kcoreness': coreness,
        'kcore_size': core_size,
        'eccentricity': paths['eccentricity'],
        'vulnerability': compute_vulnerability(mat, weighted, backend),
    }
    if weighted:
        nodal['strength'] = backend.strength(mat)

    global_metrics = {
        'num_nodes': n_nodes,
        'num_edges': n_edges,
        'density': n_edges / n_pairs if n_pairs > 0 else 0.0,
        'transitivity': backend.transitivity(seg, weighted),
        'global_efficiency': _efficiency(distances),
        'charpathlen': paths['charpathlen'],
        'efficiency_excl_inf': paths['efficiency_excl_inf'],
        'radius': paths['radius'],
        'diameter': paths['diameter'],
        'assortativity': backend.assortativity(mat, weighted),
        'max_modularity': q,
        'n_communities': len(np.unique(labels)),
        'mean_edge_betweenness': float(np.mean(edge_betweenness)) if edge_betweenness.size else 0.0,
    }
    if weighted:
        global_metrics['normalized'] = float(bool(normalize))

    logger.info(f"  Edges: {n_edges}, density: {global_metrics['density']:.4f}")
    logger.info(f"  Modularity: {q:.4f} ({global_metrics['n_communities']} communities)")

    record_notes = dict(notes or {})
    record_notes.update({'graph_type': graph_type, 'community_seed': seed})
    if weighted:
        record_notes['normalized'] = bool(normalize)

    return GraphStatsRecord(
        nodal=nodal,
        global_metrics=global_metrics,
        communities=labels,
        roi_names=roi_names,
        xyz=xyz,
        notes=record_notes,
    )


def graph_stats_from_record(
    record: GraphRecord,
    graph_type: Optional[str] = None,
    normalize: bool = True,
    seed: int = 0,
    backend: Optional[GraphMetrics] = None
) -> GraphStatsRecord:
    """Graph statistics for a loaded GraphRecord (graph type from its notes by default)"""
    if graph_type is None:
        graph_type = record.notes.get('graph_type') or ('bin' if record.notes.get('binarize') else 'wei')
    return compute_graph_stats(
        record.adj,
        graph_type=graph_type,
        normalize=normalize,
        roi_names=record.roi_names,
        xyz=record.xyz,
        notes=record.notes,
        seed=seed,
        backend=backend,
    )
