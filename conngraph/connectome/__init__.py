"""
Connectome Analysis Module

Build functional connectivity graphs from ROI timeseries and summarise them
with graph theory.

Pipeline
--------
1. Record store (store.py)
   - Typed keys for every unit of work
   - .npz records with ROI names, centroids and provenance notes
   - index.json manifests instead of filename parsing

2. Functional Connectivity (functional_connectivity.py)
   - Pearson correlation, Fisher z, partial correlation, with p-values
   - Column-wise merging of several atlases

3. Thresholding (thresholding.py)
   - Absolute and proportional thresholds
   - Negative-weight discarding, binarization, autofix

4. Graph Metrics (graph_metrics.py)
   - Degree, clustering, efficiency, centralities, k-core, vulnerability
   - Louvain communities, participation coefficient, module z-score

5. Compilation (compile_stats.py)
   - Summary tables and ML feature tables with class labels

Usage Examples
--------------
conn = compute_functional_connectivity(timeseries, roi_names, conn_type='fisher')

adj = threshold_graph(conn.conn_mat, 'proportional', 0.1, binarize=False, neg_discard=True)

stats = compute_graph_stats(adj, graph_type='wei', roi_names=conn.roi_names)

table = build_feature_table([('sub-01', stats)], class0='HS')
"""

from conngraph.connectome.store import (
    MERGED_ATLAS,
    ConnectivityRecord,
    ConnKey,
    DimensionMismatch,
    GraphKey,
    GraphRecord,
    GraphStatsRecord,
    MissingDataError,
    RecordIndex,
    SeriesKey,
    TimeSeriesRecord,
    load_mat_timeseries,
    record_path,
)

from conngraph.connectome.functional_connectivity import (
    compute_correlation_matrix,
    compute_functional_connectivity,
    compute_partial_correlation_matrix,
    connectivity_from_record,
    fisher_z_transform,
    inverse_fisher_z_transform,
    merge_timeseries,
)

from conngraph.connectome.thresholding import (
    autofix,
    binarize_matrix,
    discard_negative,
    threshold_absolute,
    threshold_connectivity,
    threshold_graph,
    threshold_proportional,
)

from conngraph.connectome.graph_metrics import (
    GraphMetrics,
    NetworkXMetrics,
    compute_graph_stats,
    graph_stats_from_record,
)

from conngraph.connectome.compile_stats import (
    assign_classes,
    build_feature_table,
    build_feature_tables,
    build_summary_table,
    compile_graph_stats,
    compile_graph_stats_ml,
)

__all__ = [
    # Store
    'MERGED_ATLAS',
    'SeriesKey',
    'ConnKey',
    'GraphKey',
    'TimeSeriesRecord',
    'ConnectivityRecord',
    'GraphRecord',
    'GraphStatsRecord',
    'RecordIndex',
    'MissingDataError',
    'DimensionMismatch',
    'load_mat_timeseries',
    'record_path',
    # Functional connectivity
    'compute_functional_connectivity',
    'compute_correlation_matrix',
    'compute_partial_correlation_matrix',
    'connectivity_from_record',
    'fisher_z_transform',
    'inverse_fisher_z_transform',
    'merge_timeseries',
    # Thresholding
    'threshold_graph',
    'threshold_connectivity',
    'threshold_absolute',
    'threshold_proportional',
    'discard_negative',
    'binarize_matrix',
    'autofix',
    # Graph metrics
    'GraphMetrics',
    'NetworkXMetrics',
    'compute_graph_stats',
    'graph_stats_from_record',
    # Compilation
    'assign_classes',
    'build_summary_table',
    'build_feature_tables',
    'build_feature_table',
    'compile_graph_stats',
    'compile_graph_stats_ml',
]
