#!/usr/bin/env python3
"""
Compile Graph Statistics

Flatten per-subject graph statistics into subject-by-feature tables.

Outputs:
    Summary tables (one per atlas / condition / threshold combination):
        {output_dir}/{atlas}/{condition}/
            ├── graph_stats_all_{conn}_{atlas}_{condition}_{thresh}_{wei|bin}_{weight}.csv
            └── graph_stats_all_{conn}_{atlas}_{condition}_{thresh}_{wei|bin}_{weight}_rois.json

    Feature tables for machine learning:
        {output_dir}/Features_{condition}_{atlas}_{conn}_{thresh}_{wei|bin}_{weight}/
            ├── NetworkMeasures.csv
            ├── Degrees.csv
            └── ...                  # one CSV per nodal metric

Averages across ROIs ignore NaN; a subject row is never dropped.
"""

import fnmatch
import json
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from conngraph.config import validate_class0
from conngraph.connectome.store import (
    DimensionMismatch,
    GraphKey,
    GraphStatsRecord,
    MissingDataError,
    RecordIndex,
)

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    'subject_ID', 'conn_type', 'thresh_type', 'thresh_weight',
    'num_nodes', 'num_edges', 'average_degree', 'density',
    'average_cluscoeff', 'transitivity', 'global_efficiency',
    'maximum_modularity', 'assortativity', 'charpathlen',
    'average_eccentricity', 'radius', 'diameter',
    'average_betweenness_centrality',
    'average_edge_betweenness_centrality',
    'average_eigenvector_centrality', 'average_pagerank_centrality',
]

# sheet name -> nodal metric
FEATURE_SHEETS = OrderedDict([
    ('Degrees', 'degree'),
    ('ClusteringCoeff', 'clustering_coeff'),
    ('LocalEfficiency', 'local_efficiency'),
    ('CommunityStructure', 'community'),
    ('Eccentricity', 'eccentricity'),
    ('BetweennessCent', 'betweenness_centrality'),
    ('ModZScore', 'module_degree_zscore'),
    ('ParticipationCoeff', 'participation_coeff'),
    ('EigenvecCent', 'eigenvector_centrality'),
    ('SubgraphCent', 'subgraph_centrality'),
    ('KCoreness', 'kcoreness'),
    ('KCorenessSize', 'kcore_size'),
    ('Vulnerability', 'vulnerability'),
])

# NetworkMeasures column -> ('nodal' | 'global', metric)
NETWORK_MEASURES = OrderedDict([
    ('AvgDegree', ('nodal', 'degree')),
    ('AvgClusCoeff', ('nodal', 'clustering_coeff')),
    ('Transitivity', ('global', 'transitivity')),
    ('GlobEfficiency', ('global', 'global_efficiency')),
    ('AvgCommStr', ('nodal', 'community')),
    ('MaxModularity', ('global', 'max_modularity')),
    ('Assortativity', ('global', 'assortativity')),
    ('Charpathlen', ('global', 'charpathlen')),
    ('EfficiencyExcInf', ('global', 'efficiency_excl_inf')),
    ('AvgEccentricity', ('nodal', 'eccentricity')),
    ('Radius', ('global', 'radius')),
    ('Diameter', ('global', 'diameter')),
    ('AvgBetweenCentr', ('nodal', 'betweenness_centrality')),
    ('AvgModZScore', ('nodal', 'module_degree_zscore')),
    ('AvgPartCoeff', ('nodal', 'participation_coeff')),
    ('AvgEigenCent', ('nodal', 'eigenvector_centrality')),
    ('AvgSubgraphCent', ('nodal', 'subgraph_centrality')),
    ('AvgCoreness', ('nodal', 'kcoreness')),
    ('AvgVulnerability', ('nodal', 'vulnerability')),
])

SubjectRecords = Sequence[Tuple[str, GraphStatsRecord]]


def nanmean(values) -> float:
    """Mean ignoring NaN; NaN when nothing is left"""
    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    return float(np.mean(values)) if values.size else np.nan


def _eccentricity(record: GraphStatsRecord) -> np.ndarray:
    # unreachable nodes count as 0
    return np.nan_to_num(record.nodal['eccentricity'], nan=0.0)


def _nodal(record: GraphStatsRecord, metric: str) -> np.ndarray:
    if metric == 'eccentricity':
        return _eccentricity(record)
    if metric not in record.nodal:
        raise KeyError(f"Nodal metric '{metric}' missing from graph statistics record")
    return record.nodal[metric]


def assign_classes(subjects: Sequence[str], class0: Union[str, Sequence[str]]) -> np.ndarray:
    """
    Binary class labels for subjects

    Args:
        subjects: Subject IDs
        class0: Either a wildcard string matched case-insensitively anywhere
            in the ID ('HS', 'sub-HS*', 'sub-??01'), or a list of subject IDs
            matched exactly

    Returns:
        Array with 0 for class-0 subjects and 1 for everyone else
    """
    class0 = validate_class0(class0)
    if class0 is None:
        raise ValueError("class0 must be given to assign classes")

    if isinstance(class0, str):
        pattern = f"*{class0.lower()}*"
        return np.array([
            0 if fnmatch.fnmatchcase(subject.lower(), pattern) else 1
            for subject in subjects
        ], dtype=int)

    members = set(class0)
    return np.array([0 if subject in members else 1 for subject in subjects], dtype=int)


def _check_unique(records: SubjectRecords):
    subjects = [subject for subject, _ in records]
    duplicates = sorted({s for s in subjects if subjects.count(s) > 1})
    if duplicates:
        raise ValueError(f"Duplicate subjects in graph statistics: {duplicates}")


def build_summary_table(
    records: SubjectRecords,
    conn_type: str,
    thresh_type: str,
    thresh_weight: float,
    class0: Union[None, str, Sequence[str]] = None
) -> pd.DataFrame:
    """
    One row per subject of averaged nodal and global metrics

    Args:
        records: (subject, GraphStatsRecord) pairs
        conn_type: Connectivity type written to every row
        thresh_type: Threshold type written to every row
        thresh_weight: Threshold weight written to every row
        class0: Optional class-0 specification; adds a 'class' column

    Returns:
        DataFrame with SUMMARY_COLUMNS (+ 'class')
    """
    _check_unique(records)

    rows = []
    for subject, record in records:
        g = record.global_metrics
        rows.append({
            'subject_ID': subject,
            'conn_type': conn_type,
            'thresh_type': thresh_type,
            'thresh_weight': float(thresh_weight),
            'num_nodes': int(g['num_nodes']),
            'num_edges': int(g['num_edges']),
            'average_degree': nanmean(record.nodal['degree']),
            'density': g['density'],
            'average_cluscoeff': nanmean(record.nodal['clustering_coeff']),
            'transitivity': g['transitivity'],
            'global_efficiency': g['global_efficiency'],
            'maximum_modularity': g['max_modularity'],
            'assortativity': g['assortativity'],
            'charpathlen': g['charpathlen'],
            'average_eccentricity': nanmean(record.nodal['eccentricity']),
            'radius': g['radius'],
            'diameter': g['diameter'],
            'average_betweenness_centrality': nanmean(record.nodal['betweenness_centrality']),
            'average_edge_betweenness_centrality': g['mean_edge_betweenness'],
            'average_eigenvector_centrality': nanmean(record.nodal['eigenvector_centrality']),
            'average_pagerank_centrality': nanmean(record.nodal['pagerank_centrality']),
        })

    table = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
    if class0 is not None:
        table['class'] = assign_classes(table['subject_ID'].tolist(), class0)
    return table


def strip_atlas_prefix(roi_names: Sequence[str], atlas: Optional[str]) -> List[str]:
    """Drop a leading '<atlas>.' from ROI names"""
    if not atlas:
        return list(roi_names)
    prefix = f"{atlas}."
    return [name[len(prefix):] if name.startswith(prefix) else name for name in roi_names]


def _common_rois(records: SubjectRecords) -> List[str]:
    roi_names = records[0][1].roi_names
    for subject, record in records[1:]:
        if record.roi_names != roi_names:
            raise DimensionMismatch(
                f"ROI list of {subject} differs from {records[0][0]}; "
                "feature tables need identical ROIs for every subject"
            )
    return roi_names


def build_feature_tables(
    records: SubjectRecords,
    atlas: Optional[str] = None,
    class0: Union[None, str, Sequence[str]] = None
) -> Dict[str, pd.DataFrame]:
    """
    Per-metric wide tables for machine learning

    Returns:
        Ordered mapping sheet name -> DataFrame. 'NetworkMeasures' holds the
        averaged and global metrics; every other sheet has columns
        SubjectID, Class, <roi...>. Class is present only when class0 is given.
    """
    if not records:
        raise ValueError("No graph statistics records to compile")
    _check_unique(records)

    subjects = [subject for subject, _ in records]
    rois = strip_atlas_prefix(_common_rois(records), atlas)
    classes = assign_classes(subjects, class0) if class0 is not None else None

    def _frame(data: Dict[str, List]) -> pd.DataFrame:
        frame = pd.DataFrame(data)
        frame.insert(0, 'SubjectID', subjects)
        if classes is not None:
            frame.insert(1, 'Class', classes)
        return frame

    tables: Dict[str, pd.DataFrame] = OrderedDict()

    measures = OrderedDict((column, []) for column in NETWORK_MEASURES)
    for _, record in records:
        for column, (source, metric) in NETWORK_MEASURES.items():
            if source == 'nodal':
                measures[column].append(nanmean(_nodal(record, metric)))
            else:
                measures[column].append(record.global_metrics.get(metric, np.nan))
    tables['NetworkMeasures'] = _frame(measures)

    for sheet, metric in FEATURE_SHEETS.items():
        values = np.vstack([_nodal(record, metric) for _, record in records])
        tables[sheet] = _frame(OrderedDict(
            (roi, values[:, i]) for i, roi in enumerate(rois)
        ))

    return tables


def build_feature_table(
    records: SubjectRecords,
    atlas: Optional[str] = None,
    class0: Union[None, str, Sequence[str]] = None,
    metrics: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Single wide table: one row per subject, '<metric>_<roi>' nodal columns
    followed by the global metrics (and 'class' when class0 is given)
    """
    if not records:
        raise ValueError("No graph statistics records to compile")
    _check_unique(records)

    rois = strip_atlas_prefix(_common_rois(records), atlas)
    metrics = list(metrics) if metrics is not None else list(FEATURE_SHEETS.values())

    rows = []
    for subject, record in records:
        row = OrderedDict(subject_ID=subject)
        for metric in metrics:
            values = record.nodal.get(metric)
            if values is None:
                values = np.full(len(rois), np.nan)
            for roi, value in zip(rois, values):
                row[f"{metric}_{roi}"] = float(value)
        row.update(record.global_metrics)
        rows.append(row)

    table = pd.DataFrame(rows)
    if class0 is not None:
        table['class'] = assign_classes(table['subject_ID'].tolist(), class0)
    return table


def collect_stats(
    stats_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: Optional[str] = None,
    thresh_type: Optional[str] = None,
    graph_type: Optional[str] = None,
    thresh_weights: Optional[Sequence[float]] = None
) -> Dict[Tuple, List[Tuple[str, GraphStatsRecord]]]:
    """
    Load graph statistics grouped by (atlas, condition, conn, thresh, graph type, weight)

    Explicit subject lists are strict: a requested subject missing from any
    selected combination raises MissingDataError. With subjects='all' an
    unreadable file is logged and skipped.
    """
    index = RecordIndex.open('graph_stats', stats_dir)
    keys = index.select(
        atlases, conditions, subjects,
        conn_type=conn_type, thresh_type=thresh_type, graph_type=graph_type,
    )
    if thresh_weights is not None:
        wanted = {round(float(w), 2) for w in thresh_weights}
        keys = [key for key in keys if key.weight in wanted]

    explicit_subjects = None if (subjects is None or subjects == 'all') else (
        [subjects] if isinstance(subjects, str) else list(subjects)
    )

    groups: Dict[Tuple, List[GraphKey]] = OrderedDict()
    for key in keys:
        group = (key.atlas, key.condition, key.conn_type, key.thresh_type, key.graph_type, key.weight)
        groups.setdefault(group, []).append(key)

    loaded: Dict[Tuple, List[Tuple[str, GraphStatsRecord]]] = OrderedDict()
    for group, group_keys in groups.items():
        if explicit_subjects is not None:
            present = {key.subject for key in group_keys}
            missing = [s for s in explicit_subjects if s not in present]
            if missing:
                raise MissingDataError(
                    f"Graph statistics missing for {missing} in {'/'.join(map(str, group))}"
                )

        records = []
        for key in group_keys:
            try:
                records.append((key.subject, index.load(key)))
            except (OSError, ValueError, KeyError) as e:
                if explicit_subjects is not None:
                    raise
                logger.warning(f"  Skipping unreadable graph statistics for {key.subject}: {e}")
        if records:
            loaded[group] = records

    if not loaded:
        logger.warning(f"No graph statistics found under {stats_dir}")
    return loaded


def compile_graph_stats(
    stats_dir: Path,
    output_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: Optional[str] = None,
    thresh_type: Optional[str] = None,
    graph_type: Optional[str] = None,
    thresh_weights: Optional[Sequence[float]] = None,
    class0: Union[None, str, Sequence[str]] = None
) -> List[Path]:
    """
    Write one summary CSV per atlas / condition / threshold combination

    Returns:
        Paths of the CSV files written
    """
    groups = collect_stats(
        stats_dir, atlases, conditions, subjects,
        conn_type, thresh_type, graph_type, thresh_weights,
    )

    written = []
    for (atlas, condition, conn, thresh, gtype, weight), records in groups.items():
        table = build_summary_table(records, conn, thresh, weight, class0=class0)

        save_dir = Path(output_dir) / atlas / condition
        save_dir.mkdir(parents=True, exist_ok=True)
        out_name = f"graph_stats_all_{conn}_{atlas}_{condition}_{thresh}_{gtype}_{weight:.2f}"

        csv_file = save_dir / f"{out_name}.csv"
        table.to_csv(csv_file, index=False)

        first = records[0][1]
        with open(save_dir / f"{out_name}_rois.json", 'w') as f:
            json.dump({
                'header': list(table.columns),
                'roi_names': first.roi_names,
                'xyz': first.xyz.tolist(),
            }, f, indent=2)

        logger.info(f"  ✓ {csv_file.name} ({len(table)} subjects)")
        written.append(csv_file)

    return written


def compile_graph_stats_ml(
    stats_dir: Path,
    output_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: Optional[str] = None,
    thresh_type: Optional[str] = None,
    graph_type: Optional[str] = None,
    thresh_weights: Optional[Sequence[float]] = None,
    class0: Union[None, str, Sequence[str]] = None
) -> List[Path]:
    """
    Write per-metric feature tables, one folder per combination

    Returns:
        Paths of the Features_* folders written
    """
    groups = collect_stats(
        stats_dir, atlases, conditions, subjects,
        conn_type, thresh_type, graph_type, thresh_weights,
    )

    written = []
    for (atlas, condition, conn, thresh, gtype, weight), records in groups.items():
        tables = build_feature_tables(records, atlas=atlas, class0=class0)

        feature_dir = Path(output_dir) / f"Features_{condition}_{atlas}_{conn}_{thresh}_{gtype}_{weight:.2f}"
        feature_dir.mkdir(parents=True, exist_ok=True)
        for sheet, table in tables.items():
            table.to_csv(feature_dir / f"{sheet}.csv", index=False)

        logger.info(f"  ✓ {feature_dir.name}: {len(tables)} tables, {len(records)} subjects")
        written.append(feature_dir)

    return written
