#!/usr/bin/env python3
"""
Batch Graph Metrics Analysis

Compute graph-theoretic network metrics for thresholded graphs across
subjects, atlases, conditions and threshold weights.

Outputs are saved to:
    {output-dir}/{atlas}/{condition}/graph_stats_{conn}_{thresh}_{wei|bin}_{weight:.2f}/
        └── graph_stats_{subject}_{conn}_{atlas}_{thresh}_{wei|bin}_{weight:.2f}.npz
    {output-dir}/index.json
    {output-dir}/batch_processing_summary.json
    {output-dir}/logs/

Usage:
    # All weighted graphs
    python -m conngraph.connectome.batch_graph_metrics \
        --graphs-dir /data/study/graphs \
        --output-dir /data/study/graph_stats

    # Binary graphs at two weights only
    python -m conngraph.connectome.batch_graph_metrics \
        --graphs-dir /data/study/graphs \
        --output-dir /data/study/graph_stats \
        --graph-type bin --thresh-weights 0.10 0.20
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from conngraph.config import (
    ConfigurationError,
    validate_conn_type,
    validate_graph_type,
    validate_selection,
    validate_thresh_type,
)
from conngraph.connectome.graph_metrics import graph_stats_from_record
from conngraph.connectome.store import (
    DimensionMismatch,
    GraphKey,
    GraphRecord,
    MissingDataError,
    RecordIndex,
    record_path,
)
from conngraph.utils.batch import run_units, write_summary
from conngraph.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def process_graph(
    graph_file: str,
    graph_key: GraphKey,
    normalize: bool,
    seed: int,
    output_dir: str
) -> Dict:
    """
    Compute graph statistics for one adjacency matrix

    Returns:
        Dictionary with results and status
    """
    result = {
        'atlas': graph_key.atlas,
        'condition': graph_key.condition,
        'subject': graph_key.subject,
        'combination': graph_key.combination,
    }

    logger.info(
        f"Subject: {graph_key.subject} | Atlas: {graph_key.atlas} | "
        f"Condition: {graph_key.condition} | {graph_key.combination}"
    )

    try:
        graph = GraphRecord.load(Path(graph_file))
        stats = graph_stats_from_record(
            graph,
            graph_type=graph_key.graph_type,
            normalize=normalize,
            seed=seed,
        )
        out_file = record_path('graph_stats', Path(output_dir), graph_key)
        stats.save(out_file)

        logger.info(f"  ✓ Saved {out_file.name}")
        result.update({
            'status': 'success',
            'num_edges': int(stats.global_metrics['num_edges']),
            'output': str(out_file),
        })

    except DimensionMismatch:
        raise

    except MissingDataError as e:
        logger.warning(f"  Skipping {graph_key.subject}: {e}")
        result.update({'status': 'skipped', 'error': str(e)})

    except Exception as e:
        logger.error(f"  ✗ Failed: {str(e)}", exc_info=True)
        result.update({'status': 'failed', 'error': str(e)})

    return result


def run_graph_metrics(
    graphs_dir: Path,
    output_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: Optional[str] = None,
    thresh_type: Optional[str] = None,
    graph_type: Optional[str] = None,
    thresh_weights: Optional[Sequence[float]] = None,
    normalize: bool = True,
    seed: int = 0,
    n_jobs: int = 1
) -> Dict:
    """
    Compute graph statistics for every selected graph

    Args:
        graphs_dir: Graph root
        output_dir: Graph statistics root
        atlases: 'all' or atlas names
        conditions: 'all' or condition names
        subjects: 'all' or subject IDs (explicit names are strict)
        conn_type: Only graphs built from this connectivity type
        thresh_type: Only graphs of this threshold type
        graph_type: Only 'wei' or 'bin' graphs
        thresh_weights: Only these weights (default: every weight found)
        normalize: Normalize weights for clustering, transitivity and local
            efficiency (weighted graphs)
        seed: Community detection seed
        n_jobs: Parallel jobs (1 = serial)

    Returns:
        Run summary (also written to batch_processing_summary.json)
    """
    if conn_type is not None:
        validate_conn_type(conn_type)
    if thresh_type is not None:
        validate_thresh_type(thresh_type)
    if graph_type is not None:
        validate_graph_type(graph_type)
    atlases = validate_selection('atlases', atlases)
    conditions = validate_selection('conditions', conditions)
    subjects = validate_selection('subjects', subjects)

    output_dir = Path(output_dir)
    index = RecordIndex.open('graphs', graphs_dir)

    logger.info("=" * 80)
    logger.info("BATCH GRAPH METRICS")
    logger.info("=" * 80)
    logger.info(f"Graphs directory: {graphs_dir}")
    logger.info(f"Output directory: {output_dir}")
    logger.info(f"Normalize weights: {normalize} | Community seed: {seed}")

    keys = index.select(
        atlases, conditions, subjects,
        conn_type=conn_type, thresh_type=thresh_type, graph_type=graph_type,
    )
    if thresh_weights is not None:
        wanted = {round(float(w), 2) for w in thresh_weights}
        keys = [key for key in keys if key.weight in wanted]
        found = {key.weight for key in keys}
        for weight in sorted(wanted - found):
            logger.warning(f"No graphs found at threshold weight {weight:.2f}")

    units = [
        {
            'graph_file': str(index.path(key)),
            'graph_key': key,
            'normalize': bool(normalize),
            'seed': int(seed),
            'output_dir': str(output_dir),
        }
        for key in keys
    ]

    logger.info(f"\nTotal graphs to analyse: {len(units)}")
    results = run_units(process_graph, units, n_jobs=n_jobs)

    RecordIndex.scan('graph_stats', output_dir).save()

    return write_summary(output_dir, 'batch graph metrics', results, {
        'graphs_dir': str(graphs_dir),
        'atlases': atlases,
        'conditions': conditions,
        'subjects': subjects,
        'conn_type': conn_type,
        'thresh_type': thresh_type,
        'graph_type': graph_type,
        'thresh_weights': thresh_weights,
        'normalize': bool(normalize),
        'seed': seed,
        'n_jobs': n_jobs,
    })


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Batch graph theory metrics for thresholded graphs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m conngraph.connectome.batch_graph_metrics \\
      --graphs-dir /data/graphs --output-dir /data/graph_stats

  # Binary graphs, no weight normalization, 4 jobs
  python -m conngraph.connectome.batch_graph_metrics \\
      --graphs-dir /data/graphs --output-dir /data/graph_stats \\
      --graph-type bin --n-jobs 4
        """
    )

    parser.add_argument('--graphs-dir', type=Path, required=True,
                        help='Graph root directory')
    parser.add_argument('--output-dir', type=Path, required=True,
                        help='Output directory for graph statistics')
    parser.add_argument('--atlases', nargs='+', default=['all'])
    parser.add_argument('--conditions', nargs='+', default=['all'])
    parser.add_argument('--subjects', nargs='+', default=['all'])
    parser.add_argument('--conn-type', choices=['corr', 'fisher', 'partcorr'])
    parser.add_argument('--thresh-type', choices=['absolute', 'proportional'])
    parser.add_argument('--graph-type', choices=['wei', 'bin'])
    parser.add_argument('--thresh-weights', nargs='+', type=float,
                        help='Only these threshold weights (default: all found)')
    parser.add_argument('--no-normalize', action='store_true',
                        help='Do not normalize weights before clustering/efficiency')
    parser.add_argument('--seed', type=int, default=0,
                        help='Community detection seed (default: 0)')
    parser.add_argument('--n-jobs', type=int, default=1)
    parser.add_argument('--verbose', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)

    setup_logging(args.output_dir, 'batch_graph_metrics', verbose=args.verbose)

    try:
        summary = run_graph_metrics(
            graphs_dir=args.graphs_dir,
            output_dir=args.output_dir,
            atlases=args.atlases[0] if len(args.atlases) == 1 else args.atlases,
            conditions=args.conditions[0] if len(args.conditions) == 1 else args.conditions,
            subjects=args.subjects[0] if len(args.subjects) == 1 else args.subjects,
            conn_type=args.conn_type,
            thresh_type=args.thresh_type,
            graph_type=args.graph_type,
            thresh_weights=args.thresh_weights,
            normalize=not args.no_normalize,
            seed=args.seed,
            n_jobs=args.n_jobs,
        )
    except (ConfigurationError, MissingDataError, DimensionMismatch) as e:
        logger.error(f"✗ {e}")
        sys.exit(2)

    sys.exit(0 if summary['failed'] == 0 else 1)


if __name__ == '__main__':
    main()
