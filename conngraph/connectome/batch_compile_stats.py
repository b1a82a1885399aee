#!/usr/bin/env python3
"""
Batch Compile Graph Statistics

Gather per-subject graph statistics into summary tables and ML feature
tables. Runs after graph metrics for every subject have finished.

Outputs are saved to:
    {output-dir}/{atlas}/{condition}/graph_stats_all_*.csv     # summary per combination
    {output-dir}/Features_{condition}_{atlas}_*/               # per-metric feature tables
    {output-dir}/batch_processing_summary.json
    {output-dir}/logs/

Usage:
    python -m conngraph.connectome.batch_compile_stats \
        --stats-dir /data/study/graph_stats \
        --output-dir /data/study/features \
        --class0 HS
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from conngraph.config import (
    ConfigurationError,
    validate_class0,
    validate_conn_type,
    validate_graph_type,
    validate_selection,
    validate_thresh_type,
)
from conngraph.connectome.compile_stats import compile_graph_stats, compile_graph_stats_ml
from conngraph.connectome.store import DimensionMismatch, MissingDataError
from conngraph.utils.batch import write_summary
from conngraph.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def run_compile_stats(
    stats_dir: Path,
    output_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: Optional[str] = None,
    thresh_type: Optional[str] = None,
    graph_type: Optional[str] = None,
    thresh_weights: Optional[Sequence[float]] = None,
    class0: Union[None, str, Sequence[str]] = None,
    features: bool = True
) -> Dict:
    """
    Compile summary (and optionally feature) tables

    An explicit subject list is strict: a missing statistics file aborts the
    whole compilation with MissingDataError so every table stays
    subject-aligned.

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
    class0 = validate_class0(class0)

    output_dir = Path(output_dir)

    logger.info("=" * 80)
    logger.info("COMPILE GRAPH STATISTICS")
    logger.info("=" * 80)
    logger.info(f"Statistics directory: {stats_dir}")
    logger.info(f"Output directory: {output_dir}")
    logger.info(f"Class 0: {class0 if class0 is not None else 'none (no class column)'}")

    selection = dict(
        atlases=atlases, conditions=conditions, subjects=subjects,
        conn_type=conn_type, thresh_type=thresh_type, graph_type=graph_type,
        thresh_weights=thresh_weights, class0=class0,
    )

    results: List[Dict] = []
    logger.info("\nSummary tables:")
    for path in compile_graph_stats(stats_dir, output_dir, **selection):
        results.append({'table': 'summary', 'status': 'success', 'output': str(path)})

    if features:
        logger.info("\nFeature tables:")
        for path in compile_graph_stats_ml(stats_dir, output_dir, **selection):
            results.append({'table': 'features', 'status': 'success', 'output': str(path)})

    parameters = {'stats_dir': str(stats_dir), 'features': features, **selection}
    return write_summary(output_dir, 'compile graph statistics', results, parameters)


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Compile graph statistics into subject-by-feature tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Wildcard class assignment: IDs containing 'HS' are class 0
  python -m conngraph.connectome.batch_compile_stats \\
      --stats-dir /data/graph_stats --output-dir /data/features --class0 HS

  # Explicit class-0 list, summary tables only
  python -m conngraph.connectome.batch_compile_stats \\
      --stats-dir /data/graph_stats --output-dir /data/features \\
      --class0 sub-01 sub-04 --no-features
        """
    )

    parser.add_argument('--stats-dir', type=Path, required=True,
                        help='Graph statistics root directory')
    parser.add_argument('--output-dir', type=Path, required=True,
                        help='Output directory for tables')
    parser.add_argument('--atlases', nargs='+', default=['all'])
    parser.add_argument('--conditions', nargs='+', default=['all'])
    parser.add_argument('--subjects', nargs='+', default=['all'])
    parser.add_argument('--conn-type', choices=['corr', 'fisher', 'partcorr'])
    parser.add_argument('--thresh-type', choices=['absolute', 'proportional'])
    parser.add_argument('--graph-type', choices=['wei', 'bin'])
    parser.add_argument('--thresh-weights', nargs='+', type=float)
    parser.add_argument('--class0', nargs='+',
                        help='One wildcard pattern, or several subject IDs, for class 0')
    parser.add_argument('--no-features', action='store_true',
                        help='Only write the summary tables')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)

    setup_logging(args.output_dir, 'batch_compile_stats', verbose=args.verbose)

    class0 = None
    if args.class0:
        class0 = args.class0[0] if len(args.class0) == 1 else args.class0

    try:
        run_compile_stats(
            stats_dir=args.stats_dir,
            output_dir=args.output_dir,
            atlases=args.atlases[0] if len(args.atlases) == 1 else args.atlases,
            conditions=args.conditions[0] if len(args.conditions) == 1 else args.conditions,
            subjects=args.subjects[0] if len(args.subjects) == 1 else args.subjects,
            conn_type=args.conn_type,
            thresh_type=args.thresh_type,
            graph_type=args.graph_type,
            thresh_weights=args.thresh_weights,
            class0=class0,
            features=not args.no_features,
        )
    except (ConfigurationError, MissingDataError, DimensionMismatch) as e:
        logger.error(f"✗ {e}")
        sys.exit(2)

    sys.exit(0)


if __name__ == '__main__':
    main()
