#!/usr/bin/env python3
"""
Batch Graph Thresholding

Threshold every selected connectivity matrix at one or more weights.

Outputs are saved to:
    {output-dir}/{atlas}/{condition}/{thresh}_{wei|bin}_{weight:.2f}/
        └── graphs_{subject}_{conn}_{atlas}_{thresh}_{wei|bin}_{weight:.2f}.npz
    {output-dir}/index.json
    {output-dir}/batch_processing_summary.json
    {output-dir}/logs/

Usage:
    # Proportional thresholds 0.01..1.00, weighted, negatives discarded
    python -m conngraph.connectome.batch_threshold_graphs \
        --conn-dir /data/study/connectivity \
        --output-dir /data/study/graphs

    # Absolute threshold, binarized
    python -m conngraph.connectome.batch_threshold_graphs \
        --conn-dir /data/study/connectivity \
        --output-dir /data/study/graphs \
        --thresh-type absolute --thresh-weights 0.3 0.4 --binarize
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from conngraph.config import (
    ConfigurationError,
    validate_conn_type,
    validate_selection,
    validate_thresh_weights,
)
from conngraph.connectome.store import (
    ConnectivityRecord,
    ConnKey,
    DimensionMismatch,
    GraphKey,
    MissingDataError,
    RecordIndex,
    record_path,
)
from conngraph.connectome.thresholding import graph_type_label, threshold_connectivity
from conngraph.utils.batch import run_units, write_summary
from conngraph.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def process_connectivity_matrix(
    conn_file: str,
    conn_key: ConnKey,
    thresh_type: str,
    thresh_weights: List[float],
    binarize: bool,
    neg_discard: bool,
    output_dir: str
) -> Dict:
    """
    Threshold one connectivity matrix at every weight

    Returns:
        Dictionary with results and status
    """
    result = {
        'atlas': conn_key.atlas,
        'condition': conn_key.condition,
        'subject': conn_key.subject,
        'conn_type': conn_key.conn_type,
    }

    logger.info(f"Subject: {conn_key.subject} | Condition: {conn_key.condition} | Atlas: {conn_key.atlas}")

    try:
        record = ConnectivityRecord.load(Path(conn_file))
        graphs = threshold_connectivity(
            record,
            thresh_type=thresh_type,
            thresh_weights=thresh_weights,
            binarize=binarize,
            neg_discard=neg_discard,
            input_dir=str(Path(conn_file).parent),
        )

        outputs = []
        for weight, graph in graphs:
            key = GraphKey(
                conn_key.atlas, conn_key.condition, conn_key.subject, conn_key.conn_type,
                thresh_type, graph_type_label(binarize), weight,
            )
            outputs.append(str(graph.save(record_path('graphs', Path(output_dir), key))))

        logger.info(f"  ✓ Saved {len(outputs)} graph(s)")
        result.update({'status': 'success', 'n_graphs': len(outputs), 'outputs': outputs})

    except DimensionMismatch:
        raise

    except MissingDataError as e:
        logger.warning(f"  Skipping {conn_key.subject}/{conn_key.condition}: {e}")
        result.update({'status': 'skipped', 'error': str(e)})

    except Exception as e:
        logger.error(f"  ✗ Failed: {str(e)}", exc_info=True)
        result.update({'status': 'failed', 'error': str(e)})

    return result


def run_threshold_graphs(
    conn_dir: Path,
    output_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: Optional[str] = None,
    thresh_type: str = 'proportional',
    thresh_weights: Union[None, float, Sequence[float]] = None,
    binarize: bool = False,
    neg_discard: bool = True,
    n_jobs: int = 1
) -> Dict:
    """
    Threshold every selected connectivity matrix

    Args:
        conn_dir: Connectivity root
        output_dir: Graph root
        atlases: 'all' or atlas names (use 'merged_atlases' for merged runs)
        conditions: 'all' or condition names
        subjects: 'all' or subject IDs (explicit names are strict)
        conn_type: Only matrices of this type (default: any)
        thresh_type: 'absolute' or 'proportional'
        thresh_weights: Weight(s); proportional defaults to 0.01..1.00
        binarize: Produce binary graphs
        neg_discard: Zero negative weights after thresholding
        n_jobs: Parallel jobs (1 = serial)

    Returns:
        Run summary (also written to batch_processing_summary.json)
    """
    if conn_type is not None:
        validate_conn_type(conn_type)
    weights = validate_thresh_weights(thresh_type, thresh_weights)
    atlases = validate_selection('atlases', atlases)
    conditions = validate_selection('conditions', conditions)
    subjects = validate_selection('subjects', subjects)

    output_dir = Path(output_dir)
    index = RecordIndex.open('connectivity', conn_dir)

    logger.info("=" * 80)
    logger.info("BATCH GRAPH THRESHOLDING")
    logger.info("=" * 80)
    logger.info(f"Connectivity directory: {conn_dir}")
    logger.info(f"Output directory: {output_dir}")
    logger.info(f"Threshold: {thresh_type} ({len(weights)} weight(s): "
                f"{weights[0]:.2f}..{weights[-1]:.2f})")
    logger.info(f"Binarize: {binarize} | Discard negative: {neg_discard}")

    keys = index.select(atlases, conditions, subjects, conn_type=conn_type)
    units = [
        {
            'conn_file': str(index.path(key)),
            'conn_key': key,
            'thresh_type': thresh_type,
            'thresh_weights': weights,
            'binarize': bool(binarize),
            'neg_discard': bool(neg_discard),
            'output_dir': str(output_dir),
        }
        for key in keys
    ]

    logger.info(f"\nTotal matrices to threshold: {len(units)}")
    results = run_units(process_connectivity_matrix, units, n_jobs=n_jobs)

    RecordIndex.scan('graphs', output_dir).save()

    return write_summary(output_dir, 'batch graph thresholding', results, {
        'conn_dir': str(conn_dir),
        'atlases': atlases,
        'conditions': conditions,
        'subjects': subjects,
        'conn_type': conn_type,
        'thresh_type': thresh_type,
        'thresh_weights': weights,
        'binarize': bool(binarize),
        'neg_discard': bool(neg_discard),
        'n_jobs': n_jobs,
    })


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Threshold connectivity matrices into graphs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default proportional thresholds
  python -m conngraph.connectome.batch_threshold_graphs \\
      --conn-dir /data/conn --output-dir /data/graphs

  # Absolute threshold at 0.3, binary graphs, keep negative weights
  python -m conngraph.connectome.batch_threshold_graphs \\
      --conn-dir /data/conn --output-dir /data/graphs \\
      --thresh-type absolute --thresh-weights 0.3 --binarize --keep-negative
        """
    )

    parser.add_argument('--conn-dir', type=Path, required=True,
                        help='Connectivity root directory')
    parser.add_argument('--output-dir', type=Path, required=True,
                        help='Output directory for graphs')
    parser.add_argument('--atlases', nargs='+', default=['all'])
    parser.add_argument('--conditions', nargs='+', default=['all'])
    parser.add_argument('--subjects', nargs='+', default=['all'])
    parser.add_argument('--conn-type', choices=['corr', 'fisher', 'partcorr'],
                        help='Only threshold matrices of this type (default: any)')
    parser.add_argument('--thresh-type', default='proportional',
                        choices=['absolute', 'proportional'],
                        help='Threshold type (default: proportional)')
    parser.add_argument('--thresh-weights', nargs='+', type=float,
                        help='Threshold weight(s); required for absolute')
    parser.add_argument('--binarize', action='store_true',
                        help='Binarize surviving edges')
    parser.add_argument('--keep-negative', action='store_true',
                        help='Keep negative weights (default: discard)')
    parser.add_argument('--n-jobs', type=int, default=1)
    parser.add_argument('--verbose', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)

    setup_logging(args.output_dir, 'batch_threshold_graphs', verbose=args.verbose)

    try:
        summary = run_threshold_graphs(
            conn_dir=args.conn_dir,
            output_dir=args.output_dir,
            atlases=args.atlases[0] if len(args.atlases) == 1 else args.atlases,
            conditions=args.conditions[0] if len(args.conditions) == 1 else args.conditions,
            subjects=args.subjects[0] if len(args.subjects) == 1 else args.subjects,
            conn_type=args.conn_type,
            thresh_type=args.thresh_type,
            thresh_weights=args.thresh_weights,
            binarize=args.binarize,
            neg_discard=not args.keep_negative,
            n_jobs=args.n_jobs,
        )
    except (ConfigurationError, MissingDataError, DimensionMismatch) as e:
        logger.error(f"✗ {e}")
        sys.exit(2)

    sys.exit(0 if summary['failed'] == 0 else 1)


if __name__ == '__main__':
    main()
