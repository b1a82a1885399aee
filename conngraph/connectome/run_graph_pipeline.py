#!/usr/bin/env python3
"""
Connectivity Graph Pipeline

Run all four stages from one YAML configuration:

    timeseries -> connectivity -> graphs -> graph statistics -> feature tables

Each stage finishes for every unit before the next one starts.

Usage:
    # Full run
    conngraph run --config study.yaml

    # Check a configuration without processing anything
    conngraph validate --config study.yaml
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from conngraph.config import (
    ConfigurationError,
    get_config_value,
    load_config,
    validate_config,
    validate_flag,
    validate_thresh_weights,
)
from conngraph.connectome.batch_compile_stats import run_compile_stats
from conngraph.connectome.batch_functional_connectivity import run_functional_connectivity
from conngraph.connectome.batch_graph_metrics import run_graph_metrics
from conngraph.connectome.batch_threshold_graphs import run_threshold_graphs
from conngraph.connectome.store import MERGED_ATLAS, DimensionMismatch, MissingDataError
from conngraph.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def run_pipeline(config: Dict[str, Any]) -> Dict[str, Dict]:
    """
    Run connectivity, thresholding, graph metrics and compilation

    Args:
        config: Loaded configuration (see configs/default.yaml)

    Returns:
        Dictionary of stage name -> run summary

    Raises:
        ConfigurationError: Invalid configuration (nothing is processed)
        MissingDataError: An explicitly requested unit is missing
        DimensionMismatch: Inconsistent shapes
    """
    validate_config(config)

    ts_dir = Path(get_config_value(config, 'paths.timeseries_dir'))
    if not ts_dir.exists():
        raise ConfigurationError(f"paths.timeseries_dir does not exist: {ts_dir}")

    output_root = Path(get_config_value(config, 'paths.output_root', '.'))
    conn_dir = Path(get_config_value(config, 'paths.connectivity_dir', output_root / 'connectivity'))
    graphs_dir = Path(get_config_value(config, 'paths.graphs_dir', output_root / 'graphs'))
    stats_dir = Path(get_config_value(config, 'paths.stats_dir', output_root / 'graph_stats'))
    features_dir = Path(get_config_value(config, 'paths.features_dir', output_root / 'features'))

    atlases = get_config_value(config, 'selection.atlases', 'all')
    conditions = get_config_value(config, 'selection.conditions', 'all')
    subjects = get_config_value(config, 'selection.subjects', 'all')
    n_jobs = get_config_value(config, 'n_jobs', 1)

    conn_type = get_config_value(config, 'connectivity.conn_type', 'fisher')
    thresh_type = get_config_value(config, 'thresholding.thresh_type', 'proportional')
    thresh_weights = validate_thresh_weights(
        thresh_type, get_config_value(config, 'thresholding.thresh_weights')
    )
    binarize = validate_flag('binarize', get_config_value(config, 'thresholding.binarize', False))
    neg_discard = validate_flag('neg_discard', get_config_value(config, 'thresholding.neg_discard', True))
    graph_type = get_config_value(config, 'graph.graph_type', 'wei')
    normalize = validate_flag('normalize_weights', get_config_value(config, 'graph.normalize_weights', True))
    seed = get_config_value(config, 'graph.community_seed', 0)

    classwise = validate_flag('classwise', get_config_value(config, 'compile.classwise', False))
    class0 = get_config_value(config, 'compile.class0') if classwise else None
    features = validate_flag('features', get_config_value(config, 'compile.features', True))

    # downstream stages see the merged atlas as a single atlas
    downstream_atlases = MERGED_ATLAS if atlases == 'merge' else atlases

    logger.info("=" * 80)
    logger.info("CONNECTIVITY GRAPH PIPELINE")
    logger.info("=" * 80)

    summaries = {}
    summaries['connectivity'] = run_functional_connectivity(
        ts_dir, conn_dir,
        atlases=atlases, conditions=conditions, subjects=subjects,
        conn_type=conn_type, n_jobs=n_jobs,
    )
    summaries['graphs'] = run_threshold_graphs(
        conn_dir, graphs_dir,
        atlases=downstream_atlases, conditions=conditions, subjects=subjects,
        conn_type=conn_type, thresh_type=thresh_type, thresh_weights=thresh_weights,
        binarize=binarize, neg_discard=neg_discard, n_jobs=n_jobs,
    )
    summaries['graph_stats'] = run_graph_metrics(
        graphs_dir, stats_dir,
        atlases=downstream_atlases, conditions=conditions, subjects=subjects,
        conn_type=conn_type, thresh_type=thresh_type, graph_type=graph_type,
        thresh_weights=thresh_weights, normalize=normalize, seed=seed, n_jobs=n_jobs,
    )
    summaries['features'] = run_compile_stats(
        stats_dir, features_dir,
        atlases=downstream_atlases, conditions=conditions, subjects=subjects,
        conn_type=conn_type, thresh_type=thresh_type, graph_type=graph_type,
        thresh_weights=thresh_weights, class0=class0, features=features,
    )

    logger.info("\n" + "=" * 80)
    logger.info("PIPELINE COMPLETE")
    logger.info("=" * 80)
    for stage, summary in summaries.items():
        logger.info(
            f"  {stage}: {summary['successful']} successful, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )

    return summaries


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Connectivity graph pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  conngraph run --config study.yaml
  conngraph validate --config study.yaml
        """
    )
    subparsers = parser.add_subparsers(dest='command', help='Command')

    run_parser = subparsers.add_parser('run', help='Run every stage')
    run_parser.add_argument('--config', type=Path, required=True, help='Study YAML config')
    run_parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')

    validate_parser = subparsers.add_parser('validate', help='Validate a config and print it')
    validate_parser.add_argument('--config', type=Path, required=True, help='Study YAML config')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"✗ Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == 'validate':
        print(json.dumps(config, indent=2, default=str))
        print("✓ Configuration is valid")
        sys.exit(0)

    output_root = Path(get_config_value(config, 'paths.output_root', '.'))
    setup_logging(output_root, 'run_graph_pipeline', verbose=args.verbose)

    try:
        summaries = run_pipeline(config)
    except (ConfigurationError, MissingDataError, DimensionMismatch) as e:
        logger.error(f"✗ {e}")
        sys.exit(2)

    failed = sum(summary['failed'] for summary in summaries.values())
    sys.exit(0 if failed == 0 else 1)


if __name__ == '__main__':
    main()
