#!/usr/bin/env python3
"""
Batch Functional Connectivity

Compute connectivity matrices from ROI timeseries for every
atlas / condition / subject found under a timeseries root.

Inputs:
    {ts-dir}/{atlas}/{condition}/TS_{atlas}_{condition}_{subject}.(npz|mat)

Outputs are saved to:
    {output-dir}/{atlas}/{condition}/
        └── conn_mat_{conn}_{atlas}_{condition}_{subject}.npz
    {output-dir}/index.json
    {output-dir}/batch_processing_summary.json
    {output-dir}/logs/

With --atlases merge the timeseries of all atlases are concatenated per
subject/condition and written under the atlas name 'merged_atlases'.

Usage:
    # All atlases, conditions and subjects, Fisher z
    python -m conngraph.connectome.batch_functional_connectivity \
        --ts-dir /data/study/timeseries \
        --output-dir /data/study/connectivity

    # Merge atlases, partial correlation, specific subjects
    python -m conngraph.connectome.batch_functional_connectivity \
        --ts-dir /data/study/timeseries \
        --output-dir /data/study/connectivity \
        --atlases merge --conn-type partcorr \
        --subjects sub-HS01 sub-SZ01
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from conngraph.config import (
    ConfigurationError,
    validate_conn_type,
    validate_selection,
)
from conngraph.connectome.functional_connectivity import (
    connectivity_from_record,
    merge_timeseries,
)
from conngraph.connectome.store import (
    MERGED_ATLAS,
    ConnKey,
    DimensionMismatch,
    MissingDataError,
    RecordIndex,
    SeriesKey,
    TimeSeriesRecord,
    record_path,
)
from conngraph.utils.batch import run_units, write_summary
from conngraph.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _load_timeseries(path: Path, key: SeriesKey) -> TimeSeriesRecord:
    record = TimeSeriesRecord.load(path)
    record.notes.update({'atlas': key.atlas, 'condition': key.condition, 'subject': key.subject})
    return record


def process_subject_condition(
    ts_files: List[str],
    series_keys: List[SeriesKey],
    conn_type: str,
    output_dir: str,
    merge: bool = False
) -> Dict:
    """
    Compute connectivity for one subject/condition (one atlas, or all merged)

    Returns:
        Dictionary with results and status

    Raises:
        DimensionMismatch: Merged atlases with different timepoint counts or
            ROI metadata that disagrees with the data
    """
    first = series_keys[0]
    atlas_name = MERGED_ATLAS if merge else first.atlas
    result = {
        'atlas': atlas_name,
        'condition': first.condition,
        'subject': first.subject,
        'conn_type': conn_type,
    }

    logger.info(f"Subject: {first.subject} | Condition: {first.condition} | Atlas: {atlas_name}")

    try:
        records = [
            _load_timeseries(Path(path), key) for path, key in zip(ts_files, series_keys)
        ]
        if merge:
            record = merge_timeseries(records)
            record.notes.update({'condition': first.condition, 'subject': first.subject})
        else:
            record = records[0]

        conn = connectivity_from_record(record, conn_type=conn_type)

        key = ConnKey(atlas_name, first.condition, first.subject, conn_type)
        out_file = record_path('connectivity', Path(output_dir), key)
        conn.save(out_file)

        logger.info(f"  ✓ Saved {out_file.name} ({len(conn.roi_names)} ROIs)")
        result.update({
            'status': 'success',
            'n_rois': len(conn.roi_names),
            'n_timepoints': record.n_timepoints,
            'output': str(out_file),
        })

    except DimensionMismatch:
        raise

    except MissingDataError as e:
        logger.warning(f"  Skipping {first.subject}/{first.condition}: {e}")
        result.update({'status': 'skipped', 'error': str(e)})

    except Exception as e:
        logger.error(f"  ✗ Failed: {str(e)}", exc_info=True)
        result.update({'status': 'failed', 'error': str(e)})

    return result


def _plan_merged(index: RecordIndex, atlases: List[str], conditions, subjects) -> List[Dict]:
    """Units for merge mode: pairs present in every atlas"""
    keys = index.select(atlases, conditions, subjects)
    by_pair: Dict[tuple, Dict[str, SeriesKey]] = {}
    for key in keys:
        by_pair.setdefault((key.condition, key.subject), {})[key.atlas] = key

    units = []
    for (condition, subject), per_atlas in sorted(by_pair.items()):
        missing = [atlas for atlas in atlases if atlas not in per_atlas]
        if missing:
            logger.warning(
                f"Skipping {subject}/{condition}: no timeseries for atlas(es) {missing}"
            )
            continue
        ordered = [per_atlas[atlas] for atlas in atlases]
        units.append({
            'ts_files': [str(index.path(key)) for key in ordered],
            'series_keys': ordered,
        })
    return units


def run_functional_connectivity(
    ts_dir: Path,
    output_dir: Path,
    atlases='all',
    conditions='all',
    subjects='all',
    conn_type: str = 'fisher',
    n_jobs: int = 1
) -> Dict:
    """
    Compute connectivity matrices for every selected timeseries

    Args:
        ts_dir: Timeseries root ({atlas}/{condition}/TS_*.npz|.mat)
        output_dir: Connectivity root
        atlases: 'all', 'merge' or atlas names
        conditions: 'all' or condition names
        subjects: 'all' or subject IDs (explicit names are strict)
        conn_type: 'corr', 'fisher' or 'partcorr'
        n_jobs: Parallel jobs (1 = serial)

    Returns:
        Run summary (also written to batch_processing_summary.json)

    Raises:
        ConfigurationError: Invalid parameters
        MissingDataError: An explicitly requested unit has no timeseries
        DimensionMismatch: Inconsistent shapes (always fatal)
    """
    validate_conn_type(conn_type)
    atlases = validate_selection('atlases', atlases, allow_merge=True)
    conditions = validate_selection('conditions', conditions)
    subjects = validate_selection('subjects', subjects)

    output_dir = Path(output_dir)
    index = RecordIndex.open('timeseries', ts_dir)

    logger.info("=" * 80)
    logger.info("BATCH FUNCTIONAL CONNECTIVITY")
    logger.info("=" * 80)
    logger.info(f"Timeseries directory: {ts_dir}")
    logger.info(f"Output directory: {output_dir}")
    logger.info(f"Connectivity type: {conn_type}")
    logger.info(f"Indexed timeseries: {len(index)}")

    merge = atlases == 'merge'
    if merge:
        atlas_list = index.atlases()
        if not atlas_list:
            raise MissingDataError(f"No timeseries found under {ts_dir}")
        logger.info(f"Merging atlases: {', '.join(atlas_list)}")
        units = _plan_merged(index, atlas_list, conditions, subjects)
    else:
        units = [
            {'ts_files': [str(index.path(key))], 'series_keys': [key]}
            for key in index.select(atlases, conditions, subjects)
        ]

    for unit in units:
        unit.update({'conn_type': conn_type, 'output_dir': str(output_dir), 'merge': merge})

    logger.info(f"\nTotal analyses to run: {len(units)}")
    results = run_units(process_subject_condition, units, n_jobs=n_jobs)

    RecordIndex.scan('connectivity', output_dir).save()

    return write_summary(output_dir, 'batch functional connectivity', results, {
        'ts_dir': str(ts_dir),
        'atlases': atlases,
        'conditions': conditions,
        'subjects': subjects,
        'conn_type': conn_type,
        'n_jobs': n_jobs,
    })


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Batch functional connectivity from ROI timeseries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fisher z connectivity for everything found
  python -m conngraph.connectome.batch_functional_connectivity \\
      --ts-dir /data/ts --output-dir /data/conn

  # Merge atlases, partial correlation
  python -m conngraph.connectome.batch_functional_connectivity \\
      --ts-dir /data/ts --output-dir /data/conn --atlases merge --conn-type partcorr
        """
    )

    parser.add_argument('--ts-dir', type=Path, required=True,
                        help='Timeseries root ({atlas}/{condition}/TS_*.npz|.mat)')
    parser.add_argument('--output-dir', type=Path, required=True,
                        help='Output directory for connectivity matrices')
    parser.add_argument('--atlases', nargs='+', default=['all'],
                        help="Atlases to use, 'all' or 'merge' (default: all)")
    parser.add_argument('--conditions', nargs='+', default=['all'],
                        help='Conditions to process (default: all)')
    parser.add_argument('--subjects', nargs='+', default=['all'],
                        help='Subjects to process (default: all)')
    parser.add_argument('--conn-type', default='fisher', choices=['corr', 'fisher', 'partcorr'],
                        help='Connectivity type (default: fisher)')
    parser.add_argument('--n-jobs', type=int, default=1,
                        help='Parallel jobs (default: 1)')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)

    setup_logging(args.output_dir, 'batch_functional_connectivity', verbose=args.verbose)

    try:
        summary = run_functional_connectivity(
            ts_dir=args.ts_dir,
            output_dir=args.output_dir,
            atlases=args.atlases[0] if len(args.atlases) == 1 else args.atlases,
            conditions=args.conditions[0] if len(args.conditions) == 1 else args.conditions,
            subjects=args.subjects[0] if len(args.subjects) == 1 else args.subjects,
            conn_type=args.conn_type,
            n_jobs=args.n_jobs,
        )
    except (ConfigurationError, MissingDataError, DimensionMismatch) as e:
        logger.error(f"✗ {e}")
        sys.exit(2)

    sys.exit(0 if summary['failed'] == 0 else 1)


if __name__ == '__main__':
    main()
