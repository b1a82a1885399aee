"""
Unit dispatch and run summaries for the batch drivers.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence

from joblib import Parallel, delayed

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = 'batch_processing_summary.json'


def run_units(
    worker: Callable[..., Dict],
    units: Sequence[Dict[str, Any]],
    n_jobs: int = 1
) -> List[Dict]:
    """
    Run a worker over independent units of work.

    Parameters
    ----------
    worker : callable
        Module-level function taking the unit's keyword arguments and
        returning a result dict with a 'status' entry
    units : sequence of dict
        Keyword arguments per unit
    n_jobs : int
        1 runs serially in this process; anything else goes through joblib

    Returns
    -------
    list of dict
        Results in unit order
    """
    if n_jobs == 1:
        results = []
        for i, unit in enumerate(units, 1):
            logger.info(f"\n[{i}/{len(units)}]")
            results.append(worker(**unit))
        return results

    logger.info(f"Processing {len(units)} units with {n_jobs} parallel jobs")
    return Parallel(n_jobs=n_jobs)(delayed(worker)(**unit) for unit in units)


def count_status(results: Sequence[Dict]) -> Dict[str, int]:
    counts = {'successful': 0, 'failed': 0, 'skipped': 0}
    for result in results:
        status = result.get('status')
        if status == 'success':
            counts['successful'] += 1
        elif status == 'skipped':
            counts['skipped'] += 1
        else:
            counts['failed'] += 1
    return counts


def write_summary(
    output_dir: Path,
    stage: str,
    results: List[Dict],
    parameters: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Write batch_processing_summary.json and log the final tally.

    Returns
    -------
    dict
        The summary that was written
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    counts = count_status(results)
    total = len(results)
    summary = {
        'stage': stage,
        'analysis_date': datetime.now().isoformat(),
        'total_analyses': total,
        **counts,
        'parameters': parameters,
        'results': results,
    }

    summary_file = output_dir / SUMMARY_FILENAME
    with open(summary_file, 'w') as f:
        json.dump(summary, f, indent=2, default=str)

    logger.info("\n" + "=" * 80)
    logger.info(f"{stage.upper()} COMPLETE")
    logger.info("=" * 80)
    logger.info(f"Total analyses: {total}")
    logger.info(f"Successful: {counts['successful']}")
    logger.info(f"Skipped: {counts['skipped']}")
    logger.info(f"Failed: {counts['failed']}")
    if total:
        logger.info(f"Success rate: {counts['successful'] / total * 100:.1f}%")
    logger.info(f"\nSummary saved to: {summary_file}")
    logger.info("=" * 80)

    return summary
