"""
Logging setup shared by the batch drivers.
"""

import logging
from datetime import datetime
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(output_dir: Path, name: str, verbose: bool = False) -> logging.Logger:
    """
    Configure logging to both file and console.

    Parameters
    ----------
    output_dir : Path
        Stage output directory; the log goes to <output_dir>/logs/
    name : str
        Log file stem, e.g. 'batch_graph_metrics'
    verbose : bool
        Log DEBUG messages to the file

    Returns
    -------
    logging.Logger
        The configured root logger

    Examples
    --------
    >>> logger = setup_logging(Path("/data/graphs"), "batch_threshold_graphs")
    >>> logger.info("Thresholding 24 matrices")
    """
    log_dir = Path(output_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"{name}_{timestamp}.log"

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # File handler
    fh = logging.FileHandler(log_file)
    fh.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    fh.setFormatter(formatter)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info(f"Log file: {log_file}")

    return logger
