"""
Shared utilities for the conngraph package.

Available utilities
-------------------
logging_setup : File + console logging for batch drivers
batch : Serial / joblib dispatch of units and run summaries
"""

from conngraph.utils.logging_setup import setup_logging
from conngraph.utils.batch import run_units, write_summary

__all__ = [
    'setup_logging',
    'run_units',
    'write_summary',
]
