"""
conngraph: Functional Connectivity Graph Pipeline

From per-subject ROI timeseries to machine-learning feature tables.

Modules
-------
connectome : Connectivity, thresholding and graph analysis
    - Pearson / Fisher z / partial correlation matrices
    - Absolute and proportional graph thresholding
    - Nodal and global graph theory metrics
    - Cross-subject summary and feature tables

config : YAML configuration loading and parameter validation

utils : Logging and batch helpers

Usage
-----
>>> from conngraph.config import load_config
>>> from conngraph.connectome.run_graph_pipeline import run_pipeline
>>> config = load_config('study.yaml')
>>> summaries = run_pipeline(config)
"""

__version__ = "1.0.0"
__all__ = ['connectome', 'config', 'utils']

# Make config loader easily accessible
from conngraph.config import load_config

__all__.append('load_config')
