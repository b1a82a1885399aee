#!/usr/bin/env python3
"""
Configuration loader for the connectivity graph pipeline.

Handles:
- Loading YAML configuration files
- Merging study configs with defaults
- Environment variable substitution
- Parameter validation (connectivity, threshold and graph types, selections)

The validation helpers are shared by every pipeline stage, so a programmatic
call is checked exactly like a config-driven run.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import yaml

logger = logging.getLogger(__name__)

CONN_TYPES = ('corr', 'fisher', 'partcorr')
THRESH_TYPES = ('absolute', 'proportional')
GRAPH_TYPES = ('wei', 'bin')

# 0.01:0.01:1
DEFAULT_PROPORTIONAL_WEIGHTS = tuple(round(0.01 * i, 2) for i in range(1, 101))


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required parameters."""
    pass


def load_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Parameters
    ----------
    file_path : Path
        Path to YAML file

    Returns
    -------
    dict
        Loaded configuration

    Raises
    ------
    ConfigurationError
        If file doesn't exist or YAML is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Top level of {file_path} must be a mapping")
    return config


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two configuration dictionaries.

    Parameters
    ----------
    base : dict
        Base configuration (defaults)
    override : dict
        Override configuration (study-specific)

    Returns
    -------
    dict
        Merged configuration (override takes precedence)
    """
    merged = base.copy()

    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def substitute_variables(config: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Substitute environment variables and config references in strings.

    Supports:
    - ${ENV_VAR} - environment variables
    - ${section.key} - references to other config values

    Parameters
    ----------
    config : dict
        Configuration dictionary
    context : dict, optional
        Context for variable substitution (defaults to config itself)

    Returns
    -------
    dict
        Configuration with substituted values
    """
    if context is None:
        context = config

    pattern = r'\$\{([^}]+)\}'

    def substitute_string(value: str, seen: tuple = ()) -> str:
        def replacer(match):
            var_path = match.group(1)

            if var_path in os.environ:
                return os.environ[var_path]

            try:
                val = context
                for part in var_path.split('.'):
                    val = val[part]
            except (KeyError, TypeError):
                # Unknown reference, leave as is
                return match.group(0)

            if var_path in seen:
                chain = ' -> '.join(seen + (var_path,))
                raise ConfigurationError(f"Circular reference in config: {chain}")
            # referenced values may hold references themselves
            if isinstance(val, str):
                return substitute_string(val, seen + (var_path,))
            return str(val)

        return re.sub(pattern, replacer, value)

    def process_value(value: Any) -> Any:
        if isinstance(value, str):
            return substitute_string(value)
        elif isinstance(value, dict):
            return {k: process_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [process_value(item) for item in value]
        else:
            return value

    return process_value(config)


# =============================================================================
# Parameter validation
# =============================================================================

def validate_conn_type(conn_type: str) -> str:
    """Check a connectivity type, returning it unchanged."""
    if conn_type not in CONN_TYPES:
        raise ConfigurationError(
            f"Unknown conn_type given: {conn_type!r} (expected one of {', '.join(CONN_TYPES)})"
        )
    return conn_type


def validate_thresh_type(thresh_type: str) -> str:
    """Check a threshold type, returning it unchanged."""
    if thresh_type not in THRESH_TYPES:
        raise ConfigurationError(
            f"Unknown thresh_type specified: {thresh_type!r} "
            f"(expected one of {', '.join(THRESH_TYPES)})"
        )
    return thresh_type


def validate_graph_type(graph_type: str) -> str:
    """Check a graph type ('wei' or 'bin'), returning it unchanged."""
    if graph_type not in GRAPH_TYPES:
        raise ConfigurationError(
            f"Unknown graph_type specified: {graph_type!r} (expected 'wei' or 'bin')"
        )
    return graph_type


def validate_flag(name: str, value: Any) -> bool:
    """
    Normalise a yes/no style flag.

    Accepts booleans and the strings 'yes'/'no'/'true'/'false' (any case).
    """
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str) and value.lower() in ('yes', 'true'):
        return True
    if isinstance(value, str) and value.lower() in ('no', 'false'):
        return False
    raise ConfigurationError(f"Unknown value specified for {name}: {value!r}")


def validate_thresh_weights(
    thresh_type: str,
    thresh_weight: Union[None, float, Sequence[float]]
) -> List[float]:
    """
    Validate threshold weight(s) for a threshold type.

    Proportional thresholding defaults to 0.01..1.00 in steps of 0.01 and
    requires every weight in (0, 1]. Absolute thresholding has no default.

    Returns
    -------
    list of float
        Weights in the order given
    """
    validate_thresh_type(thresh_type)

    if thresh_weight is None or (
        not np.isscalar(thresh_weight) and len(thresh_weight) == 0
    ):
        if thresh_type == 'absolute':
            raise ConfigurationError(
                "Need to specify thresh_weight for absolute thresholding"
            )
        return list(DEFAULT_PROPORTIONAL_WEIGHTS)

    if np.isscalar(thresh_weight):
        weights = [thresh_weight]
    else:
        weights = list(thresh_weight)

    checked = []
    for weight in weights:
        if isinstance(weight, bool) or not isinstance(weight, (int, float, np.number)):
            raise ConfigurationError(f"thresh_weight must be numeric, got {weight!r}")
        weight = float(weight)
        if not np.isfinite(weight):
            raise ConfigurationError(f"thresh_weight must be finite, got {weight}")
        if thresh_type == 'proportional' and not 0 < weight <= 1:
            raise ConfigurationError(
                f"thresh_weight should be between 0-1 for proportional thresholding, got {weight}"
            )
        if thresh_type == 'absolute' and weight < 0:
            raise ConfigurationError(
                f"thresh_weight should be non-negative for absolute thresholding, got {weight}"
            )
        checked.append(weight)

    return checked


def validate_selection(
    name: str,
    selection: Union[str, Sequence[str], None],
    allow_merge: bool = False
) -> Union[str, List[str]]:
    """
    Validate an atlas/condition/subject filter.

    A filter is 'all' (or None), 'merge' for atlases when allowed, a single
    name, or a list of non-empty names.

    Returns
    -------
    str or list of str
        'all', 'merge' or a list of names
    """
    if selection is None:
        return 'all'

    if isinstance(selection, str):
        if selection.lower() == 'all':
            return 'all'
        if selection.lower() == 'merge':
            if not allow_merge:
                raise ConfigurationError(f"'merge' is not a valid value for {name}")
            return 'merge'
        selection = [selection]

    try:
        names = list(selection)
    except TypeError:
        raise ConfigurationError(f"Malformed {name} filter: {selection!r}")

    if not names:
        raise ConfigurationError(f"Empty {name} filter")
    for item in names:
        if not isinstance(item, str) or not item.strip():
            raise ConfigurationError(f"Malformed entry in {name} filter: {item!r}")
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate entries in {name} filter: {names}")

    return names


def validate_class0(class0: Union[str, Sequence[str], None]) -> Union[str, List[str], None]:
    """Check a class-0 specification (wildcard string or list of subject IDs)."""
    if class0 is None or isinstance(class0, str):
        if isinstance(class0, str) and not class0:
            raise ConfigurationError("class0 wildcard must not be empty")
        return class0
    return validate_selection('class0', class0)


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate pipeline configuration before any processing starts.

    Parameters
    ----------
    config : dict
        Configuration to validate

    Raises
    ------
    ConfigurationError
        If required parameters are missing or invalid
    """
    paths = config.get('paths')
    if not isinstance(paths, dict) or 'timeseries_dir' not in paths:
        raise ConfigurationError("Missing required path: paths.timeseries_dir")

    selection = config.get('selection', {})
    validate_selection('atlases', selection.get('atlases'), allow_merge=True)
    validate_selection('conditions', selection.get('conditions'))
    validate_selection('subjects', selection.get('subjects'))

    connectivity = config.get('connectivity', {})
    validate_conn_type(connectivity.get('conn_type', 'fisher'))

    thresholding = config.get('thresholding', {})
    thresh_type = thresholding.get('thresh_type', 'proportional')
    validate_thresh_weights(thresh_type, thresholding.get('thresh_weights'))
    binarize = validate_flag('binarize', thresholding.get('binarize', False))
    validate_flag('neg_discard', thresholding.get('neg_discard', True))

    graph = config.get('graph', {})
    graph_type = validate_graph_type(graph.get('graph_type', 'wei'))
    if graph_type != ('bin' if binarize else 'wei'):
        raise ConfigurationError(
            f"graph.graph_type is {graph_type!r} but thresholding.binarize is {binarize}; "
            "binarized graphs are 'bin', weighted graphs 'wei'"
        )
    validate_flag('normalize_weights', graph.get('normalize_weights', True))
    seed = graph.get('community_seed', 0)
    if isinstance(seed, bool) or not isinstance(seed, int):
        raise ConfigurationError(f"graph.community_seed must be an integer, got {seed!r}")

    compile_cfg = config.get('compile', {})
    if validate_flag('classwise', compile_cfg.get('classwise', False)):
        if compile_cfg.get('class0') is None:
            raise ConfigurationError("Need to specify compile.class0 when compile.classwise is true")
    validate_class0(compile_cfg.get('class0'))

    n_jobs = config.get('n_jobs', 1)
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, int) or n_jobs == 0:
        raise ConfigurationError(f"n_jobs must be a non-zero integer, got {n_jobs!r}")


def load_config(config_path: Path, validate: bool = True) -> Dict[str, Any]:
    """
    Load and process configuration file.

    This is the main entry point for loading configs. It:
    1. Loads the study config
    2. Loads and merges default config
    3. Substitutes variables
    4. Validates the result

    Parameters
    ----------
    config_path : Path
        Path to study-specific configuration file
    validate : bool
        Whether to validate the configuration

    Returns
    -------
    dict
        Processed configuration

    Raises
    ------
    ConfigurationError
        If configuration is invalid
    """
    config_path = Path(config_path)

    study_config = load_yaml(config_path)

    # Look for default.yaml next to the study config, then in the package
    default_path = config_path.parent / 'default.yaml'
    if not default_path.exists() or default_path.resolve() == config_path.resolve():
        default_path = Path(__file__).parent.parent / 'configs' / 'default.yaml'

    if default_path.exists() and default_path.resolve() != config_path.resolve():
        config = merge_configs(load_yaml(default_path), study_config)
    else:
        logger.warning(
            f"No default.yaml found next to {config_path} or at {default_path}; "
            "using the study config alone"
        )
        config = study_config

    config = substitute_variables(config)

    if validate:
        validate_config(config)

    return config


def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a value from config using dot notation.

    Examples
    --------
    >>> get_config_value(config, 'thresholding.thresh_type')
    'proportional'
    >>> get_config_value(config, 'missing.key', default=0.3)
    0.3
    """
    try:
        value = config
        for part in key_path.split('.'):
            value = value[part]
        return value
    except (KeyError, TypeError):
        return default
