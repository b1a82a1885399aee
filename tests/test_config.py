"""
Tests for configuration loading and validation.
"""

import copy
import logging

import pytest
import yaml

import conngraph.config as config_module
from conngraph.config import (
    ConfigurationError,
    get_config_value,
    load_config,
    merge_configs,
    substitute_variables,
    validate_class0,
    validate_config,
    validate_flag,
    validate_selection,
)

BASE_CONFIG = {
    'paths': {'timeseries_dir': '/data/ts', 'output_root': '/data/out'},
    'selection': {'atlases': 'all', 'conditions': 'all', 'subjects': 'all'},
    'connectivity': {'conn_type': 'fisher'},
    'thresholding': {
        'thresh_type': 'proportional', 'thresh_weights': [0.1, 0.2],
        'binarize': False, 'neg_discard': True,
    },
    'graph': {'graph_type': 'wei', 'normalize_weights': True, 'community_seed': 0},
    'compile': {'classwise': False, 'class0': None, 'features': True},
    'n_jobs': 1,
}


def config_with(**overrides):
    config = copy.deepcopy(BASE_CONFIG)
    for dotted, value in overrides.items():
        section, key = dotted.split('__')
        config[section][key] = value
    return config


def test_base_config_is_valid():
    validate_config(BASE_CONFIG)


@pytest.mark.parametrize('overrides', [
    {'connectivity__conn_type': 'spearman'},
    {'thresholding__thresh_type': 'percentile'},
    {'thresholding__thresh_weights': [1.2]},
    {'thresholding__binarize': 'maybe'},
    {'graph__graph_type': 'bin'},
    {'graph__community_seed': 'zero'},
    {'compile__classwise': True},
    {'selection__atlases': []},
    {'selection__subjects': ['sub-01', 'sub-01']},
    {'selection__conditions': 'merge'},
])
def test_invalid_configs_rejected(overrides):
    with pytest.raises(ConfigurationError):
        validate_config(config_with(**overrides))


def test_binarized_graphs_need_bin_graph_type():
    validate_config(config_with(thresholding__binarize='yes', graph__graph_type='bin'))


def test_absolute_threshold_needs_weight():
    config = config_with(thresholding__thresh_type='absolute', thresholding__thresh_weights=None)

    with pytest.raises(ConfigurationError, match="absolute"):
        validate_config(config)


def test_missing_timeseries_dir():
    config = copy.deepcopy(BASE_CONFIG)
    del config['paths']['timeseries_dir']

    with pytest.raises(ConfigurationError, match="timeseries_dir"):
        validate_config(config)


@pytest.mark.parametrize('n_jobs', [0, 1.5, True])
def test_n_jobs_must_be_nonzero_integer(n_jobs):
    config = copy.deepcopy(BASE_CONFIG)
    config['n_jobs'] = n_jobs

    with pytest.raises(ConfigurationError):
        validate_config(config)


def test_flags_accept_yes_no_strings():
    assert validate_flag('binarize', 'Yes') is True
    assert validate_flag('binarize', 'no') is False
    assert validate_flag('binarize', False) is False


def test_selection_forms():
    assert validate_selection('atlases', None) == 'all'
    assert validate_selection('atlases', 'ALL') == 'all'
    assert validate_selection('atlases', 'merge', allow_merge=True) == 'merge'
    assert validate_selection('subjects', 'sub-01') == ['sub-01']
    assert validate_selection('subjects', ('sub-01', 'sub-02')) == ['sub-01', 'sub-02']
    with pytest.raises(ConfigurationError):
        validate_selection('subjects', ['sub-01', ''])
    with pytest.raises(ConfigurationError):
        validate_selection('subjects', 5)


def test_class0_forms():
    assert validate_class0(None) is None
    assert validate_class0('HS') == 'HS'
    assert validate_class0(['sub-01']) == ['sub-01']
    with pytest.raises(ConfigurationError):
        validate_class0('')


def test_merge_configs_is_recursive():
    merged = merge_configs(
        {'graph': {'graph_type': 'wei', 'community_seed': 0}, 'n_jobs': 1},
        {'graph': {'community_seed': 5}},
    )

    assert merged == {'graph': {'graph_type': 'wei', 'community_seed': 5}, 'n_jobs': 1}


def test_substitute_variables(monkeypatch):
    monkeypatch.setenv('CONNGRAPH_TEST_ROOT', '/env/root')
    config = {
        'paths': {
            'output_root': '${CONNGRAPH_TEST_ROOT}/out',
            'graphs_dir': '${paths.output_root}/graphs',
            'other': '${no.such.key}',
        }
    }

    result = substitute_variables(config)

    assert result['paths']['output_root'] == '/env/root/out'
    assert result['paths']['graphs_dir'] == '/env/root/out/graphs'
    assert result['paths']['other'] == '${no.such.key}'


def test_load_config_merges_defaults_next_to_study(tmp_path):
    with open(tmp_path / 'default.yaml', 'w') as f:
        yaml.safe_dump(BASE_CONFIG, f)
    with open(tmp_path / 'study.yaml', 'w') as f:
        yaml.safe_dump({
            'paths': {'timeseries_dir': str(tmp_path / 'ts')},
            'connectivity': {'conn_type': 'partcorr'},
        }, f)

    config = load_config(tmp_path / 'study.yaml')

    assert config['connectivity']['conn_type'] == 'partcorr'
    assert config['paths']['timeseries_dir'] == str(tmp_path / 'ts')
    assert config['paths']['output_root'] == '/data/out'
    assert get_config_value(config, 'thresholding.thresh_weights') == [0.1, 0.2]


def test_load_config_uses_packaged_defaults(tmp_path):
    with open(tmp_path / 'study.yaml', 'w') as f:
        yaml.safe_dump({
            'paths': {'timeseries_dir': str(tmp_path), 'output_root': str(tmp_path / 'out')},
        }, f)

    config = load_config(tmp_path / 'study.yaml')

    assert config['connectivity']['conn_type'] == 'fisher'
    assert config['thresholding']['thresh_type'] == 'proportional'
    assert config['paths']['graphs_dir'] == str(tmp_path / 'out') + '/graphs'


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / 'absent.yaml')


def test_get_config_value_default():
    assert get_config_value(BASE_CONFIG, 'graph.graph_type') == 'wei'
    assert get_config_value(BASE_CONFIG, 'graph.missing', default=3) == 3


@pytest.mark.parametrize('paths', [
    {'output_root': '${paths.output_root}/out'},
    {'output_root': '${paths.graphs_dir}', 'graphs_dir': '${paths.output_root}/graphs'},
])
def test_circular_reference_rejected(paths):
    with pytest.raises(ConfigurationError, match="Circular reference.*paths.output_root"):
        substitute_variables({'paths': paths})


def test_load_config_warns_without_defaults(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(config_module, '__file__', str(tmp_path / 'pkg' / 'conngraph' / 'config.py'))
    with open(tmp_path / 'study.yaml', 'w') as f:
        yaml.safe_dump(BASE_CONFIG, f)

    with caplog.at_level(logging.WARNING, logger='conngraph.config'):
        config = load_config(tmp_path / 'study.yaml')

    assert config['connectivity']['conn_type'] == 'fisher'
    assert "No default.yaml found" in caplog.text
