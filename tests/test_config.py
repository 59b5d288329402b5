"""Tests for configuration loading and validation"""
from pathlib import Path

import pytest

from barcode_gaps.config import DEFAULT_CONFIG, WRIMS_DATASET_KEY, load_config
from barcode_gaps.errors import ConfigurationError


def write_config(tmp_path, text):
    path = tmp_path / 'config.yml'
    path.write_text(text, encoding='utf-8')
    return path


def test_defaults(config):
    assert config['accepted_markers'] == ['COI-5P', '18S', 'rbcL', 'rbcLa', 'matK']
    assert config['top_n'] == 5
    assert set(config['variants']) == {'priority', 'regional', 'wrims', 'combined'}
    assert config['sources']['wrims']['dataset_key'] == WRIMS_DATASET_KEY


def test_defaults_are_not_shared(config):
    config['bold']['max_workers'] = 8
    assert DEFAULT_CONFIG['bold']['max_workers'] == 1


def test_file_values_merge_over_defaults(tmp_path):
    path = write_config(tmp_path, (
        'top_n: 10\n'
        'bold:\n'
        '  max_workers: 4\n'
        'sources:\n'
        '  priority:\n'
        '    paths: [lists/fiji.csv, lists/samoa.tsv]\n'
    ))
    config = load_config(path)

    assert config['top_n'] == 10
    assert config['bold']['max_workers'] == 4
    assert config['bold']['base_url'] == DEFAULT_CONFIG['bold']['base_url']
    assert config['sources']['priority'] == {'kind': 'expert', 'paths': ['lists/fiji.csv', 'lists/samoa.tsv']}


def test_empty_file_gives_defaults(tmp_path):
    assert load_config(write_config(tmp_path, '')) == load_config()


def test_example_config_loads():
    config = load_config(Path(__file__).parent.parent / 'config' / 'config.yml')
    assert config['bold']['max_workers'] == 2


@pytest.mark.parametrize('text, message', [
    ('accepted_markers: []\n', 'accepted_markers'),
    ('top_n: 0\n', 'top_n'),
    ('top_n: true\n', 'top_n'),
    ('sources:\n  regional:\n    kind: gbif\n', 'unknown kind'),
    ('sources:\n  priority:\n    paths: []\n', 'needs at least one path'),
    ('variants:\n  fiji:\n    sources: [fiji_list]\n', 'undefined source'),
    ('variants:\n  fiji:\n    sources: []\n', 'no sources'),
    ('- just\n- a list\n', 'must be a mapping'),
    ('top_n: [unclosed\n', 'Invalid YAML'),
])
def test_invalid_config(tmp_path, text, message):
    with pytest.raises(ConfigurationError, match=message):
        load_config(write_config(tmp_path, text))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match='Cannot read'):
        load_config(tmp_path / 'nope.yml')
