"""
Run configuration.

Settings are read from a YAML file and merged over DEFAULT_CONFIG, so a config
file only needs the keys it changes. Example (see config/config.yml):

    accepted_markers: [COI-5P, 18S, rbcL, rbcLa, matK]
    sources:
      priority:
        kind: expert
        paths: [config/priority_species.csv]
    variants:
      priority:
        sources: [priority]
        enrich_from: [regional]
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Optional

import yaml

from barcode_gaps.errors import ConfigurationError

logger = logging.getLogger(__name__)

SOURCE_KINDS = ('expert', 'obis', 'wrims')

# GBIF dataset holding the World Register of Introduced Marine Species
WRIMS_DATASET_KEY = '0a2eaf0c-5504-4f48-a47f-c94229029921'

# Bounding box around the Pacific Island countries and territories
SOUTH_PACIFIC_WKT = 'POLYGON((130 -30, 230 -30, 230 20, 130 20, 130 -30))'

DEFAULT_CONFIG = {
    'accepted_markers': ['COI-5P', '18S', 'rbcL', 'rbcLa', 'matK'],
    'top_n': 5,
    'cache_dir': 'cache',
    'output_dir': 'results',
    'log_level': 'INFO',
    'charts': True,
    'bold': {
        'base_url': 'https://portal.boldsystems.org/api',
        'timeout': 60,
        'max_retries': 3,
        'min_interval': 0.5,
        'max_workers': 1,
    },
    'obis': {
        'base_url': 'https://api.obis.org/v3',
        'timeout': 60,
        'max_retries': 3,
        'page_size': 1000,
    },
    'gbif': {
        'base_url': 'https://api.gbif.org/v1',
        'timeout': 60,
        'max_retries': 3,
        'page_size': 1000,
    },
    'sources': {
        'priority': {
            'kind': 'expert',
            'paths': ['config/priority_species.csv'],
        },
        'regional': {
            'kind': 'obis',
            'geometry': SOUTH_PACIFIC_WKT,
        },
        'wrims': {
            'kind': 'wrims',
            'dataset_key': WRIMS_DATASET_KEY,
        },
    },
    'variants': {
        'priority': {'sources': ['priority'], 'enrich_from': ['regional']},
        'regional': {'sources': ['regional']},
        'wrims': {'sources': ['wrims'], 'enrich_from': ['regional']},
        'combined': {'sources': ['priority', 'regional', 'wrims']},
    },
}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Merge override into a copy of base, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Dict) -> Dict:
    """
    Check a merged configuration and return it.

    Raises:
        ConfigurationError: If the accepted marker set is empty, top_n is not
            positive, a source has an unknown kind, or a variant is empty or
            refers to an undefined source.
    """
    markers = config.get('accepted_markers') or []
    if not [m for m in markers if str(m).strip()]:
        raise ConfigurationError('accepted_markers must list at least one marker code')

    top_n = config.get('top_n')
    if not isinstance(top_n, int) or isinstance(top_n, bool) or top_n < 1:
        raise ConfigurationError(f'top_n must be a positive integer, got {top_n!r}')

    sources = config.get('sources') or {}
    for name, settings in sources.items():
        kind = (settings or {}).get('kind')
        if kind not in SOURCE_KINDS:
            raise ConfigurationError(
                f"Source '{name}' has unknown kind {kind!r} (expected one of {', '.join(SOURCE_KINDS)})"
            )
        if kind == 'expert' and not settings.get('paths'):
            raise ConfigurationError(f"Expert source '{name}' needs at least one path")

    variants = config.get('variants') or {}
    if not variants:
        raise ConfigurationError('No checklist variants configured')
    for name, variant in variants.items():
        variant = variant or {}
        if not variant.get('sources'):
            raise ConfigurationError(f"Variant '{name}' has no sources")
        for source in list(variant['sources']) + list(variant.get('enrich_from') or []):
            if source not in sources:
                raise ConfigurationError(f"Variant '{name}' refers to undefined source '{source}'")

    return config


def load_config(config_path: Optional[Path] = None) -> Dict:
    """
    Load configuration from a YAML file over the built-in defaults.

    Args:
        config_path: Path to a YAML file, or None to use the defaults only

    Returns:
        Dict: Validated configuration
    """
    if config_path is None:
        return validate_config(copy.deepcopy(DEFAULT_CONFIG))

    logger.info(f"Loading configuration from {config_path}")
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(user_config, dict):
        raise ConfigurationError(f"Configuration {config_path} must be a mapping")

    return validate_config(_deep_merge(DEFAULT_CONFIG, user_config))
