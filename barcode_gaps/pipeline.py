"""
End-to-end run: fetch checklists -> merge -> resolve barcodes -> classify -> report.

Source checklists are fetched once per run, cached, and shared between variants. A
source that fails is logged and left out; a variant whose sources all failed is
skipped. The run fails only when no variant can be built.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd

from barcode_gaps.api_clients import BoldClient
from barcode_gaps.barcodes import StatisticsQuery, cache_key, resolve_cached
from barcode_gaps.cache import ResultCache
from barcode_gaps.checklist import build_variant_checklist
from barcode_gaps.errors import CacheCorrupt, ChecklistUnavailable, ConfigurationError, SourceUnavailable
from barcode_gaps.gap_analysis import (
    classify_species,
    coverage_overview,
    marker_frequency,
    rank_gaps,
    summarize_by_phylum,
)
from barcode_gaps.reporting import write_charts, write_overview, write_tables
from barcode_gaps.sources import fetch_source, frame_from_payload, frame_to_payload

logger = logging.getLogger(__name__)

SourceFetcher = Callable[[str, Dict, Dict], pd.DataFrame]


def select_variants(config: Dict, requested: Optional[Iterable[str]] = None) -> List[str]:
    """Validate requested variant names; default to every configured variant."""
    configured = list(config['variants'])
    if not requested:
        return configured
    unknown = [v for v in requested if v not in config['variants']]
    if unknown:
        raise ConfigurationError(
            f"Unknown variant(s): {', '.join(unknown)} (configured: {', '.join(configured)})"
        )
    return list(dict.fromkeys(requested))


def checklist_cache_key(source: str) -> str:
    return f"checklist-{source}"


def _load_cached_source(name: str, cache: ResultCache) -> Optional[pd.DataFrame]:
    payload = cache.get(checklist_cache_key(name))
    if payload is None:
        return None
    try:
        return frame_from_payload(payload)
    except CacheCorrupt as e:
        logger.warning(f"Checklist cache for '{name}' is corrupt ({e}), fetching again")
        return None


def fetch_sources(
    names: Iterable[str],
    config: Dict,
    fetcher: SourceFetcher = fetch_source,
    cache: Optional[ResultCache] = None,
) -> Dict[str, Optional[pd.DataFrame]]:
    """
    Fetch each named source once, from the cache when present.

    Returns:
        dict: source name -> checklist, or None if the source was unavailable
    """
    fetched: Dict[str, Optional[pd.DataFrame]] = {}
    for name in dict.fromkeys(names):
        if cache is not None:
            cached = _load_cached_source(name, cache)
            if cached is not None:
                logger.info(f"Loaded cached checklist '{name}' ({len(cached)} entries)")
                fetched[name] = cached
                continue
        try:
            fetched[name] = fetcher(name, config['sources'][name], config)
        except SourceUnavailable as e:
            logger.error(f"Checklist source '{name}' unavailable: {e}")
            fetched[name] = None
            continue
        if cache is not None and not fetched[name].empty:
            cache.put(checklist_cache_key(name), frame_to_payload(fetched[name]))
    return fetched


def needed_sources(config: Dict, variants: Iterable[str]) -> List[str]:
    """Sources used by the variants, union sources before enrichment sources."""
    needed = []
    for variant in variants:
        settings = config['variants'][variant]
        needed.extend(settings['sources'])
        needed.extend(settings.get('enrich_from') or [])
    return list(dict.fromkeys(needed))


def analyze_variant(
    variant: str,
    config: Dict,
    fetched: Dict[str, Optional[pd.DataFrame]],
    query: StatisticsQuery,
    cache: ResultCache,
) -> Dict[str, pd.DataFrame]:
    """
    Run merge, barcode resolution and classification for one variant.

    Returns:
        dict: Table name -> DataFrame, in output order
    """
    logger.info("-" * 80)
    logger.info(f"Checklist variant: {variant}")
    logger.info("-" * 80)

    checklist = build_variant_checklist(variant, config['variants'][variant], fetched)
    mapping = resolve_cached(
        variant,
        checklist['scientificName'],
        query,
        cache,
        max_workers=config['bold'].get('max_workers', 1),
    )
    status = classify_species(checklist, mapping, config['accepted_markers'])

    return {
        'checklist': checklist,
        'species_status': status,
        'phylum_summary': summarize_by_phylum(status),
        'top_gaps': rank_gaps(status, config['top_n']),
        'marker_frequency': marker_frequency(mapping, config['accepted_markers']),
    }


def run(
    config: Dict,
    cache: ResultCache,
    output_dir: Path,
    variants: Optional[Iterable[str]] = None,
    refresh: bool = False,
    charts: bool = True,
    query: Optional[StatisticsQuery] = None,
    fetcher: SourceFetcher = fetch_source,
) -> Dict[str, Dict[str, pd.DataFrame]]:
    """
    Analyse the selected checklist variants and write their reports.

    Args:
        config: Validated configuration
        cache: Cache for source checklists and barcode results
        output_dir: Directory for tables and charts
        variants: Variant names (default: all configured)
        refresh: Delete the cached checklists and barcode results first
        charts: Draw charts as well as tables
        query: Barcode statistics function (default: BoldClient.statistics)
        fetcher: Source adapter (default: fetch_source)

    Returns:
        dict: variant -> tables

    Raises:
        ConfigurationError: For unknown variants or an empty marker set
        ChecklistUnavailable: If every source failed or no variant could be built
    """
    selected = select_variants(config, variants)
    output_dir = Path(output_dir)

    needed = needed_sources(config, selected)

    if refresh:
        for variant in selected:
            cache.delete(cache_key(variant))
        for source in needed:
            cache.delete(checklist_cache_key(source))

    if query is None:
        bold_settings = {k: v for k, v in config['bold'].items() if k != 'max_workers'}
        query = BoldClient(**bold_settings).statistics

    fetched = fetch_sources(needed, config, fetcher, cache)
    if all(df is None for df in fetched.values()):
        raise ChecklistUnavailable(f"Every checklist source failed: {', '.join(needed)}")

    all_results = {}
    overview = []
    for variant in selected:
        try:
            results = analyze_variant(variant, config, fetched, query, cache)
        except ChecklistUnavailable as e:
            logger.error(f"Skipping variant '{variant}': {e}")
            continue
        write_tables(results, output_dir, variant)
        if charts:
            write_charts(results, output_dir, variant)
        all_results[variant] = results
        overview.append(coverage_overview(variant, results['species_status']))

    if not all_results:
        raise ChecklistUnavailable(f"No checklist variant could be built: {', '.join(selected)}")

    write_overview(overview, output_dir)
    for row in overview:
        logger.info(
            f"  {row['variant']}: {row['species']} species, {row['withBarcode']} with barcodes, "
            f"{row['gaps']} gaps ({row['coveragePercent']}% coverage)"
        )
    return all_results
