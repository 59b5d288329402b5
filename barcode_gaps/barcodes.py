"""
Barcode lookups against BOLD, with per-variant caching.

Lookups are by scientific name. WoRMS identifiers are not passed to BOLD, so
a species filed in BOLD under a synonym comes back empty and is counted as a
gap.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from barcode_gaps.cache import ResultCache
from barcode_gaps.errors import CacheCorrupt, SourceUnavailable

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 1

StatisticsQuery = Callable[[str], List[Dict[str, Any]]]


@dataclass(frozen=True)
class MarkerRecord:
    """Sequence and specimen counts for one (taxon, marker) pair."""

    taxon_query: str
    marker_code: str
    sequence_count: int
    specimen_record_count: int


def to_marker_records(taxon_name: str, statistics: List[Dict[str, Any]]) -> List[MarkerRecord]:
    """
    Convert raw per-marker statistics into MarkerRecords.

    Rows without a marker code or with negative/non-numeric counts are
    skipped. Repeated marker codes are summed so each marker appears once.
    """
    totals: Dict[str, List[int]] = {}
    for row in statistics:
        code = str(row.get('markerCode') or '').strip()
        try:
            sequences = int(row.get('sequenceCount') or 0)
            specimens = int(row.get('specimenRecordCount') or 0)
        except (TypeError, ValueError):
            logger.warning(f"Skipping marker row with invalid counts for '{taxon_name}': {row}")
            continue
        if not code or sequences < 0 or specimens < 0:
            logger.warning(f"Skipping invalid marker row for '{taxon_name}': {row}")
            continue
        counts = totals.setdefault(code, [0, 0])
        counts[0] += sequences
        counts[1] += specimens

    return [
        MarkerRecord(taxon_name, code, counts[0], counts[1])
        for code, counts in sorted(totals.items())
    ]


def _query_taxon(name: str, query: StatisticsQuery) -> List[MarkerRecord]:
    try:
        statistics = query(name)
    except SourceUnavailable as e:
        logger.warning(f"Barcode query failed for '{name}': {e}")
        return []
    return to_marker_records(name, statistics or [])


def resolve(
    names: Iterable[str],
    query: StatisticsQuery,
    max_workers: int = 1,
) -> Dict[str, List[MarkerRecord]]:
    """
    Look up marker records for every distinct name.

    A failed lookup yields an empty list for that name only. With
    max_workers > 1 the lookups run on a thread pool; the result is keyed
    and ordered by name either way.

    Args:
        names: Taxon names to query (duplicates and blanks are ignored)
        query: Function returning per-marker statistics for one name
        max_workers: Number of concurrent lookups

    Returns:
        dict: name -> list of MarkerRecord, sorted by name
    """
    distinct = sorted({n.strip() for n in names if n and n.strip()})
    logger.info(f"Resolving barcodes for {len(distinct)} taxa (workers: {max_workers})")

    if max_workers > 1 and len(distinct) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(lambda n: _query_taxon(n, query), distinct))
    else:
        results = []
        for i, name in enumerate(distinct, 1):
            results.append(_query_taxon(name, query))
            if i % 100 == 0:
                logger.info(f"  ...{i}/{len(distinct)} taxa queried")

    mapping = dict(zip(distinct, results))
    found = sum(1 for records in mapping.values() if records)
    logger.info(f"BOLD returned marker data for {found} of {len(mapping)} taxa")
    return mapping


def mapping_to_payload(mapping: Dict[str, List[MarkerRecord]]) -> Dict[str, Any]:
    """Encode a resolved mapping as JSON-compatible data."""
    return {
        'version': PAYLOAD_VERSION,
        'taxa': {
            name: [
                {
                    'markerCode': r.marker_code,
                    'sequenceCount': r.sequence_count,
                    'specimenRecordCount': r.specimen_record_count,
                }
                for r in records
            ]
            for name, records in sorted(mapping.items())
        },
    }


def mapping_from_payload(payload: Any) -> Dict[str, List[MarkerRecord]]:
    """
    Decode a cached mapping.

    Raises:
        CacheCorrupt: If the payload does not have the expected structure
    """
    if not isinstance(payload, dict) or payload.get('version') != PAYLOAD_VERSION:
        raise CacheCorrupt('unexpected payload version or type')
    taxa = payload.get('taxa')
    if not isinstance(taxa, dict):
        raise CacheCorrupt("payload has no 'taxa' mapping")

    mapping = {}
    try:
        for name, rows in taxa.items():
            mapping[name] = [
                MarkerRecord(
                    name,
                    str(row['markerCode']),
                    int(row['sequenceCount']),
                    int(row['specimenRecordCount']),
                )
                for row in rows
            ]
    except (KeyError, TypeError, ValueError) as e:
        raise CacheCorrupt(f"malformed marker row: {e}") from e
    return mapping


def cache_key(variant: str) -> str:
    return f"barcodes-{variant}"


def load_cached(variant: str, cache: ResultCache) -> Optional[Dict[str, List[MarkerRecord]]]:
    """Return the cached mapping of a variant, or None on a miss or a corrupt entry."""
    payload = cache.get(cache_key(variant))
    if payload is None:
        return None
    try:
        return mapping_from_payload(payload)
    except CacheCorrupt as e:
        logger.warning(f"Barcode cache for '{variant}' is corrupt ({e}), re-resolving")
        return None


def resolve_cached(
    variant: str,
    names: Iterable[str],
    query: StatisticsQuery,
    cache: ResultCache,
    max_workers: int = 1,
) -> Dict[str, List[MarkerRecord]]:
    """
    Resolve barcodes for a checklist variant, using the cache when present.

    The cache is all-or-nothing: a cached mapping is returned whole and no
    queries are made, even if the checklist has changed since it was written.
    """
    names = set(names)
    cached = load_cached(variant, cache)
    if cached is not None:
        logger.info(f"Loaded cached barcode results for '{variant}' ({len(cached)} taxa)")
        missing = {n for n in names if n and n.strip()} - set(cached)
        if missing:
            logger.warning(
                f"{len(missing)} checklist taxa are not in the '{variant}' cache and will count as gaps; "
                f"use --refresh to re-query"
            )
        return cached

    mapping = resolve(names, query, max_workers=max_workers)
    cache.put(cache_key(variant), mapping_to_payload(mapping))
    return mapping
