"""
Barcode gap classification.

A species has a barcode when BOLD holds at least one record for an accepted
marker. Species missing from the resolved mapping are counted as gaps; "no
data" and "confirmed absent" are not distinguished.

The default accepted markers (COI-5P, 18S, rbcL, rbcLa, matK) are the loci
with the broadest cross-taxon coverage for standard barcoding.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Set

import pandas as pd

from barcode_gaps.barcodes import MarkerRecord
from barcode_gaps.errors import ConfigurationError

logger = logging.getLogger(__name__)

UNKNOWN_PHYLUM = 'Unknown'

STATUS_COLUMNS = [
    'phylum',
    'scientificName',
    'taxonID',
    'hasBarcode',
    'markerCount',
    'totalSequences',
    'occurrenceRecords',
    'acceptedMarkers',
    'markers',
]


def accepted_marker_set(markers: Iterable[str]) -> Set[str]:
    """
    Clean the configured marker codes.

    Raises:
        ConfigurationError: If no marker code remains
    """
    accepted = {str(m).strip() for m in markers or [] if m is not None and str(m).strip()}
    if not accepted:
        raise ConfigurationError('The accepted marker set is empty; no species could ever have a barcode')
    return accepted


def barcode_status(records: List[MarkerRecord], accepted: Set[str]) -> Dict:
    """Summarise the marker records of one species."""
    codes = sorted({r.marker_code for r in records})
    accepted_codes = [c for c in codes if c in accepted]
    return {
        'hasBarcode': bool(accepted_codes),
        'markerCount': len(codes),
        'totalSequences': sum(r.sequence_count for r in records),
        'acceptedMarkers': '|'.join(accepted_codes),
        'markers': '|'.join(codes),
    }


def classify_species(
    checklist: pd.DataFrame,
    mapping: Dict[str, List[MarkerRecord]],
    accepted_markers: Iterable[str],
) -> pd.DataFrame:
    """
    Classify every checklist species as barcoded or gap.

    Args:
        checklist: Species checklist (scientificName, taxonID, phylum, records)
        mapping: Resolved marker records by scientific name
        accepted_markers: Marker codes that count as a barcode

    Returns:
        pd.DataFrame: One row per checklist entry with the STATUS_COLUMNS
    """
    accepted = accepted_marker_set(accepted_markers)

    rows = []
    for entry in checklist.to_dict('records'):
        name = entry['scientificName']
        status = barcode_status(mapping.get(name, []), accepted)
        phylum = entry.get('phylum')
        occurrences = entry.get('records')
        rows.append({
            'phylum': UNKNOWN_PHYLUM if pd.isna(phylum) or not str(phylum).strip() else phylum,
            'scientificName': name,
            'taxonID': None if pd.isna(entry.get('taxonID')) else entry.get('taxonID'),
            'occurrenceRecords': 0 if pd.isna(occurrences) else int(occurrences),
            **status,
        })

    status_df = pd.DataFrame(rows, columns=STATUS_COLUMNS)
    status_df = status_df.astype({
        'hasBarcode': bool,
        'markerCount': int,
        'totalSequences': int,
        'occurrenceRecords': int,
    })

    with_barcode = int(status_df['hasBarcode'].sum())
    logger.info(f"Classified {len(status_df)} species: {with_barcode} with barcodes, "
                f"{len(status_df) - with_barcode} gaps")
    return status_df


def summarize_by_phylum(status: pd.DataFrame) -> pd.DataFrame:
    """
    Count species per phylum and barcode status.

    Returns:
        pd.DataFrame: phylum, hasBarcode, speciesCount sorted by phylum
    """
    summary = (
        status.groupby(['phylum', 'hasBarcode'])
        .size()
        .reset_index(name='speciesCount')
        .sort_values(['phylum', 'hasBarcode'], ascending=[True, False])
        .reset_index(drop=True)
    )
    logger.info(f"Phylum summary covers {summary['phylum'].nunique()} phyla")
    return summary


def rank_gaps(status: pd.DataFrame, top_n: int = 5) -> pd.DataFrame:
    """
    Most-observed species without a barcode, per phylum.

    Gap species are ordered by occurrence records (descending, ties by name)
    and the first top_n of each phylum are kept.
    """
    gaps = status[~status['hasBarcode']]
    ranked = (
        gaps.sort_values(
            ['phylum', 'occurrenceRecords', 'scientificName'],
            ascending=[True, False, True],
            kind='mergesort',
        )
        .groupby('phylum', sort=False)
        .head(top_n)
        .reset_index(drop=True)
    )
    ranked.insert(1, 'rank', ranked.groupby('phylum').cumcount() + 1)
    return ranked


def marker_frequency(mapping: Dict[str, List[MarkerRecord]], accepted_markers: Iterable[str]) -> pd.DataFrame:
    """
    Tally markers across all resolved taxa.

    Returns:
        pd.DataFrame: markerCode, accepted, speciesCount, totalSequences,
                      totalSpecimenRecords, most frequent first
    """
    accepted = accepted_marker_set(accepted_markers)
    species = defaultdict(set)
    sequences = defaultdict(int)
    specimens = defaultdict(int)
    for name, records in mapping.items():
        for record in records:
            species[record.marker_code].add(name)
            sequences[record.marker_code] += record.sequence_count
            specimens[record.marker_code] += record.specimen_record_count

    rows = [
        {
            'markerCode': code,
            'accepted': code in accepted,
            'speciesCount': len(species[code]),
            'totalSequences': sequences[code],
            'totalSpecimenRecords': specimens[code],
        }
        for code in species
    ]
    columns = ['markerCode', 'accepted', 'speciesCount', 'totalSequences', 'totalSpecimenRecords']
    frequency = pd.DataFrame(rows, columns=columns)
    if frequency.empty:
        return frequency
    return frequency.sort_values(
        ['speciesCount', 'totalSequences', 'markerCode'],
        ascending=[False, False, True],
    ).reset_index(drop=True)


def coverage_overview(variant: str, status: pd.DataFrame) -> Dict:
    """Headline counts for one checklist variant."""
    total = len(status)
    with_barcode = int(status['hasBarcode'].sum()) if total else 0
    return {
        'variant': variant,
        'species': total,
        'withBarcode': with_barcode,
        'gaps': total - with_barcode,
        'coveragePercent': round(100.0 * with_barcode / total, 1) if total else 0.0,
        'phyla': int(status['phylum'].nunique()) if total else 0,
    }
