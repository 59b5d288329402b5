"""
Checklist merging.

Source checklists are merged into one table with a unique identity key per
taxon: taxonID when present, otherwise the scientific name.

Join rules:
- Two entries match when both have a taxonID and the IDs are equal, or when
  at least one of them has no taxonID and the scientific names are equal
  (case-insensitive).
- Matched entries keep every non-null field. When both sides have distinct
  non-null values, the earlier source in priority order wins.
- Unmatched entries are appended (full outer join), except during
  enrichment, where only existing entries are filled (left join).
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from barcode_gaps.errors import ChecklistUnavailable, MalformedRecord
from barcode_gaps.sources import CHECKLIST_COLUMNS

logger = logging.getLogger(__name__)

SPECIES_RANK = 'Species'

_LSID_PATTERN = re.compile(r'^urn:lsid:marinespecies\.org:taxname:(\d+)$', re.IGNORECASE)


def _is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def normalize_taxon_id(value) -> Optional[str]:
    """
    Normalise a taxon identifier to a comparable string.

    WoRMS LSIDs (as used by WRiMS on GBIF) become the bare AphiaID so they
    match the numeric IDs returned by OBIS. Integral floats lose their '.0'.

    Examples:
        'urn:lsid:marinespecies.org:taxname:140481' -> '140481'
        140481.0 -> '140481'
    """
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    match = _LSID_PATTERN.match(text)
    if match:
        return match.group(1)
    return text


def normalize_rank(value) -> Optional[str]:
    """'SPECIES' / 'species' -> 'Species'."""
    if _is_missing(value):
        return None
    return str(value).strip().capitalize()


def normalize_name(value) -> Optional[str]:
    """Collapse whitespace in a scientific name."""
    if _is_missing(value):
        return None
    return ' '.join(str(value).split())


def identity_key(entry: Dict) -> str:
    """taxonID when present, else scientificName."""
    taxon_id = entry.get('taxonID')
    if not _is_missing(taxon_id):
        return str(taxon_id)
    return entry['scientificName']


def identity_keys(checklist: pd.DataFrame) -> pd.Series:
    """Identity key of every row of a checklist."""
    return pd.Series(
        [identity_key(row) for row in checklist.to_dict('records')],
        index=checklist.index,
        dtype=object,
    )


def _validate_entry(entry: Dict) -> Dict:
    if _is_missing(entry.get('scientificName')):
        raise MalformedRecord('missing scientificName')
    return entry


def _combine_sources(first, second) -> Optional[str]:
    names = []
    for value in (first, second):
        if _is_missing(value):
            continue
        for name in str(value).split(';'):
            if name and name not in names:
                names.append(name)
    return ';'.join(names) if names else None


class _MergeIndex:
    """Entries under construction with lookups by taxonID and by name."""

    def __init__(self) -> None:
        self.entries: List[Dict] = []
        self.by_id: Dict[str, int] = {}
        self.by_name: Dict[str, List[int]] = {}

    def find(self, entry: Dict) -> Optional[int]:
        taxon_id = entry.get('taxonID')
        if taxon_id is not None and taxon_id in self.by_id:
            return self.by_id[taxon_id]
        for position in self.by_name.get(entry['scientificName'].lower(), []):
            candidate_id = self.entries[position].get('taxonID')
            if taxon_id is None or candidate_id is None:
                return position
        return None

    def append(self, entry: Dict) -> None:
        position = len(self.entries)
        self.entries.append(dict(entry))
        self._register(position)

    def fill(self, position: int, entry: Dict) -> None:
        current = self.entries[position]
        had_id = current.get('taxonID') is not None
        for col in CHECKLIST_COLUMNS:
            if col == 'sources':
                current['sources'] = _combine_sources(current.get('sources'), entry.get('sources'))
            elif _is_missing(current.get(col)) and not _is_missing(entry.get(col)):
                current[col] = entry[col]
        if not had_id and current.get('taxonID') is not None:
            self._register(position)

    def _register(self, position: int) -> None:
        entry = self.entries[position]
        taxon_id = entry.get('taxonID')
        if taxon_id is not None:
            self.by_id.setdefault(taxon_id, position)
        positions = self.by_name.setdefault(entry['scientificName'].lower(), [])
        if position not in positions:
            positions.append(position)

    def to_frame(self) -> pd.DataFrame:
        return _to_frame(self.entries)


def _to_frame(entries: List[Dict]) -> pd.DataFrame:
    df = pd.DataFrame(entries, columns=CHECKLIST_COLUMNS)
    df['records'] = pd.to_numeric(df['records'], errors='coerce').round().astype('Int64')
    return df.astype({col: object for col in CHECKLIST_COLUMNS if col != 'records'})


def _clean_entries(checklist: pd.DataFrame, source: str) -> List[Dict]:
    entries = []
    excluded = 0
    for row in checklist.to_dict('records'):
        entry = {col: (None if _is_missing(row.get(col)) else row.get(col)) for col in CHECKLIST_COLUMNS}
        entry['scientificName'] = normalize_name(entry['scientificName'])
        entry['taxonID'] = normalize_taxon_id(entry['taxonID'])
        entry['taxonRank'] = normalize_rank(entry['taxonRank'])
        if entry['sources'] is None:
            entry['sources'] = source
        try:
            entries.append(_validate_entry(entry))
        except MalformedRecord as e:
            excluded += 1
            logger.debug(f"Excluded row from '{source}': {e} ({row})")
    if excluded:
        logger.warning(f"Excluded {excluded} malformed rows from '{source}' (missing scientificName)")
    return entries


def normalize_checklist(checklist: pd.DataFrame, source: str) -> pd.DataFrame:
    """
    Clean one source checklist.

    Names, ranks and identifiers are normalised, rows without a scientific
    name are excluded, and duplicate identity keys within the source are
    collapsed with the first row taking priority.

    Args:
        checklist: Rows in the standard checklist columns
        source: Source name, used for the sources column and log messages

    Returns:
        pd.DataFrame: Checklist with unique identity keys
    """
    index = _MergeIndex()
    for entry in _clean_entries(checklist, source):
        position = index.find(entry)
        if position is None:
            index.append(entry)
        else:
            index.fill(position, entry)
    return index.to_frame()


def merge_checklists(checklists: Iterable[Tuple[str, pd.DataFrame]]) -> pd.DataFrame:
    """
    Full outer join of source checklists in priority order.

    Args:
        checklists: (source name, checklist) pairs, highest priority first

    Returns:
        pd.DataFrame: Merged checklist with unique identity keys
    """
    index = _MergeIndex()
    for source, checklist in checklists:
        if checklist is None or checklist.empty:
            logger.warning(f"Checklist source '{source}' is empty, nothing to merge")
            continue
        before = len(index.entries)
        for entry in normalize_checklist(checklist, source).to_dict('records'):
            entry = {col: (None if _is_missing(entry.get(col)) else entry.get(col)) for col in CHECKLIST_COLUMNS}
            position = index.find(entry)
            if position is None:
                index.append(entry)
            else:
                index.fill(position, entry)
        logger.info(f"Merged '{source}': {len(index.entries) - before} new taxa, {len(index.entries)} total")
    return index.to_frame()


def enrich_checklist(checklist: pd.DataFrame, enrichers: Iterable[Tuple[str, pd.DataFrame]]) -> pd.DataFrame:
    """
    Left join: fill missing fields of existing entries from secondary sources.

    No entries are added. Used to attach phylum and occurrence counts from the
    regional checklist to the priority and WRiMS lists.
    """
    index = _MergeIndex()
    for entry in checklist.to_dict('records'):
        index.append({col: (None if _is_missing(entry.get(col)) else entry.get(col)) for col in CHECKLIST_COLUMNS})

    for source, secondary in enrichers:
        if secondary is None or secondary.empty:
            logger.warning(f"Enrichment source '{source}' is empty, skipping")
            continue
        filled = 0
        for entry in normalize_checklist(secondary, source).to_dict('records'):
            entry = {col: (None if _is_missing(entry.get(col)) else entry.get(col)) for col in CHECKLIST_COLUMNS}
            position = index.find(entry)
            if position is not None:
                index.fill(position, entry)
                filled += 1
        logger.info(f"Enriched {filled} of {len(index.entries)} taxa from '{source}'")
    return index.to_frame()


def filter_species(checklist: pd.DataFrame) -> pd.DataFrame:
    """Keep species-rank entries only."""
    species = checklist[checklist['taxonRank'] == SPECIES_RANK].reset_index(drop=True)
    dropped = len(checklist) - len(species)
    if dropped:
        logger.info(f"Dropped {dropped} entries above or below species rank")
    return species


def build_variant_checklist(
    variant: str,
    settings: Dict,
    fetched: Dict[str, Optional[pd.DataFrame]],
) -> pd.DataFrame:
    """
    Assemble the species checklist for one variant.

    Args:
        variant: Variant name, for log messages
        settings: Variant configuration with 'sources' and optional 'enrich_from'
        fetched: Source name -> fetched checklist, or None if the source failed

    Returns:
        pd.DataFrame: Species-rank checklist

    Raises:
        ChecklistUnavailable: If none of the variant's sources could be fetched
    """
    sources = list(settings['sources'])
    available = [(name, fetched.get(name)) for name in sources if fetched.get(name) is not None]
    if not available:
        raise ChecklistUnavailable(f"All sources of variant '{variant}' failed: {', '.join(sources)}")

    merged = merge_checklists(available)
    enrichers = [
        (name, fetched.get(name))
        for name in settings.get('enrich_from') or []
        if fetched.get(name) is not None
    ]
    if enrichers:
        merged = enrich_checklist(merged, enrichers)

    species = filter_species(merged)
    logger.info(f"Variant '{variant}': {len(species)} species")
    return species
