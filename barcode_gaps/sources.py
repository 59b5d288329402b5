"""
Checklist source adapters.

Each adapter turns one checklist source into a DataFrame with the standard
checklist columns:

- Expert priority lists: CSV/TSV files curated by regional experts
- Regional checklist: OBIS species checklist for the South Pacific
- WRiMS checklist: GBIF copy of the World Register of Introduced Marine Species

Rows are returned as delivered; cleaning and deduplication happen in the
checklist module.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from barcode_gaps.api_clients import GBIFClient, OBISClient
from barcode_gaps.errors import CacheCorrupt, SourceUnavailable

logger = logging.getLogger(__name__)

CHECKLIST_COLUMNS = [
    'taxonID',
    'scientificName',
    'taxonRank',
    'phylum',
    'references',
    'remarks',
    'records',
    'sources',
]

# Header spellings seen in expert spreadsheets
COLUMN_ALIASES = {
    'species': 'scientificName',
    'scientific_name': 'scientificName',
    'scientificname': 'scientificName',
    'name': 'scientificName',
    'taxon': 'scientificName',
    'rank': 'taxonRank',
    'taxon_rank': 'taxonRank',
    'taxonrank': 'taxonRank',
    'id': 'taxonID',
    'taxonid': 'taxonID',
    'taxon_id': 'taxonID',
    'aphiaid': 'taxonID',
    'aphia_id': 'taxonID',
    'phylum': 'phylum',
    'references': 'references',
    'reference': 'references',
    'remarks': 'remarks',
    'notes': 'remarks',
    'records': 'records',
}


def standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename known aliases to the standard columns and add any that are missing."""
    renames = {}
    for col in df.columns:
        key = str(col).strip().lower()
        target = COLUMN_ALIASES.get(key)
        if target and target not in df.columns and target not in renames.values():
            renames[col] = target
    df = df.rename(columns=renames)
    for col in CHECKLIST_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA
    return df[CHECKLIST_COLUMNS].copy()


# Open-nomenclature qualifiers that mark a name as not a plain binomial
NAME_QUALIFIERS = {'sp', 'sp.', 'spp', 'spp.', 'cf', 'cf.', 'aff', 'aff.'}


def is_binomial_name(name: str) -> bool:
    """
    Determine if a name is a plain Linnean binomial ("Genus species").

    Returns False for:
    - "Mytilopsis sp."
    - "Perna cf. viridis"
    - "Gammarus sp. 2118c"
    - Genus-only names and trinomials
    """
    if not name or not name.strip():
        return False
    parts = name.split()
    if len(parts) != 2:
        return False
    if any(part.lower() in NAME_QUALIFIERS for part in parts):
        return False
    if any(char.isdigit() for char in name):
        return False
    genus, epithet = parts
    return genus[0].isupper() and epithet[0].islower()


def read_expert_list(path: Path, source: str) -> pd.DataFrame:
    """
    Read one expert priority list.

    TSV files are detected by suffix; anything else is read as CSV. Lists
    often have no rank column, so plain binomials default to Species; names
    with sp., cf. or aff. keep an empty rank and drop out at the species filter.

    Raises:
        SourceUnavailable: If the file is missing or cannot be parsed
    """
    path = Path(path)
    logger.info(f"Loading expert list from {path}")
    sep = '\t' if path.suffix.lower() in ('.tsv', '.tab') else ','
    try:
        df = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=True)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise SourceUnavailable(f"Cannot read expert list {path}: {e}") from e

    df = standardize_columns(df)
    names = df['scientificName'].fillna('').astype(str).str.strip()
    missing_rank = df['taxonRank'].isna()
    binomial = names.map(is_binomial_name).astype(bool)
    df.loc[missing_rank & binomial, 'taxonRank'] = 'Species'
    df['sources'] = source

    logger.info(f"Loaded {len(df)} rows from {path.name}")
    return df


def fetch_expert_lists(paths: List[str], source: str) -> pd.DataFrame:
    """Concatenate several expert lists in the order given."""
    frames = [read_expert_list(Path(p), source) for p in paths]
    return pd.concat(frames, ignore_index=True) if frames else standardize_columns(pd.DataFrame())


def obis_rows_to_frame(rows: List[Dict[str, Any]], source: str) -> pd.DataFrame:
    """Convert OBIS checklist rows to the standard columns."""
    df = standardize_columns(pd.DataFrame(rows))
    df['sources'] = source
    return df


def gbif_rows_to_frame(rows: List[Dict[str, Any]], source: str) -> pd.DataFrame:
    """
    Convert GBIF name usages to the standard columns.

    GBIF scientific names carry the authorship, so the canonical name is used
    instead, and the source identifier (a WoRMS LSID for WRiMS) becomes taxonID.
    """
    records = []
    for row in rows:
        records.append({
            'taxonID': row.get('taxonID'),
            'scientificName': row.get('canonicalName') or row.get('scientificName'),
            'taxonRank': row.get('rank'),
            'phylum': row.get('phylum'),
            'references': row.get('references'),
            'remarks': row.get('remarks'),
            'records': None,
            'sources': source,
        })
    return standardize_columns(pd.DataFrame(records))


def _json_value(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, 'item'):
        return value.item()
    return value


def frame_to_payload(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Checklist rows as JSON-compatible dicts (missing values become None)."""
    return [
        {col: _json_value(row.get(col)) for col in CHECKLIST_COLUMNS}
        for row in df.to_dict('records')
    ]


def frame_from_payload(payload: Any) -> pd.DataFrame:
    """
    Rebuild a cached checklist.

    Raises:
        CacheCorrupt: If the payload is not a list of row mappings
    """
    if not isinstance(payload, list) or not all(isinstance(row, dict) for row in payload):
        raise CacheCorrupt('checklist payload must be a list of rows')
    return standardize_columns(pd.DataFrame(payload))


def fetch_source(name: str, settings: Dict[str, Any], config: Dict[str, Any]) -> pd.DataFrame:
    """
    Fetch one configured checklist source.

    Args:
        name: Source name from the configuration
        settings: The source's configuration block (with 'kind')
        config: Full run configuration, for API client settings

    Returns:
        pd.DataFrame: Checklist rows in the standard columns

    Raises:
        SourceUnavailable: If the source cannot be reached or read
    """
    kind = settings['kind']
    logger.info(f"Fetching checklist source '{name}' ({kind})")

    if kind == 'expert':
        df = fetch_expert_lists(settings['paths'], name)
    elif kind == 'obis':
        client = OBISClient(**config['obis'])
        rows = client.get_checklist(
            geometry=settings.get('geometry'),
            area_id=settings.get('area_id'),
            taxon_id=settings.get('taxon_id'),
        )
        df = obis_rows_to_frame(rows, name)
    elif kind == 'wrims':
        client = GBIFClient(**config['gbif'])
        rows = client.search_dataset(settings['dataset_key'])
        df = gbif_rows_to_frame(rows, name)
    else:
        raise ValueError(f"Unknown source kind: {kind}")

    if df.empty:
        logger.warning(f"Source '{name}' returned no entries")
    else:
        logger.info(f"Source '{name}' returned {len(df)} entries")
    return df
