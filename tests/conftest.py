"""Pytest configuration and fixtures for the barcode gap tests"""
import pandas as pd
import pytest

from barcode_gaps.barcodes import MarkerRecord
from barcode_gaps.config import load_config
from barcode_gaps.errors import SourceUnavailable
from barcode_gaps.sources import standardize_columns

BOLD_STATISTICS = {
    'Perna viridis': [
        {'markerCode': 'COI-5P', 'sequenceCount': 40, 'specimenRecordCount': 38},
        {'markerCode': '16S', 'sequenceCount': 5, 'specimenRecordCount': 5},
    ],
    'Asterias amurensis': [
        {'markerCode': 'COI-5P', 'sequenceCount': 12, 'specimenRecordCount': 12},
    ],
    'Acanthaster planci': [
        {'markerCode': 'ITS', 'sequenceCount': 3, 'specimenRecordCount': 3},
    ],
    'Mytilopsis sallei': [],
}

# Names whose lookup times out
FAILING_TAXA = {'Carcinus maenas'}


class FakeBold:
    """Stands in for BoldClient.statistics and records every lookup."""

    def __init__(self, statistics=None, failing=None):
        self.statistics = BOLD_STATISTICS if statistics is None else statistics
        self.failing = FAILING_TAXA if failing is None else failing
        self.calls = []

    def __call__(self, name):
        self.calls.append(name)
        if name in self.failing:
            raise SourceUnavailable(f"timeout querying {name}")
        return list(self.statistics.get(name, []))


def _frame(rows, source):
    df = standardize_columns(pd.DataFrame(rows))
    df['sources'] = source
    return df


@pytest.fixture
def config():
    """Built-in configuration"""
    return load_config()


@pytest.fixture
def fake_bold():
    return FakeBold()


@pytest.fixture
def source_frames():
    """Small priority, regional and WRiMS checklists with overlapping species"""
    priority = _frame([
        {'scientificName': 'Perna viridis', 'taxonRank': 'Species', 'phylum': 'Mollusca', 'remarks': 'Asian green mussel'},
        {'scientificName': 'Mytilopsis sallei', 'taxonRank': 'Species'},
        {'scientificName': 'Asterias amurensis', 'taxonRank': 'Species', 'phylum': 'Echinodermata'},
    ], 'priority')
    regional = _frame([
        {'taxonID': 140481, 'scientificName': 'Perna viridis', 'taxonRank': 'Species', 'phylum': 'Mollusca', 'records': 120},
        {'taxonID': 397125, 'scientificName': 'Mytilopsis sallei', 'taxonRank': 'Species', 'phylum': 'Mollusca', 'records': 45},
        {'taxonID': 138228, 'scientificName': 'Mytilus', 'taxonRank': 'Genus', 'phylum': 'Mollusca', 'records': 900},
        {'taxonID': 213289, 'scientificName': 'Acanthaster planci', 'taxonRank': 'Species', 'phylum': 'Echinodermata', 'records': 300},
    ], 'regional')
    wrims = _frame([
        {'taxonID': 'urn:lsid:marinespecies.org:taxname:140481', 'scientificName': 'Perna viridis', 'taxonRank': 'SPECIES', 'phylum': 'Mollusca'},
        {'taxonID': 'urn:lsid:marinespecies.org:taxname:107381', 'scientificName': 'Carcinus maenas', 'taxonRank': 'SPECIES', 'phylum': 'Arthropoda'},
    ], 'wrims')
    return {'priority': priority, 'regional': regional, 'wrims': wrims}


@pytest.fixture
def fake_fetcher(source_frames):
    """Source adapter serving source_frames and recording which sources were fetched"""
    calls = []

    def fetch(name, settings, config):
        calls.append(name)
        return source_frames[name].copy()

    fetch.calls = calls
    return fetch


@pytest.fixture
def marker_mapping():
    return {
        'Perna viridis': [
            MarkerRecord('Perna viridis', '16S', 5, 5),
            MarkerRecord('Perna viridis', 'COI-5P', 40, 38),
        ],
        'Acanthaster planci': [
            MarkerRecord('Acanthaster planci', 'ITS', 3, 3),
        ],
        'Mytilopsis sallei': [],
    }
