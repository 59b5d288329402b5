"""Tests for checklist cleaning, merging and enrichment"""
import logging

import pandas as pd
import pytest

from barcode_gaps.checklist import (
    build_variant_checklist,
    enrich_checklist,
    filter_species,
    identity_keys,
    merge_checklists,
    normalize_checklist,
    normalize_rank,
    normalize_taxon_id,
)
from barcode_gaps.errors import ChecklistUnavailable
from barcode_gaps.sources import standardize_columns


def make_checklist(rows):
    return standardize_columns(pd.DataFrame(rows))


class TestNormalization:

    def test_worms_lsid_becomes_aphia_id(self):
        assert normalize_taxon_id('urn:lsid:marinespecies.org:taxname:140481') == '140481'

    def test_integral_float_id_loses_decimal(self):
        assert normalize_taxon_id(140481.0) == '140481'
        assert normalize_taxon_id(140481) == '140481'

    def test_missing_ids(self):
        assert normalize_taxon_id(None) is None
        assert normalize_taxon_id('  ') is None
        assert normalize_taxon_id(float('nan')) is None

    def test_rank_case(self):
        assert normalize_rank('SPECIES') == 'Species'
        assert normalize_rank(' genus ') == 'Genus'
        assert normalize_rank(None) is None

    def test_malformed_rows_excluded_and_logged(self, caplog):
        checklist = make_checklist([
            {'scientificName': 'Perna  viridis', 'taxonRank': 'Species'},
            {'scientificName': None, 'taxonRank': 'Species', 'taxonID': 99},
            {'scientificName': '   ', 'taxonRank': 'Species'},
        ])
        with caplog.at_level(logging.WARNING, logger='barcode_gaps.checklist'):
            cleaned = normalize_checklist(checklist, 'priority')

        assert list(cleaned['scientificName']) == ['Perna viridis']
        assert 'Excluded 2 malformed rows' in caplog.text

    def test_duplicates_within_source_collapse(self):
        checklist = make_checklist([
            {'taxonID': 1, 'scientificName': 'Perna viridis', 'taxonRank': 'Species'},
            {'taxonID': 1, 'scientificName': 'Perna viridis', 'taxonRank': 'Species', 'phylum': 'Mollusca'},
        ])
        cleaned = normalize_checklist(checklist, 'regional')

        assert len(cleaned) == 1
        assert cleaned.loc[0, 'phylum'] == 'Mollusca'


class TestMerge:

    def test_merge_with_itself_is_identity(self, source_frames):
        original = normalize_checklist(source_frames['regional'], 'regional')
        merged = merge_checklists([('regional', original), ('regional', original)])

        assert set(identity_keys(merged)) == set(identity_keys(original))
        pd.testing.assert_frame_equal(merged, original)

    def test_every_input_key_present_exactly_once(self):
        sources = [
            ('priority', make_checklist([
                {'taxonID': 1, 'scientificName': 'Perna viridis', 'taxonRank': 'Species'},
                {'scientificName': 'Didemnum vexillum', 'taxonRank': 'Species'},
            ])),
            ('regional', make_checklist([
                {'taxonID': 1, 'scientificName': 'Perna viridis', 'taxonRank': 'Species'},
                {'taxonID': 2, 'scientificName': 'Styela clava', 'taxonRank': 'Species'},
                {'taxonID': 3, 'scientificName': 'Mytilus', 'taxonRank': 'Genus'},
            ])),
            ('wrims', make_checklist([
                {'taxonID': 2, 'scientificName': 'Styela clava', 'taxonRank': 'Species'},
                {'taxonID': 4, 'scientificName': 'Carcinus maenas', 'taxonRank': 'Species'},
            ])),
        ]
        merged = merge_checklists(sources)
        keys = list(identity_keys(merged))

        assert len(keys) == len(set(keys))
        for _, checklist in sources:
            for key in identity_keys(normalize_checklist(checklist, 'x')):
                assert keys.count(key) == 1

    def test_first_source_wins_conflicts_and_nulls_are_filled(self):
        expert = make_checklist([
            {'scientificName': 'Perna viridis', 'taxonID': '140481', 'taxonRank': 'Species',
             'phylum': 'Mollusca', 'remarks': 'expert note'},
        ])
        regional = make_checklist([
            {'scientificName': 'Perna viridis', 'taxonID': 140481, 'taxonRank': 'Species',
             'phylum': 'Mollusca (regional)', 'records': 50, 'references': 'OBIS'},
        ])
        merged = merge_checklists([('priority', expert), ('regional', regional)])

        assert len(merged) == 1
        row = merged.iloc[0]
        assert row['phylum'] == 'Mollusca'
        assert row['remarks'] == 'expert note'
        assert row['references'] == 'OBIS'
        assert row['records'] == 50
        assert row['sources'] == 'priority;regional'

    def test_name_match_adopts_identifier(self):
        expert = make_checklist([{'scientificName': 'perna viridis', 'taxonRank': 'Species'}])
        regional = make_checklist([{'scientificName': 'Perna viridis', 'taxonID': 140481, 'taxonRank': 'Species'}])
        merged = merge_checklists([('priority', expert), ('regional', regional)])

        assert len(merged) == 1
        assert merged.loc[0, 'taxonID'] == '140481'
        assert merged.loc[0, 'scientificName'] == 'perna viridis'

    def test_same_name_different_ids_stay_separate(self):
        first = make_checklist([{'scientificName': 'Dolium', 'taxonID': 1, 'taxonRank': 'Genus'}])
        second = make_checklist([{'scientificName': 'Dolium', 'taxonID': 2, 'taxonRank': 'Genus'}])
        merged = merge_checklists([('a', first), ('b', second)])

        assert sorted(merged['taxonID']) == ['1', '2']

    def test_lsid_matches_obis_id(self, source_frames):
        merged = merge_checklists([('regional', source_frames['regional']), ('wrims', source_frames['wrims'])])

        perna = merged[merged['scientificName'] == 'Perna viridis']
        assert len(perna) == 1
        assert perna.iloc[0]['sources'] == 'regional;wrims'
        assert 'Carcinus maenas' in set(merged['scientificName'])

    def test_empty_source_is_skipped(self, source_frames, caplog):
        empty = make_checklist([])
        with caplog.at_level(logging.WARNING, logger='barcode_gaps.checklist'):
            merged = merge_checklists([('priority', empty), ('wrims', source_frames['wrims'])])

        assert len(merged) == 2
        assert "'priority' is empty" in caplog.text


class TestEnrichAndFilter:

    def test_enrich_fills_without_adding(self, source_frames):
        priority = merge_checklists([('priority', source_frames['priority'])])
        enriched = enrich_checklist(priority, [('regional', source_frames['regional'])])

        assert list(enriched['scientificName']) == ['Perna viridis', 'Mytilopsis sallei', 'Asterias amurensis']
        mytilopsis = enriched.set_index('scientificName').loc['Mytilopsis sallei']
        assert mytilopsis['phylum'] == 'Mollusca'
        assert mytilopsis['records'] == 45
        assert mytilopsis['taxonID'] == '397125'
        assert pd.isna(enriched.set_index('scientificName').loc['Asterias amurensis', 'records'])

    def test_filter_species(self, source_frames):
        merged = merge_checklists([('regional', source_frames['regional'])])
        species = filter_species(merged)

        assert 'Mytilus' not in set(species['scientificName'])
        assert set(species['taxonRank']) == {'Species'}

    def test_gbif_ranks_count_as_species(self, source_frames):
        species = filter_species(merge_checklists([('wrims', source_frames['wrims'])]))
        assert len(species) == 2


class TestVariantChecklist:

    def test_all_sources_failed(self):
        with pytest.raises(ChecklistUnavailable):
            build_variant_checklist('regional', {'sources': ['regional']}, {'regional': None})

    def test_failed_source_is_left_out(self, source_frames):
        fetched = {'priority': source_frames['priority'], 'regional': None, 'wrims': source_frames['wrims']}
        settings = {'sources': ['priority', 'regional', 'wrims']}
        species = build_variant_checklist('combined', settings, fetched)

        assert set(species['scientificName']) == {
            'Perna viridis', 'Mytilopsis sallei', 'Asterias amurensis', 'Carcinus maenas',
        }

    def test_combined_variant(self, source_frames):
        settings = {'sources': ['priority', 'regional', 'wrims']}
        species = build_variant_checklist('combined', settings, source_frames)

        assert len(species) == 5
        assert len(set(identity_keys(species))) == 5
        perna = species.set_index('scientificName').loc['Perna viridis']
        assert perna['taxonID'] == '140481'
        assert perna['sources'] == 'priority;regional;wrims'
