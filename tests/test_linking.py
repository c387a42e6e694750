"""
Tests for administrative linking helpers
"""

import pandas as pd
import pytest

from communitysize.linking import attach_crosswalk, attach_regions, select_dominant_region


@pytest.fixture
def overlay_pieces():
    """Overlay of three cells with census subdivisions (overlap in km²)."""
    return pd.DataFrame(
        {
            "cell_id": [1, 1, 2, 2, 3],
            "CSDUID": ["4611040", "4611042", "4810001", "4810002", "3526053"],
            "CSDNAME": ["Winnipeg", "Headingley", "Lethbridge", "Coaldale", "St. Catharines"],
            "overlap_area": [60.0, 40.0, 50.0, 50.0, 100.0],
        }
    )


@pytest.fixture
def crosswalk():
    return pd.DataFrame(
        {
            "CSDUID": ["4611040", "4810001", "3526053"],
            "ERUID": ["4650", "4810", "3550"],
            "ERNAME": ["Winnipeg", "Lethbridge--Medicine Hat", "Hamilton--Niagara Peninsula"],
        }
    )


class TestSelectDominantRegion:
    def test_largest_overlap_wins(self, overlay_pieces):
        dominant = select_dominant_region(overlay_pieces)
        assert dominant.set_index("cell_id").loc[1, "CSDNAME"] == "Winnipeg"
        assert len(dominant) == 3

    def test_ties_keep_first_row(self, overlay_pieces):
        dominant = select_dominant_region(overlay_pieces)
        assert dominant.set_index("cell_id").loc[2, "CSDNAME"] == "Lethbridge"

    def test_missing_overlap_loses(self):
        pieces = pd.DataFrame(
            {"cell_id": [1, 1], "CSDNAME": ["A", "B"], "overlap_area": [None, 1.0]}
        )
        assert select_dominant_region(pieces)["CSDNAME"].tolist() == ["B"]

    def test_empty_input(self):
        empty = pd.DataFrame(columns=["cell_id", "overlap_area"])
        assert select_dominant_region(empty).empty


class TestAttachCrosswalk:
    def test_numeric_keys_match_text_keys(self, crosswalk):
        cells = pd.DataFrame({"cell_id": [1, 2], "CSDUID": [4611040, 3526053]})
        joined = attach_crosswalk(cells, crosswalk, on="CSDUID")
        assert joined["ERUID"].tolist() == ["4650", "3550"]
        assert list(joined.index) == list(cells.index)

    def test_unmatched_rows_kept(self, crosswalk):
        cells = pd.DataFrame({"cell_id": [1, 2], "CSDUID": ["4611040", "9999999"]})
        joined = attach_crosswalk(cells, crosswalk, on="CSDUID", columns=["ERUID"])
        assert joined["ERUID"].isna().tolist() == [False, True]
        assert "ERNAME" not in joined.columns

    def test_duplicate_keys_rejected(self, crosswalk):
        doubled = pd.concat([crosswalk, crosswalk.iloc[[0]]])
        cells = pd.DataFrame({"CSDUID": ["4611040"]})
        with pytest.raises(ValueError, match="duplicate keys"):
            attach_crosswalk(cells, doubled, on="CSDUID")

    def test_missing_key_column(self, crosswalk):
        with pytest.raises(KeyError):
            attach_crosswalk(pd.DataFrame({"x": [1]}), crosswalk, on="CSDUID")


class TestAttachRegions:
    def test_labels_merged_onto_cells(self, make_grid, overlay_pieces):
        cells = make_grid(1, 4, start_id=1)
        dominant = select_dominant_region(overlay_pieces)
        labelled = attach_regions(cells, dominant, columns=["CSDUID", "CSDNAME"])
        assert labelled["CSDNAME"].tolist()[:3] == ["Winnipeg", "Lethbridge", "St. Catharines"]
        assert pd.isna(labelled["CSDNAME"].iloc[3])
        assert labelled.geometry.equals(cells.geometry)
