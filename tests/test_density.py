"""
Tests for local population density
"""

import math

import networkx as nx
import pandas as pd
import pytest

from communitysize.adjacency import build_neighbor_graph
from communitysize.density import compute_local_density, local_metrics
from communitysize.errors import DegenerateArea, InvalidInput
from communitysize.weights import row_standardize


@pytest.fixture
def weights_3x3(grid_3x3):
    graph, _ = build_neighbor_graph(grid_3x3)
    return row_standardize(graph)


class TestComputeLocalDensity:
    def test_reference_neighborhood(self, grid_3x3, weights_3x3):
        metrics, degenerate = compute_local_density(grid_3x3, weights_3x3)
        center = metrics.loc[4]
        assert degenerate == []
        assert center["pop_local"] == pytest.approx(910.0)
        assert center["area_local"] == pytest.approx(2.0)
        assert center["local_pop_density"] == pytest.approx(455.0)

    def test_isolated_cell_keeps_own_values(self, make_grid):
        cells = pd.concat(
            [make_grid(2, 2), make_grid(1, 1, pop=37.0, area=4.0, origin=(20.0, 20.0), start_id=50)],
            ignore_index=True,
        )
        graph, _ = build_neighbor_graph(cells)
        metrics, _ = compute_local_density(cells, row_standardize(graph))
        assert metrics.loc[50, "pop_local"] == 37.0
        assert metrics.loc[50, "area_local"] == 4.0
        assert metrics.loc[50, "local_pop_density"] == pytest.approx(37.0 / 4.0)

    def test_positive_areas_give_positive_local_area(self, make_grid):
        cells = make_grid(3, 4, area=0.5)
        graph, _ = build_neighbor_graph(cells)
        metrics, degenerate = compute_local_density(cells, row_standardize(graph))
        assert degenerate == []
        assert (metrics["area_local"] > 0).all()

    def test_degenerate_area_reported_not_raised(self, make_grid):
        cells = pd.concat(
            [make_grid(2, 2), make_grid(1, 1, pop=100.0, area=0.0, origin=(20.0, 20.0), start_id=9)],
            ignore_index=True,
        )
        graph, _ = build_neighbor_graph(cells)
        metrics, degenerate = compute_local_density(cells, row_standardize(graph))
        assert [d.cell_id for d in degenerate] == [9]
        assert math.isnan(metrics.loc[9, "local_pop_density"])
        assert metrics.loc[0, "local_pop_density"] == pytest.approx(10.0)

    @pytest.mark.parametrize("pop0", [float("nan"), -5.0, float("inf")])
    def test_invalid_population_reported(self, make_grid, pop0):
        cells = make_grid(1, 3, pop=20.0)
        cells.loc[0, "pop"] = pop0
        graph, _ = build_neighbor_graph(cells)
        metrics, problems = compute_local_density(cells, row_standardize(graph))
        assert all(isinstance(p, InvalidInput) for p in problems)
        assert sorted(p.cell_id for p in problems) == [0, 1]
        reasons = {p.cell_id: p.message for p in problems}
        assert reasons[0].startswith("population")
        assert "[0]" in reasons[1]
        assert metrics["local_pop_density"].isna().tolist() == [True, True, False]
        assert metrics.loc[2, "local_pop_density"] == pytest.approx(20.0)

    def test_missing_area_reported(self, make_grid):
        cells = make_grid(1, 1)
        cells["area_km2"] = None
        graph, _ = build_neighbor_graph(cells)
        metrics, problems = compute_local_density(cells, row_standardize(graph))
        assert [(type(p), p.cell_id) for p in problems] == [(InvalidInput, 0)]
        assert math.isnan(metrics.loc[0, "local_pop_density"])

    def test_custom_column_names(self, grid_3x3, weights_3x3):
        cells = grid_3x3.rename(columns={"cell_id": "BIOMASS_FR", "pop": "TOT_POP2A", "area_km2": "TOT_LND_AR"})
        metrics, _ = compute_local_density(
            cells, weights_3x3, id_col="BIOMASS_FR", pop_col="TOT_POP2A", area_col="TOT_LND_AR"
        )
        assert metrics.index.name == "BIOMASS_FR"
        assert metrics.loc[4, "local_pop_density"] == pytest.approx(455.0)


class TestLocalMetrics:
    def test_matches_frame_computation(self, grid_3x3, weights_3x3):
        pops = grid_3x3.set_index("cell_id")["pop"].to_dict()
        areas = grid_3x3.set_index("cell_id")["area_km2"].to_dict()
        m = local_metrics(4, weights_3x3, pops, areas)
        assert (m.pop_local, m.area_local) == (pytest.approx(910.0), pytest.approx(2.0))
        assert m.density == pytest.approx(455.0)

    def test_zero_area_raises(self):
        graph = nx.Graph()
        graph.add_node("x")
        with pytest.raises(DegenerateArea) as info:
            local_metrics("x", row_standardize(graph), {"x": 100.0}, {"x": 0.0})
        assert info.value.cell_id == "x"
        assert info.value.area_local == 0.0

    def test_invalid_neighbor_raises(self):
        graph = nx.Graph()
        graph.add_edge("a", "b")
        with pytest.raises(InvalidInput, match="neighbor 'b'"):
            local_metrics("a", row_standardize(graph), {"a": 1.0, "b": math.nan}, {"a": 1.0, "b": 1.0})
