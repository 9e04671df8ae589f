"""Pytest fixtures: small synthetic grids, pointer grids and stream networks."""

import numpy as np
import pytest
import xarray as xr

from ksn_basins.config import Config
from ksn_basins.flow import DIRMAP
from ksn_basins.flow import FlowGraph
from ksn_basins.pipeline import process_river_basins
from ksn_basins.stream import StreamNetwork

CELL = 10.0

# pointer code of every (row offset, col offset)
CODES = {offset: code for code, offset in DIRMAP.items()}


def make_grid(values, cellsize=CELL, name=None):
    """DataArray with cell centre coordinates, y descending, origin at (0, 0)."""
    values = np.asarray(values, dtype=np.float64)
    nrows, ncols = values.shape
    x = (np.arange(ncols) + 0.5) * cellsize
    y = (nrows - np.arange(nrows) - 0.5) * cellsize
    return xr.DataArray(values, coords={"y": y, "x": x}, dims=("y", "x"), name=name)


def cell_xy(grid, row, col):
    return float(grid.x.values[col]), float(grid.y.values[row])


def pointer_from_paths(shape, paths):
    """Pointer grid from lists of (row, col) cells, each path running downstream.

    The last cell of a path either continues in another path or is an outlet.
    Cells in no path are no-data.
    """
    codes = np.full(shape, np.nan)
    for path in paths:
        for (r0, c0), (r1, c1) in zip(path[:-1], path[1:]):
            codes[r0, c0] = CODES[(r1 - r0, c1 - c0)]
        last = path[-1]
        if np.isnan(codes[last]):
            codes[last] = 0
    return make_grid(codes, name="pointer")


# Y shaped network on a 9 x 5 grid: a main stem down column 2 and a tributary
# entering it at (4, 2) from the upper left
MAIN_STEM = [(r, 2) for r in range(9)]
TRIBUTARY = [(0, 0), (1, 0), (2, 0), (3, 1), (4, 2)]
Y_SHAPE = (9, 5)


def y_network_elevation():
    """Uniform gradient of 0.1 along every flow path."""
    z = np.full(Y_SHAPE, np.nan)
    for r, c in MAIN_STEM:
        z[r, c] = 8.0 - r
    diagonal = np.sqrt(2) * CELL * 0.1
    z[3, 1] = z[4, 2] + diagonal
    z[2, 0] = z[3, 1] + diagonal
    z[1, 0] = z[2, 0] + 1.0
    z[0, 0] = z[1, 0] + 1.0
    return make_grid(z, name="elevation")


@pytest.fixture
def y_pointer():
    return pointer_from_paths(Y_SHAPE, [MAIN_STEM, TRIBUTARY])


@pytest.fixture
def y_dem():
    return y_network_elevation()


@pytest.fixture
def y_graph(y_pointer):
    return FlowGraph.from_pointer(y_pointer)


@pytest.fixture
def y_network(y_graph):
    return StreamNetwork.from_flow_graph(y_graph, CELL * CELL)


@pytest.fixture
def chain_factory():
    """West to east chain of n cells along the middle row of a 3 x n grid,
    outlet at the east end."""

    def factory(n, elevations=None):
        path = [(1, c) for c in range(n)]
        pointer = pointer_from_paths((3, n), [path])
        graph = FlowGraph.from_pointer(pointer)
        network = StreamNetwork.from_flow_graph(graph, CELL * CELL)
        if elevations is None:
            elevations = np.arange(n, 0, -1, dtype=np.float64)
        z = np.full((3, n), np.nan)
        z[1] = elevations
        return make_grid(z, name="elevation"), graph, network

    return factory


@pytest.fixture
def valley_dem():
    """V shaped valley draining to the middle of the bottom row."""
    rows, cols = np.indices((20, 21))
    z = 100 + 0.1 * (19 - rows) * CELL + 0.2 * np.abs(cols - 10) * CELL
    grid = make_grid(z, name="elevation")
    return grid.rio.write_crs("EPSG:32611")


@pytest.fixture
def segment_config():
    return Config(
        clip_method="segment",
        gradient_method="gradient8",
        threshold_area=CELL * CELL,
        segment_length=1000,
        trib_min_area=0,
    )


@pytest.fixture
def y_outlet(y_dem):
    x, y = cell_xy(y_dem, 8, 2)
    return [[x, y, 1]]


@pytest.fixture
def y_result(y_dem, y_graph, y_network, y_outlet, segment_config):
    return process_river_basins(y_dem, y_graph, y_network, y_outlet, segment_config)


@pytest.fixture
def y_basin(y_result):
    return y_result.basins[1]
