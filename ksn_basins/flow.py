"""
D8 flow graph over a raster grid

The graph is stored as a flat receiver array (an outlet is its own receiver)
plus a topological ordering that lists every outlet before the cells that
drain to it. Pointer codes follow the whitebox convention.
"""

from functools import cached_property

import numba
import numpy as np
from rasterio.transform import rowcol

from ksn_basins.errors import PourPointError
from ksn_basins.grid import grid_resolution
from ksn_basins.grid import grid_transform

# whitebox d8_pointer codes: (row offset, col offset)
DIRMAP = {
    64: (-1, -1),  # up left
    128: (-1, 0),  # up
    1: (-1, 1),  # up right
    32: (0, -1),  # left
    0: (0, 0),  # stay (terminal cell)
    2: (0, 1),  # right
    16: (1, -1),  # down left
    8: (1, 0),  # down
    4: (1, 1),  # down right
}


def generate_numba_friendly_dirmap():
    """Lookup arrays indexed by pointer code, codes not in DIRMAP are invalid."""
    drow = np.zeros(256, dtype=np.int64)
    dcol = np.zeros(256, dtype=np.int64)
    known = np.zeros(256, dtype=np.bool_)
    for code, (dr, dc) in DIRMAP.items():
        drow[code] = dr
        dcol[code] = dc
        known[code] = True
    return drow, dcol, known


class FlowGraph:
    """Directed forest of grid cells, each cell pointing to one receiver.

    Parameters
    ----------
    receivers : numpy.ndarray
        flat index of the downstream neighbour of every cell; outlets and
        no-data cells point to themselves
    valid : numpy.ndarray
        flat boolean mask of cells that carry data
    template : xarray.DataArray
        grid holding the georeferencing the graph was derived from
    """

    def __init__(self, receivers, valid, template):
        self.receivers = np.asarray(receivers, dtype=np.int64)
        self.valid = np.asarray(valid, dtype=np.bool_)
        self.template = template
        self.shape = template.shape
        self.x = np.asarray(template.x.values)
        self.y = np.asarray(template.y.values)
        self.transform = grid_transform(template)
        self.dx, self.dy = grid_resolution(template)
        self.cellsize = self.dx
        self.order = _topological_order(self.receivers, self.valid)

    @classmethod
    def from_pointer(cls, pointer):
        """Build the graph from a whitebox style D8 pointer grid (NaN = no-data)."""
        codes = pointer.values
        valid = np.isfinite(codes)
        int_codes = np.where(valid, codes, 0).astype(np.int64)
        if np.any((int_codes < 0) | (int_codes > 255)):
            raise ValueError("pointer grid contains codes outside the D8 encoding")
        drow, dcol, known = generate_numba_friendly_dirmap()
        receivers = _receivers_from_pointer(int_codes, valid, drow, dcol, known)
        return cls(receivers, valid.ravel(), pointer)

    @classmethod
    def from_dem(cls, dem, wbe, conditioning="breach"):
        """Condition the DEM, route flow with whitebox and build the graph."""
        from ksn_basins.hydro import flow_pointer

        return cls.from_pointer(flow_pointer(dem, wbe, conditioning))

    @property
    def size(self):
        return self.receivers.size

    def outlets(self):
        ids = np.arange(self.size)
        return ids[self.valid & (self.receivers == ids)]

    @cached_property
    def accumulation(self):
        """Number of cells draining through every cell, itself included."""
        return _accumulate(self.receivers, self.order, self.valid.astype(np.float64))

    def flow_accumulation(self):
        return self.accumulation.copy()

    def drainage_area(self):
        """Upstream drainage area in map units squared, NaN on no-data."""
        area = self.flow_accumulation() * self.dx * self.dy
        area[~self.valid] = np.nan
        return area

    @cached_property
    def _step_lengths(self):
        return _step_lengths(self.receivers, self.shape[1], self.dx, self.dy)

    def flow_distance(self):
        """Distance along the flow path down to the graph outlet."""
        return _distance_to_outlet(self.receivers, self.order, self._step_lengths)

    def step_lengths(self):
        return self._step_lengths.copy()

    def drainage_basins(self, seeds):
        """Label every cell with the 1-based position of its first downstream seed.

        Cells that do not drain to any seed get label 0. A seed that lies
        upstream of another seed keeps its own label.
        """
        seeds = np.asarray(seeds, dtype=np.int64).ravel()
        labels = np.zeros(self.size, dtype=np.int64)
        labels[seeds] = np.arange(1, seeds.size + 1)
        return _propagate_labels(self.receivers, self.order, labels)

    def drainage_mask(self, x, y):
        """Boolean grid of all cells draining through the cell at (x, y)."""
        ix = self.coord_to_index(x, y)
        return (self.drainage_basins([ix]) > 0).reshape(self.shape)

    def coord_to_index(self, x, y):
        row, col = rowcol(self.transform, x, y)
        nrows, ncols = self.shape
        if not (0 <= row < nrows and 0 <= col < ncols):
            raise PourPointError(f"point ({x}, {y}) lies outside the grid extent")
        ix = int(row) * ncols + int(col)
        if not self.valid[ix]:
            raise PourPointError(f"point ({x}, {y}) falls on a no-data cell")
        return ix

    def index_to_xy(self, ix):
        rows, cols = np.unravel_index(np.asarray(ix, dtype=np.int64), self.shape)
        return self.x[cols], self.y[rows]


@numba.njit
def _receivers_from_pointer(codes, valid, drow, dcol, known):
    nrows, ncols = codes.shape
    receivers = np.arange(nrows * ncols)
    for row in range(nrows):
        for col in range(ncols):
            if not valid[row, col]:
                continue
            code = codes[row, col]
            if not known[code]:
                continue
            next_row = row + drow[code]
            next_col = col + dcol[code]
            if not (0 <= next_row < nrows and 0 <= next_col < ncols):
                continue
            if not valid[next_row, next_col]:
                continue
            receivers[row * ncols + col] = next_row * ncols + next_col
    return receivers


@numba.njit
def _topological_order(receivers, valid):
    n = receivers.size
    ndonors = np.zeros(n, dtype=np.int64)
    for i in range(n):
        if valid[i] and receivers[i] != i:
            ndonors[receivers[i]] += 1

    offsets = np.zeros(n + 1, dtype=np.int64)
    for i in range(n):
        offsets[i + 1] = offsets[i] + ndonors[i]
    donors = np.empty(offsets[n], dtype=np.int64)
    fill = offsets[:-1].copy()
    for i in range(n):
        if valid[i] and receivers[i] != i:
            r = receivers[i]
            donors[fill[r]] = i
            fill[r] += 1

    # depth first from every outlet, cells caught in cycles are never reached
    order = np.empty(n, dtype=np.int64)
    stack = np.empty(n, dtype=np.int64)
    count = 0
    for i in range(n):
        if not valid[i] or receivers[i] != i:
            continue
        stack[0] = i
        top = 1
        while top > 0:
            top -= 1
            node = stack[top]
            order[count] = node
            count += 1
            for k in range(offsets[node], offsets[node + 1]):
                stack[top] = donors[k]
                top += 1
    return order[:count]


@numba.njit
def _accumulate(receivers, order, weights):
    acc = weights.copy()
    for k in range(order.size - 1, -1, -1):
        node = order[k]
        r = receivers[node]
        if r != node:
            acc[r] += acc[node]
    return acc


@numba.njit
def _step_lengths(receivers, ncols, dx, dy):
    steps = np.zeros(receivers.size)
    for i in range(receivers.size):
        r = receivers[i]
        if r == i:
            continue
        drow = abs(r // ncols - i // ncols)
        dcol = abs(r % ncols - i % ncols)
        steps[i] = np.sqrt((drow * dy) ** 2 + (dcol * dx) ** 2)
    return steps


@numba.njit
def _distance_to_outlet(receivers, order, steps):
    dist = np.zeros(receivers.size)
    for k in range(order.size):
        node = order[k]
        r = receivers[node]
        if r != node:
            dist[node] = dist[r] + steps[node]
    return dist


@numba.njit
def _propagate_labels(receivers, order, labels):
    for k in range(order.size):
        node = order[k]
        if labels[node] == 0:
            r = receivers[node]
            if r != node:
                labels[node] = labels[r]
    return labels
