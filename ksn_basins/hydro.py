"""
flow_pointer
calc_slope
gradient8
local_relief
"""

import numba
import numpy as np
from loguru import logger
from scipy.ndimage import maximum_filter
from scipy.ndimage import minimum_filter

from ksn_basins.grid import cellsize
from ksn_basins.grid import grid_resolution
from ksn_basins.utils.wbw_helper import grid_to_wbeRaster
from ksn_basins.utils.wbw_helper import wbeRaster_to_grid


def fill_depressions_with_retry(
    dem, wbe, fix_flats=True, flat_increment=None, max_depth=None, retry_counter=3
):
    attempt = 0
    last_exception = None

    while attempt < retry_counter:
        try:
            conditioned = wbe.fill_depressions(
                dem,
                fix_flats=fix_flats,
                flat_increment=flat_increment,
                max_depth=max_depth,
            )
            return conditioned
        except Exception as e:
            last_exception = e
            attempt += 1
            logger.warning(f"fill_depressions attempt {attempt}/{retry_counter} failed: {e}")

    raise last_exception or RuntimeError(
        "Failed to execute fill_depressions after multiple attempts"
    )


def condition_dem(dem, wbe, conditioning="breach"):
    """Remove depressions from a whitebox raster by least cost breaching or filling."""
    if conditioning == "breach":
        return wbe.breach_depressions_least_cost(dem, fill_deps=True)
    if conditioning == "fill":
        return fill_depressions_with_retry(dem, wbe)
    raise ValueError(f"unknown conditioning method: {conditioning}")


def flow_pointer(dem, wbe, conditioning="breach"):
    """
    D8 pointer grid of a hydrologically conditioned DEM.

    Parameters
    ----------
    dem : xarray.DataArray
        elevation grid, NaN marks no-data
    wbe : whitebox_workflows.WbEnvironment
    conditioning : str
        "breach" or "fill"

    Returns
    -------
    xarray.DataArray
        whitebox pointer codes, NaN on no-data
    """
    dem_wbe = grid_to_wbeRaster(dem, wbe)
    conditioned = condition_dem(dem_wbe, wbe, conditioning)
    pointer = wbe.d8_pointer(conditioned)
    pointer = wbeRaster_to_grid(pointer, wbe, like=dem)
    return pointer.where(dem.notnull())


def calc_slope(dem, wbe):
    """
    Plane fit gradient (m/m) of the 8-neighbourhood using WhiteboxTools.
    """
    slope = wbe.slope(grid_to_wbeRaster(dem, wbe))
    slope = wbeRaster_to_grid(slope, wbe, like=dem)
    gradient = np.tan(np.radians(slope))
    return gradient.where(dem.notnull())


def gradient8(dem):
    """Steepest descent gradient (m/m) to any of the 8 neighbours, 0 on local minima."""
    rows, cols = np.indices(dem.shape)
    values = steepest_descent(dem, rows.ravel(), cols.ravel())
    return dem.copy(data=values.reshape(dem.shape))


def steepest_descent(dem, rows, cols):
    """gradient8 evaluated only at the given cells."""
    dx, dy = grid_resolution(dem)
    z = np.asarray(dem.values, dtype=np.float64)
    return _steepest_descent(
        z,
        np.asarray(rows, dtype=np.int64),
        np.asarray(cols, dtype=np.int64),
        dx,
        dy,
    )


def basin_gradient(dem, method, wbe=None):
    if method == "gradient8":
        return gradient8(dem)
    if method == "arcslope":
        if wbe is None:
            raise ValueError("arcslope gradient requires a whitebox environment")
        return calc_slope(dem, wbe)
    raise ValueError(f"unknown gradient method: {method}")


def local_relief(dem, radius):
    """Maximum minus minimum elevation within a circular window of radius (map units)."""
    radius_pixels = int(round(radius / cellsize(dem)))
    yy, xx = np.ogrid[-radius_pixels : radius_pixels + 1, -radius_pixels : radius_pixels + 1]
    footprint = xx**2 + yy**2 <= radius_pixels**2

    data = np.asarray(dem.values, dtype=np.float64)
    nan_msk = np.isnan(data)
    highest = maximum_filter(
        np.where(nan_msk, -np.inf, data), footprint=footprint, mode="nearest"
    )
    lowest = minimum_filter(
        np.where(nan_msk, np.inf, data), footprint=footprint, mode="nearest"
    )
    relief = highest - lowest
    relief[nan_msk] = np.nan
    result = dem.copy(data=relief)
    result.name = f"relief_{radius:g}"
    return result


@numba.njit
def _steepest_descent(z, rows, cols, dx, dy):
    nrows, ncols = z.shape
    diagonal = np.sqrt(dx * dx + dy * dy)
    out = np.full(rows.size, np.nan)
    for k in range(rows.size):
        row = rows[k]
        col = cols[k]
        center = z[row, col]
        if np.isnan(center):
            continue
        steepest = 0.0
        for drow in range(-1, 2):
            for dcol in range(-1, 2):
                if drow == 0 and dcol == 0:
                    continue
                nrow = row + drow
                ncol = col + dcol
                if not (0 <= nrow < nrows and 0 <= ncol < ncols):
                    continue
                neighbour = z[nrow, ncol]
                if np.isnan(neighbour):
                    continue
                if drow != 0 and dcol != 0:
                    dist = diagonal
                elif drow != 0:
                    dist = dy
                else:
                    dist = dx
                drop = (center - neighbour) / dist
                if drop > steepest:
                    steepest = drop
        out[k] = steepest
    return out
