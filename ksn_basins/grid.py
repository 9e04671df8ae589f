"""
Grid helpers for xarray rasters: cropping to drainage masks, alignment of
auxiliary grids and point lookups.
"""

import numpy as np
import rioxarray  # noqa: F401
from rasterio.enums import Resampling
from rasterio.transform import Affine
from rasterio.transform import rowcol

from ksn_basins.errors import GridAlignmentError
from ksn_basins.errors import PourPointError

# resample method -> (rasterio resampling, xarray interp method)
RESAMPLING = {
    "nearest": (Resampling.nearest, "nearest"),
    "bilinear": (Resampling.bilinear, "linear"),
    "cubic": (Resampling.cubic, "cubic"),
}


def _recalc(grid):
    # a one cell wide raster keeps the transform written when it was cropped
    return grid.rio.width > 1 and grid.rio.height > 1


def grid_transform(grid):
    return grid.rio.transform(recalc=_recalc(grid))


def grid_resolution(grid):
    """Absolute (x, y) cell size."""
    xres, yres = grid.rio.resolution(recalc=_recalc(grid))
    return abs(xres), abs(yres)


def cellsize(grid):
    return grid_resolution(grid)[0]


def mask_elevation_range(dem, low, high):
    """Set cells outside the open interval (low, high) to no-data."""
    return dem.where((dem > low) & (dem < high))


def mask_window(mask):
    rows = np.flatnonzero(np.any(mask, axis=1))
    cols = np.flatnonzero(np.any(mask, axis=0))
    if rows.size == 0:
        raise ValueError("cannot crop to an empty mask")
    return slice(rows[0], rows[-1] + 1), slice(cols[0], cols[-1] + 1)


def crop_to_mask(grid, mask):
    """Crop a grid to the bounding box of mask, setting cells outside mask to NaN.

    Grids sharing the shape of mask are cropped to the identical extent.
    """
    mask = np.asarray(mask, dtype=bool)
    if grid.shape != mask.shape:
        raise ValueError(f"grid shape {grid.shape} does not match mask {mask.shape}")
    rows, cols = mask_window(mask)
    transform = grid_transform(grid) * Affine.translation(cols.start, rows.start)
    sub = grid.isel(y=rows, x=cols).rio.write_transform(transform)
    data = np.where(mask[rows, cols], sub.values.astype(np.float64), np.nan)
    return sub.copy(data=data)


def is_aligned(grid, reference):
    if grid.shape != reference.shape:
        return False
    return np.allclose(grid.x.values, reference.x.values) and np.allclose(
        grid.y.values, reference.y.values
    )


def align_grid(grid, reference, method="nearest"):
    """Resample grid onto the cells of reference.

    Reprojects with rioxarray when both grids carry a CRS, otherwise
    interpolates on the coordinates. Raises GridAlignmentError on failure.
    """
    resampling, interp_method = RESAMPLING[method]
    try:
        if is_aligned(grid, reference):
            return grid
        if grid.rio.crs is not None and reference.rio.crs is not None:
            aligned = grid.rio.reproject_match(reference, resampling=resampling)
        else:
            aligned = grid.astype(np.float64).interp_like(
                reference, method=interp_method
            )
        aligned = aligned.assign_coords(x=reference.x, y=reference.y)
    except Exception as e:
        raise GridAlignmentError(f"could not resample grid {grid.name!r}: {e}") from e
    if aligned.shape != reference.shape:
        raise GridAlignmentError(
            f"resampled grid {grid.name!r} has shape {aligned.shape}, "
            f"expected {reference.shape}"
        )
    return aligned


def point_to_rowcol(grid, x, y):
    row, col = rowcol(grid_transform(grid), x, y)
    nrows, ncols = grid.shape
    if not (0 <= row < nrows and 0 <= col < ncols):
        raise PourPointError(f"point ({x}, {y}) lies outside the grid extent")
    return int(row), int(col)


def contains_point(grid, x, y):
    try:
        point_to_rowcol(grid, x, y)
    except PourPointError:
        return False
    return True


def value_at(grid, x, y):
    row, col = point_to_rowcol(grid, x, y)
    return float(grid.values[row, col])


def grid_centroid(grid):
    """Mean x and y of the cells carrying data."""
    rows, cols = np.nonzero(np.isfinite(grid.values))
    if rows.size == 0:
        return np.nan, np.nan
    return float(grid.x.values[cols].mean()), float(grid.y.values[rows].mean())


def nodes_to_grid(template, ixgrid, values, name=None):
    """NaN grid shaped like template holding values at the flat indices ixgrid."""
    data = np.full(template.size, np.nan)
    data[np.asarray(ixgrid, dtype=np.int64)] = values
    grid = template.copy(data=data.reshape(template.shape))
    grid.name = name
    return grid
