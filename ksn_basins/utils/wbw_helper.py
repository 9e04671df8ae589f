import os
import tempfile

import numpy as np
import rioxarray as rxr

from ksn_basins.grid import grid_transform

NODATA = -32768.0


def wbeRaster_to_grid(wbe_raster, wbe, like=None):
    # round trip through a GeoTIFF, whitebox has no in-memory exchange
    temp_file = tempfile.NamedTemporaryFile(delete=False, suffix=".tif")
    try:
        wbe.write_raster(wbe_raster, temp_file.name)
        raster = rxr.open_rasterio(temp_file.name, masked=True).squeeze("band", drop=True)
        raster = raster.load()
    finally:
        temp_file.close()
        os.remove(temp_file.name)
    if like is not None:
        # guard against float drift in the coordinates written by whitebox
        raster = raster.assign_coords(x=like.x, y=like.y)
    return raster


def grid_to_wbeRaster(grid, wbe):
    grid = grid.astype(np.float64).fillna(NODATA)
    grid = grid.rio.write_transform(grid_transform(grid))
    grid = grid.rio.write_nodata(NODATA)
    temp_file = tempfile.NamedTemporaryFile(delete=False, suffix=".tif")
    try:
        grid.rio.to_raster(temp_file.name, driver="GTiff")
        wbe_raster = wbe.read_raster(temp_file.name)
    finally:
        temp_file.close()
        os.remove(temp_file.name)
    return wbe_raster
