"""
Flatten Basin records into one table row per basin
"""

import os

import pandas as pd
from loguru import logger

from ksn_basins.errors import ConfigurationError
from ksn_basins.persistence import load_basins

UNCERTAINTY = {"se": ("se",), "std": ("std",), "both": ("se", "std")}


def compile_basin_stats(
    basins, uncertainty="se", populate_categories=False, extra_fields=None
):
    """
    Summary table of processed basins.

    Parameters
    ----------
    basins : iterable of Basin, dict of Basin, or path
        records, a ProcessingResult.basins mapping, or a directory of saved
        Basin_<id>_Data.pkl files
    uncertainty : str, default="se"
        "se", "std" or "both", uncertainty columns added next to every mean
    populate_categories : bool, default=False
        add one column per category of every categorical grid holding the
        percentage of the basin it covers
    extra_fields : pandas.DataFrame or dict, optional
        extra columns indexed by river mouth id; every basin needs an entry

    Returns
    -------
    pandas.DataFrame
    """
    if uncertainty not in UNCERTAINTY:
        raise ConfigurationError(f"uncertainty must be one of {tuple(UNCERTAINTY)}")
    if isinstance(basins, dict):
        basins = list(basins.values())
    elif isinstance(basins, (str, os.PathLike)):
        basins = load_basins(basins)
    else:
        basins = list(basins)
    logger.info(f"Compiling statistics of {len(basins)} basins")

    rows = [_basin_row(b, UNCERTAINTY[uncertainty], populate_categories) for b in basins]
    table = pd.DataFrame(rows)

    if extra_fields is not None:
        extra = pd.DataFrame(extra_fields)
        if "river_mouth" in extra.columns:
            extra = extra.set_index("river_mouth")
        missing = set(table["river_mouth"]) - set(extra.index) if len(table) else set()
        if missing:
            raise ConfigurationError(
                f"extra fields missing for river mouths {sorted(missing)}"
            )
        table = table.join(extra, on="river_mouth")
    return table


def _basin_row(basin, kinds, populate_categories):
    row = {
        "river_mouth": basin.pour_point.id,
        "drainage_area": basin.drainage_area,
        "out_x": basin.pour_point.x,
        "out_y": basin.pour_point.y,
        "center_x": basin.centroid[0],
        "center_y": basin.centroid[1],
        "outlet_elevation": basin.outlet_elevation,
        "mean_el": basin.elevation_stats.mean,
        "max_el": basin.elevation_stats.max,
    }
    _add_uncertainty(row, "el", basin.elevation_stats, kinds)
    _add_stats(row, "ksn", basin.ksn_stats, kinds)
    _add_stats(row, "gradient", basin.gradient_stats, kinds)
    for label, stats in basin.aux_stats.items():
        _add_stats(row, label, stats, kinds)
    for radius, stats in basin.relief_stats.items():
        _add_stats(row, f"rlf{radius:g}", stats, kinds)
    if populate_categories:
        for summary in basin.categorical_stats.values():
            row.update(summary.percentages())
    return row


def _add_stats(row, name, stats, kinds):
    row[f"mean_{name}"] = stats.mean
    _add_uncertainty(row, name, stats, kinds)


def _add_uncertainty(row, name, stats, kinds):
    for kind in kinds:
        row[f"{kind}_{name}"] = getattr(stats, kind)
