"""
Channel steepness (ksn) along a stream network

quick : slope-area ksn averaged over fixed length windows along the network
trib : chi-elevation regression per segment bin, never mixing chi across a
       confluence
"""

from dataclasses import asdict
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
from scipy.interpolate import CubicSpline

from ksn_basins.chi import chi_transform
from ksn_basins.hydro import steepest_descent
from ksn_basins.utils.geom import nodes_to_geometry

KSN_COLUMNS = ["ksn", "uparea", "gradient", "cut_fill"]


@dataclass(frozen=True)
class KsnRecord:
    geometry: object
    ksn: float
    uparea: float
    gradient: float
    cut_fill: float


def records_to_frame(records, crs=None):
    if not records:
        return gpd.GeoDataFrame(
            {column: np.zeros(0) for column in KSN_COLUMNS},
            geometry=gpd.GeoSeries([], crs=crs),
            crs=crs,
        )
    return gpd.GeoDataFrame(
        [asdict(record) for record in records], geometry="geometry", crs=crs
    )


def chi_z_spline(chi, z):
    """
    ksn of one bin: slope through the origin of elevation against chi.

    Both series are shifted to the smallest chi node (chi = 0 and the
    elevation of that node), resampled onto an even chi spacing with a cubic
    spline and fitted by least squares without an intercept. Returns NaN when
    fewer than two distinct chi values remain.
    """
    chi = np.asarray(chi, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)
    valid = np.isfinite(chi) & np.isfinite(z)
    chi, z = chi[valid], z[valid]
    if chi.size < 2:
        return np.nan

    base = np.argmin(chi)
    chi_shifted = chi - chi[base]
    z_shifted = z - z[base]

    # the spline needs strictly increasing knots, duplicate chi are averaged
    knots, inverse = np.unique(chi_shifted, return_inverse=True)
    if knots.size < 2:
        return np.nan
    heights = np.bincount(inverse, weights=z_shifted) / np.bincount(inverse)

    chi_even = np.linspace(0, knots[-1], chi.size)
    z_even = CubicSpline(knots, heights)(chi_even)
    return float((chi_even @ z_even) / (chi_even @ chi_even))


def _node_attributes(dem, conditioned, area, network):
    """Per node gradient8, drainage area, conditioned and raw elevation."""
    rows, cols = np.unravel_index(network.ixgrid, conditioned.shape)
    gradient = steepest_descent(conditioned, rows, cols)
    uparea = network.get_node_values(area)
    z = network.get_node_values(conditioned)
    z_raw = network.get_node_values(dem)
    return gradient, uparea, z, z_raw


def _record(network, nodes, ksn, uparea, gradient, cut_fill):
    return KsnRecord(
        geometry=nodes_to_geometry(network.x[nodes], network.y[nodes]),
        ksn=float(ksn),
        uparea=float(np.nanmean(uparea[nodes])),
        gradient=float(np.nanmean(gradient[nodes])),
        cut_fill=float(np.nanmean(cut_fill[nodes])),
    )


def ksn_quick(dem, conditioned, area, network, concavity, segment_length):
    """
    Slope-area ksn averaged within windows of segment_length along each chain.

    Parameters
    ----------
    dem : xarray.DataArray
        raw elevation
    conditioned : xarray.DataArray
        hydrologically conditioned elevation (values on network nodes)
    area : xarray.DataArray or numpy.ndarray
        drainage area in map units squared, on the grid of dem
    network : StreamNetwork
    concavity : float
    segment_length : float
        window length in map units

    Returns
    -------
    tuple of (geopandas.GeoDataFrame, numpy.ndarray)
        one record per window and ksn at every node
    """
    gradient, uparea, z, z_raw = _node_attributes(dem, conditioned, area, network)
    node_ksn = gradient / uparea ** (-concavity)
    cut_fill = z - z_raw

    records = []
    for chain in network.ordered_chains():
        along = network.distance[chain[0]] - network.distance[chain]
        windows = np.floor(along / segment_length).astype(np.int64)
        for window in np.unique(windows):
            nodes = chain[windows == window]
            records.append(
                _record(
                    network,
                    nodes,
                    np.nanmean(node_ksn[nodes]),
                    uparea,
                    gradient,
                    cut_fill,
                )
            )
    return records_to_frame(records, dem.rio.crs), node_ksn


def ksn_trib(dem, conditioned, area, network, segments, concavity, segment_length):
    """
    Chi-elevation ksn for bins of segment_length within every segment.

    Bins are measured upstream from the downstream end of each segment, the
    last bin may be shorter. Bins with two or fewer nodes are skipped.

    Returns
    -------
    tuple of (geopandas.GeoDataFrame, numpy.ndarray)
        one record per fitted bin and ksn at every node (0 where no bin was fit)
    """
    gradient, uparea, z, z_raw = _node_attributes(dem, conditioned, area, network)
    cut_fill = z - z_raw
    chi = chi_transform(network, uparea, concavity)
    node_ksn = np.zeros(len(network))

    records = []
    # segments cover every node once
    for i in range(len(segments)):
        nodes = segments.nodes(network, i)
        along = network.distance[nodes] - network.distance[nodes].min()
        # bin 0 is [0, L], bin k is (kL, (k + 1)L]
        bins = np.maximum(np.ceil(along / segment_length).astype(np.int64) - 1, 0)
        order = np.argsort(bins, kind="stable")
        _, starts = np.unique(bins[order], return_index=True)
        for bin_nodes in np.split(nodes[order], starts[1:]):
            if bin_nodes.size <= 2:
                continue
            ksn = chi_z_spline(chi[bin_nodes], z[bin_nodes])
            if not np.isfinite(ksn):
                continue
            node_ksn[bin_nodes] = ksn
            records.append(_record(network, bin_nodes, ksn, uparea, gradient, cut_fill))
    return records_to_frame(records, dem.rio.crs), node_ksn
