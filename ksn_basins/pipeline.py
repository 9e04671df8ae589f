import time
import warnings
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures import as_completed
from dataclasses import dataclass
from types import MappingProxyType
from typing import NamedTuple

import numpy as np
from loguru import logger
from whitebox_workflows import WbEnvironment

from ksn_basins.basin import AuxiliaryGrid
from ksn_basins.basin import Basin
from ksn_basins.basin import PourPoint
from ksn_basins.chi import chi_concavity
from ksn_basins.chi import chi_transform
from ksn_basins.chi import condition_elevation
from ksn_basins.chi import slope_area_concavity
from ksn_basins.config import Config
from ksn_basins.errors import BasinProcessingError
from ksn_basins.errors import ConcavityWarning
from ksn_basins.errors import ConfigurationError
from ksn_basins.errors import EmptyNetworkError
from ksn_basins.errors import ThresholdWarning
from ksn_basins.flow import FlowGraph
from ksn_basins.grid import align_grid
from ksn_basins.grid import contains_point
from ksn_basins.grid import crop_to_mask
from ksn_basins.grid import grid_centroid
from ksn_basins.grid import mask_elevation_range
from ksn_basins.grid import nodes_to_grid
from ksn_basins.grid import value_at
from ksn_basins.hydro import basin_gradient
from ksn_basins.hydro import local_relief
from ksn_basins.ksn import ksn_quick
from ksn_basins.ksn import ksn_trib
from ksn_basins.persistence import completed_basin_ids
from ksn_basins.persistence import save_basin
from ksn_basins.segments import segment_network
from ksn_basins.stats import categorical_summary
from ksn_basins.stats import reduce_values
from ksn_basins.stream import StreamNetwork
from ksn_basins.utils.time import elapsed_since
from ksn_basins.utils.time import format_time_duration


class ProcessingResult(NamedTuple):
    basins: dict
    failures: dict


class BasinProgress(NamedTuple):
    completed: int
    total: int
    pour_point_id: int
    failed: bool

    @property
    def percent(self):
        return int(100 * self.completed / self.total) if self.total else 100


@dataclass(frozen=True)
class BasinContext:
    """Read-only inputs shared by every basin of a run."""

    dem: object
    graph: FlowGraph
    network: StreamNetwork
    config: Config
    conditioned_dem: object = None
    aux_grids: tuple = ()


def process_river_basins(
    dem,
    graph,
    network,
    pour_points,
    config=Config(),
    conditioned_dem=None,
    aux_grids=(),
    output_dir=None,
    completed_ids=(),
    on_basin_complete=None,
):
    """
    Extract drainage basins upstream of pour points and compute channel
    steepness and summary statistics for each of them.

    Parameters
    ----------
    dem : xarray.DataArray
        elevation grid the flow graph was derived from
    graph : FlowGraph
        flow graph of the full DEM
    network : StreamNetwork
        stream network of the full DEM
    pour_points : array_like or float
        n x 3 array of x, y, id rows, or a single elevation at which pour
        points are placed on every stream crossing
    config : Config
    conditioned_dem : xarray.DataArray, optional
        hydrologically conditioned DEM replacing the node conditioning pass
    aux_grids : sequence of AuxiliaryGrid
        extra grids summarised per basin
    output_dir : str or Path, optional
        each basin is saved as Basin_<id>_Data.pkl; ids already saved there
        are skipped
    completed_ids : iterable of int
        pour point ids to skip
    on_basin_complete : callable, optional
        called with a BasinProgress after every basin

    Returns
    -------
    ProcessingResult
        basins (id -> Basin) and failures (id -> BasinProcessingError), both
        in pour point order
    """
    start_time = time.time()
    logger.info(
        f"Starting basin processing with DEM shape: {dem.shape}, resolution: {dem.rio.resolution()}, network of {len(network)} nodes"
    )
    logger.debug(f"Configuration parameters: {config.__dict__}")

    dem = mask_elevation_range(dem, *config.valid_elevation_range)
    if dem.shape != graph.shape:
        raise ConfigurationError(
            f"DEM shape {dem.shape} does not match flow graph {graph.shape}"
        )
    if conditioned_dem is not None:
        conditioned_dem = align_grid(conditioned_dem, dem, config.resample_method)
    aux = prepare_aux_grids(aux_grids, dem, config.resample_method)
    points = resolve_pour_points(pour_points, network, dem, config)

    skip = set(completed_ids)
    if output_dir is not None:
        skip |= completed_basin_ids(output_dir)
    todo = [p for p in points if p.id not in skip]
    if len(todo) < len(points):
        logger.info(f"Skipping {len(points) - len(todo)} basins already processed")

    context = BasinContext(
        dem=dem,
        graph=graph,
        network=network,
        config=config,
        conditioned_dem=conditioned_dem,
        aux_grids=aux,
    )

    total = len(todo)
    logger.info(f"Processing {total} basins with {config.n_workers} worker(s)")
    basins = {}
    failures = {}

    def collect(pour_point, basin, error):
        if error is None:
            basins[pour_point.id] = basin
            if output_dir is not None:
                save_basin(basin, output_dir)
        else:
            failures[pour_point.id] = error
            logger.error(str(error))
        progress = BasinProgress(
            completed=len(basins) + len(failures),
            total=total,
            pour_point_id=pour_point.id,
            failed=error is not None,
        )
        logger.info(f"Basin {pour_point.id} done {progress.percent}%")
        if on_basin_complete is not None:
            on_basin_complete(progress)

    if config.n_workers == 1:
        for pour_point in todo:
            basin, error = _run_basin(context, pour_point)
            collect(pour_point, basin, error)
    else:
        with ProcessPoolExecutor(max_workers=config.n_workers) as executor:
            future_map = {
                executor.submit(_run_basin, context, p): p for p in todo
            }
            for future in as_completed(future_map):
                basin, error = future.result()
                collect(future_map[future], basin, error)

    # completion order differs between workers, report in pour point order
    order = [p.id for p in todo]
    basins = {i: basins[i] for i in order if i in basins}
    failures = {i: failures[i] for i in order if i in failures}

    logger.success(
        f"Processed {len(basins)} basins ({len(failures)} failed), execution time: {elapsed_since(start_time)}"
    )
    return ProcessingResult(basins=basins, failures=failures)


def _run_basin(context, pour_point):
    try:
        return process_basin(context, pour_point), None
    except Exception as e:
        return None, BasinProcessingError(pour_point.id, e)


def process_basin(context, pour_point):
    """
    Derive the network, channel steepness and statistics of one basin.

    Raises PourPointError when the pour point is outside the DEM and
    EmptyNetworkError when no stream network can be derived.
    """
    start_time = time.time()
    config = context.config
    graph = context.graph
    dem = context.dem
    x, y, basin_id = pour_point
    logger.debug(f"Basin {basin_id}: pour point ({x:.1f}, {y:.1f})")

    outlet_ix = graph.coord_to_index(x, y)
    mask = graph.drainage_mask(x, y)
    basin_dem = crop_to_mask(dem, mask)
    drainage_area = float(mask.sum()) * graph.dx * graph.dy / 1e6
    outlet_elevation = value_at(dem, x, y)
    centroid = grid_centroid(basin_dem)

    needs_whitebox = (
        config.clip_method == "clip" or config.gradient_method == "arcslope"
    )
    wbe = WbEnvironment() if needs_whitebox else None

    if config.clip_method == "clip":
        frame_graph = FlowGraph.from_dem(basin_dem, wbe, config.conditioning)
        frame_dem = basin_dem
        frame_mask = np.isfinite(basin_dem.values)

        def build(threshold):
            return StreamNetwork.from_flow_graph(frame_graph, threshold)

    else:
        frame_graph = graph
        frame_dem = dem
        frame_mask = mask

        def build(threshold):
            if threshold == config.threshold_area:
                return context.network.subnetwork(outlet_ix)
            return StreamNetwork.from_flow_graph(graph, threshold, outlets=[outlet_ix])

    network, threshold = derive_network_with_retry(
        build,
        config.threshold_area,
        frame_graph.dx * frame_graph.dy,
        label=f"basin {basin_id}",
    )
    logger.debug(
        f"Basin {basin_id}: {len(network)} stream nodes at threshold {threshold:g}"
    )

    # conditioned node elevations
    if context.conditioned_dem is not None:
        conditioned_source = context.conditioned_dem
        if config.clip_method == "clip":
            conditioned_source = crop_to_mask(conditioned_source, mask)
        z = network.get_node_values(conditioned_source)
    else:
        z = condition_elevation(
            network, network.get_node_values(frame_dem), config.interp_value
        )
    conditioned = nodes_to_grid(frame_dem, network.ixgrid, z, "conditioned")
    area = frame_graph.drainage_area()
    uparea = network.get_node_values(area)

    concavity_method = config.resolved_concavity_method()
    concavity = best_fit_concavity(network, conditioned, area, concavity_method)
    if not np.isfinite(concavity):
        message = (
            f"basin {basin_id}: {concavity_method} concavity fit failed, "
            f"using reference concavity {config.theta_ref}"
        )
        warnings.warn(message, ConcavityWarning, stacklevel=2)
        logger.warning(message)
        concavity = config.theta_ref

    ksn_method = config.ksn_method
    segments = None
    if ksn_method == "trib":
        if drainage_area < config.trib_min_area:
            logger.debug(
                f"Basin {basin_id}: {drainage_area:.2f} km2 below trib_min_area, using quick"
            )
            ksn_method = "quick"
        else:
            segments = segment_network(frame_dem, frame_graph, network)
            if len(segments) == 0:
                logger.debug(f"Basin {basin_id}: no segments, using quick")
                ksn_method = "quick"

    def steepness(theta):
        if ksn_method == "trib":
            return ksn_trib(
                frame_dem,
                conditioned,
                area,
                network,
                segments,
                theta,
                config.segment_length,
            )
        return ksn_quick(
            frame_dem, conditioned, area, network, theta, config.segment_length
        )

    ksn, _ = steepness(concavity)
    ksn_ref, node_ksn = steepness(config.theta_ref)

    gradient = basin_gradient(basin_dem, config.gradient_method, wbe)
    chi = nodes_to_grid(
        frame_dem,
        network.ixgrid,
        chi_transform(network, uparea, config.theta_ref),
        "chi",
    )

    aux_stats = {}
    categorical_stats = {}
    for aux in context.aux_grids:
        cropped = crop_to_mask(aux.grid, mask)
        if aux.kind == "categorical":
            categorical_stats[aux.label] = categorical_summary(cropped, aux.categories)
        else:
            aux_stats[aux.label] = reduce_values(cropped)

    relief_stats = {}
    if config.calc_relief:
        for radius in config.relief_radii:
            relief_stats[radius] = reduce_values(local_relief(basin_dem, radius))

    basin = Basin(
        pour_point=PourPoint(*pour_point),
        drainage_area=drainage_area,
        outlet_elevation=outlet_elevation,
        centroid=centroid,
        dem=basin_dem,
        conditioned_dem=crop_to_mask(conditioned, frame_mask),
        chi=crop_to_mask(chi, frame_mask),
        gradient=gradient,
        network=network,
        threshold_area=threshold,
        concavity=float(concavity),
        concavity_method=concavity_method,
        ksn=ksn,
        ksn_ref=ksn_ref,
        node_ksn=node_ksn,
        ksn_stats=reduce_values(ksn_ref["ksn"].values),
        gradient_stats=reduce_values(gradient),
        elevation_stats=reduce_values(basin_dem),
        ksn_method=ksn_method,
        gradient_method=config.gradient_method,
        clip_method=config.clip_method,
        aux_stats=MappingProxyType(aux_stats),
        categorical_stats=MappingProxyType(categorical_stats),
        relief_stats=MappingProxyType(relief_stats),
    )
    logger.debug(
        f"Basin {basin_id}: {drainage_area:.2f} km2, concavity {concavity:.3f}, {len(ksn_ref)} ksn records, {elapsed_since(start_time)}"
    )
    return basin


def derive_network_with_retry(build, threshold, min_threshold, label="basin"):
    """
    Build a network, halving the threshold area until it is not empty.

    Parameters
    ----------
    build : callable
        threshold area -> StreamNetwork
    threshold : float
        initial threshold area
    min_threshold : float
        smallest meaningful threshold (the area of one cell); an empty network
        at or below it raises EmptyNetworkError

    Returns
    -------
    tuple of (StreamNetwork, float)
        the network and the threshold it was built with
    """
    network = build(threshold)
    while network.is_empty:
        if threshold <= min_threshold:
            raise EmptyNetworkError(
                f"{label}: no stream network at threshold {threshold:g}"
            )
        threshold /= 2
        message = f"{label}: empty stream network, threshold lowered to {threshold:g}"
        warnings.warn(message, ThresholdWarning, stacklevel=2)
        logger.warning(message)
        network = build(threshold)
    return network, threshold


def best_fit_concavity(network, conditioned, area, method):
    if method == "chi":
        component = network.largest_component()
        return chi_concavity(
            component,
            component.get_node_values(conditioned),
            component.get_node_values(area),
        )
    return slope_area_concavity(
        network, network.get_node_values(conditioned), network.get_node_values(area)
    )


def resolve_pour_points(pour_points, network, dem, config):
    """
    Validate pour points and snap them onto the stream network.

    A scalar places one pour point on every stream node at or above that
    elevation whose downstream node lies below it, numbered 1..n in grid
    order. Points outside the DEM are kept unsnapped, their basin fails.
    """
    try:
        table = np.asarray(pour_points, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"malformed pour points: {e}") from e
    if table.ndim == 0:
        return _crossing_pour_points(float(table), network, dem)

    if table.ndim != 2 or table.shape[1] != 3 or table.shape[0] == 0:
        raise ConfigurationError(
            f"pour points must be an n x 3 array of x, y, id, got shape {table.shape}"
        )
    if not np.all(np.isfinite(table)):
        raise ConfigurationError("pour points contain NaN or infinite values")
    ids = table[:, 2]
    if not np.all(ids == np.round(ids)):
        raise ConfigurationError("pour point ids must be integers")
    if np.unique(ids).size != ids.size:
        raise ConfigurationError("pour point ids must be unique")

    points = []
    for x, y, basin_id in table:
        if config.snap_to_stream and len(network) > 0 and contains_point(dem, x, y):
            x, y, _ = network.snap(x, y)
        points.append(PourPoint(float(x), float(y), int(basin_id)))
    return points


def _crossing_pour_points(elevation, network, dem):
    z = network.get_node_values(dem)
    nodes = network.crossings(z, elevation)
    if nodes.size == 0:
        raise ConfigurationError(f"no stream crosses elevation {elevation:g}")
    nodes = nodes[np.argsort(network.ixgrid[nodes])]
    logger.info(f"Generated {nodes.size} pour points at elevation {elevation:g}")
    return [
        PourPoint(float(network.x[n]), float(network.y[n]), i)
        for i, n in enumerate(nodes, start=1)
    ]


def prepare_aux_grids(aux_grids, dem, resample_method="nearest"):
    """Resample auxiliary grids onto the DEM, labels must be unique."""
    prepared = []
    labels = set()
    for aux in aux_grids:
        if not isinstance(aux, AuxiliaryGrid):
            raise ConfigurationError(f"expected an AuxiliaryGrid, got {type(aux)}")
        if aux.label in labels:
            raise ConfigurationError(f"duplicate auxiliary grid label {aux.label!r}")
        labels.add(aux.label)
        # class codes must not be interpolated
        method = "nearest" if aux.kind == "categorical" else resample_method
        start_time = time.time()
        grid = align_grid(aux.grid, dem, method)
        logger.debug(
            f"Aligned auxiliary grid {aux.label!r} ({method}) in {format_time_duration(time.time() - start_time)}"
        )
        prepared.append(
            AuxiliaryGrid(
                grid=grid, label=aux.label, kind=aux.kind, categories=aux.categories
            )
        )
    return tuple(prepared)
