from dataclasses import dataclass
from dataclasses import field
from types import MappingProxyType
from typing import NamedTuple

import numpy as np
import xarray as xr

from ksn_basins.errors import ConfigurationError

GRID_KINDS = ("continuous", "categorical")


class PourPoint(NamedTuple):
    x: float
    y: float
    id: int


@dataclass(frozen=True)
class AuxiliaryGrid:
    """Caller supplied grid summarised inside every basin.

    Parameters
    ----------
    grid : xarray.DataArray
    label : str
        key of the summary in the Basin record
    kind : str
        "continuous" (mean / se / std / min / max) or "categorical"
        (majority class and class fractions)
    categories : dict, optional
        class code -> class name, categorical grids only
    """

    grid: xr.DataArray
    label: str
    kind: str = "continuous"
    categories: dict = None

    def __post_init__(self):
        if self.kind not in GRID_KINDS:
            raise ConfigurationError(
                f"auxiliary grid {self.label!r}: kind must be one of {GRID_KINDS}"
            )
        if not isinstance(self.grid, xr.DataArray):
            raise ConfigurationError(
                f"auxiliary grid {self.label!r}: expected an xarray.DataArray"
            )
        if self.categories is not None and self.kind != "categorical":
            raise ConfigurationError(
                f"auxiliary grid {self.label!r}: categories given for a continuous grid"
            )


@dataclass(frozen=True)
class Basin:
    """Everything derived for the drainage basin of one pour point.

    Grids are cropped to the bounding box of the basin with NaN outside it.
    ksn holds records at the best-fit concavity, ksn_ref at the reference
    concavity; both are GeoDataFrames with ksn, uparea, gradient and cut_fill
    columns. drainage_area is in km2.
    """

    pour_point: PourPoint
    drainage_area: float
    outlet_elevation: float
    centroid: tuple
    dem: xr.DataArray
    conditioned_dem: xr.DataArray
    chi: xr.DataArray
    gradient: xr.DataArray
    network: object
    threshold_area: float
    concavity: float
    concavity_method: str
    ksn: object
    ksn_ref: object
    node_ksn: np.ndarray
    ksn_stats: tuple
    gradient_stats: tuple
    elevation_stats: tuple
    ksn_method: str
    gradient_method: str
    clip_method: str
    aux_stats: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    categorical_stats: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({})
    )
    relief_stats: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def id(self):
        return self.pour_point.id

    def __reduce__(self):
        # MappingProxyType cannot be pickled, store plain dicts
        state = {name: getattr(self, name) for name in self.__dataclass_fields__}
        for name in ("aux_stats", "categorical_stats", "relief_stats"):
            state[name] = dict(state[name])
        return (_rebuild_basin, (state,))


def _rebuild_basin(state):
    for name in ("aux_stats", "categorical_stats", "relief_stats"):
        state[name] = MappingProxyType(state[name])
    return Basin(**state)
