from dataclasses import dataclass
from dataclasses import field

from ksn_basins.errors import ConfigurationError

CLIP_METHODS = ("clip", "segment")
KSN_METHODS = ("quick", "trib")
GRADIENT_METHODS = ("arcslope", "gradient8")
RESAMPLE_METHODS = ("nearest", "bilinear", "cubic")
CONDITIONING_METHODS = ("breach", "fill")
CONCAVITY_METHODS = ("auto", "chi", "slope_area")


@dataclass(frozen=True)
class Config:
    """Complete Configuration for basin extraction and channel steepness
    Parameters
    ----------
    theta_ref : float, default=0.5
        reference concavity in [0, 1] used for the normalized ksn
    threshold_area : float, default=1e6
        minimum upstream drainage area (map units squared) to define a stream
    segment_length : float, default=1000
        smoothing / binning distance in map units along the network
    clip_method : str, default="clip"
        "clip" reroutes flow on each cropped DEM, "segment" reuses the full
        extent flow graph and restricts the full network to each pour point
    ksn_method : str, default="quick"
        "quick" averages slope-area ksn along windows, "trib" regresses
        chi-elevation per tributary segment
    trib_min_area : float, default=2.5
        basins smaller than this (km2) always use the quick method
    gradient_method : str, default="arcslope"
        "arcslope" fits a plane to the 8-neighbourhood, "gradient8" takes the
        steepest descent; used for the basin wide gradient grid
    resample_method : str, default="nearest"
        method used to resample auxiliary grids onto the DEM
    conditioning : str, default="breach"
        depression removal applied before rerouting flow on clipped DEMs
    concavity_method : str, default="auto"
        "chi", "slope_area" or "auto" (chi for clip, slope_area for segment)
    interp_value : float, default=0.1
        weight in [0, 1] of the filled profile when conditioning elevations
    calc_relief : bool, default=False
        whether to compute local relief
    relief_radii : tuple of float, default=(2500,)
        radii in map units used for local relief
    snap_to_stream : bool, default=True
        snap explicit pour points to the nearest stream node
    valid_elevation_range : tuple of float, default=(-200, 10000)
        DEM values outside this open interval are treated as no-data
    n_workers : int, default=1
        number of worker processes, 1 processes basins sequentially

    Examples
    --------
    Create a configuration with default parameters:

    >>> config = Config()

    Create a configuration with custom parameters:

    >>> config = Config(theta_ref=0.45, ksn_method="trib")

    """

    # stream definition
    theta_ref: float = 0.5
    threshold_area: float = 1e6
    segment_length: float = 1000

    # method switches
    clip_method: str = "clip"
    ksn_method: str = "quick"
    trib_min_area: float = 2.5
    gradient_method: str = "arcslope"
    resample_method: str = "nearest"
    conditioning: str = "breach"
    concavity_method: str = "auto"
    interp_value: float = 0.1

    # relief
    calc_relief: bool = False
    relief_radii: tuple = field(default=(2500,))

    # pour points and input sanity
    snap_to_stream: bool = True
    valid_elevation_range: tuple = (-200, 10000)

    n_workers: int = 1

    def __post_init__(self):
        # tuples keep the config hashable and immutable
        radii = self.relief_radii
        if _is_number(radii):
            radii = (radii,)
        try:
            object.__setattr__(self, "relief_radii", tuple(radii))
            object.__setattr__(
                self, "valid_elevation_range", tuple(self.valid_elevation_range)
            )
        except TypeError as e:
            raise ConfigurationError(f"invalid sequence option: {e}") from e
        for name, predicate, message in _VALIDATORS:
            if not predicate(getattr(self, name)):
                raise ConfigurationError(
                    f"{name}={getattr(self, name)!r} is invalid: {message}"
                )

    def resolved_concavity_method(self):
        if self.concavity_method != "auto":
            return self.concavity_method
        return "chi" if self.clip_method == "clip" else "slope_area"


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _valid_range(value):
    return (
        len(value) == 2
        and all(_is_number(v) for v in value)
        and value[0] < value[1]
    )


_VALIDATORS = [
    ("theta_ref", lambda v: _is_number(v) and 0 <= v <= 1, "must be in [0, 1]"),
    ("threshold_area", lambda v: _is_number(v) and v > 0, "must be > 0"),
    ("segment_length", lambda v: _is_number(v) and v > 0, "must be > 0"),
    ("clip_method", lambda v: v in CLIP_METHODS, f"must be one of {CLIP_METHODS}"),
    ("ksn_method", lambda v: v in KSN_METHODS, f"must be one of {KSN_METHODS}"),
    ("trib_min_area", lambda v: _is_number(v) and v >= 0, "must be >= 0"),
    (
        "gradient_method",
        lambda v: v in GRADIENT_METHODS,
        f"must be one of {GRADIENT_METHODS}",
    ),
    (
        "resample_method",
        lambda v: v in RESAMPLE_METHODS,
        f"must be one of {RESAMPLE_METHODS}",
    ),
    (
        "conditioning",
        lambda v: v in CONDITIONING_METHODS,
        f"must be one of {CONDITIONING_METHODS}",
    ),
    (
        "concavity_method",
        lambda v: v in CONCAVITY_METHODS,
        f"must be one of {CONCAVITY_METHODS}",
    ),
    ("interp_value", lambda v: _is_number(v) and 0 <= v <= 1, "must be in [0, 1]"),
    ("calc_relief", lambda v: isinstance(v, bool), "must be a bool"),
    (
        "relief_radii",
        lambda v: len(v) > 0 and all(_is_number(r) and r > 0 for r in v),
        "must be a non-empty sequence of positive radii",
    ),
    ("snap_to_stream", lambda v: isinstance(v, bool), "must be a bool"),
    ("valid_elevation_range", _valid_range, "must be (low, high) with low < high"),
    (
        "n_workers",
        lambda v: isinstance(v, int) and not isinstance(v, bool) and v >= 1,
        "must be an int >= 1",
    ),
]
