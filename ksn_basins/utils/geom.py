import numpy as np
from shapely.geometry import LineString
from shapely.geometry import Point


def nodes_to_geometry(xs, ys):
    """Ordered node coordinates as a LineString, or a Point for a single node."""
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    if xs.size == 1:
        return Point(xs[0], ys[0])
    return LineString(zip(xs, ys))
