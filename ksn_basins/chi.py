"""
Chi transform, hydrologic conditioning of node elevations and best fit
concavity estimates over a stream network.
"""

import numba
import numpy as np
from scipy.optimize import minimize_scalar

from ksn_basins.stream import integrate_upstream

REFERENCE_AREA = 1.0


def chi_transform(network, area, concavity, reference_area=REFERENCE_AREA):
    """
    Upstream integral of (A0 / A) ** concavity along the network.

    Parameters
    ----------
    network : StreamNetwork
    area : numpy.ndarray
        drainage area at each network node (map units squared)
    concavity : float
        reference concavity (m/n)
    reference_area : float
        reference drainage area A0

    Returns
    -------
    numpy.ndarray
        chi at each node, zero at network outlets
    """
    area = np.asarray(area, dtype=np.float64)
    integrand = (reference_area / area) ** concavity
    receiver = network.receiver
    downstream = np.where(receiver >= 0, receiver, np.arange(receiver.size))
    # trapezoidal rule between a node and its receiver
    increments = network.step * (integrand + integrand[downstream]) / 2
    return integrate_upstream(receiver, increments)


def condition_elevation(network, z, interp_value=0.1):
    """
    Node elevations that never rise downstream.

    A convex combination of the carved profile (running minimum from the
    channel heads) and the filled profile (running maximum from the outlets),
    interp_value weighting the filled profile.
    """
    z = np.asarray(z, dtype=np.float64)
    carved = _carve(network.receiver, z.copy())
    filled = _fill(network.receiver, z.copy())
    return interp_value * filled + (1 - interp_value) * carved


def node_gradient(network, z):
    """Gradient from each node to its receiver, NaN at outlets."""
    z = np.asarray(z, dtype=np.float64)
    gradient = np.full(len(network), np.nan)
    has_receiver = network.receiver >= 0
    drop = z[has_receiver] - z[network.receiver[has_receiver]]
    gradient[has_receiver] = drop / network.step[has_receiver]
    return gradient


def slope_area_concavity(network, z, area, n_bins=100):
    """
    Concavity from a power law fit of binned channel gradient against area.

    Gradients are aggregated by their median inside logarithmically spaced
    area bins, the fit is a least squares line in log-log space. Returns NaN
    when fewer than three bins carry positive gradients.
    """
    gradient = node_gradient(network, z)
    area = np.asarray(area, dtype=np.float64)
    valid = np.isfinite(gradient) & (gradient > 0) & np.isfinite(area) & (area > 0)
    if np.count_nonzero(valid) < 3:
        return np.nan
    log_area = np.log10(area[valid])
    log_gradient = np.log10(gradient[valid])

    edges = np.linspace(log_area.min(), log_area.max(), n_bins + 1)
    bins = np.clip(np.digitize(log_area, edges) - 1, 0, n_bins - 1)
    bin_area, bin_gradient = [], []
    for b in np.unique(bins):
        members = bins == b
        bin_area.append(np.median(log_area[members]))
        bin_gradient.append(np.median(log_gradient[members]))
    if len(bin_area) < 3:
        return np.nan

    coeffs = np.polyfit(bin_area, bin_gradient, 1)
    return float(-coeffs[0])


def chi_concavity(network, z, area, bounds=(0.0, 1.0)):
    """
    Concavity that best linearises the chi-elevation relation.

    Minimises the mean squared misfit of a through-origin chi-elevation fit.
    The network should have a single outlet (see largest_component). Returns
    NaN when the network is too small to constrain the fit.
    """
    z = np.asarray(z, dtype=np.float64)
    if len(network) < 3:
        return np.nan
    outlets = network.outlets()
    z_rel = z - z[outlets].min()

    def misfit(concavity):
        chi = chi_transform(network, area, concavity)
        denom = chi @ chi
        if denom == 0:
            return np.inf
        ks = (chi @ z_rel) / denom
        return np.mean((z_rel - ks * chi) ** 2)

    result = minimize_scalar(misfit, bounds=bounds, method="bounded")
    if not result.success or not np.isfinite(result.fun):
        return np.nan
    return float(result.x)


@numba.njit
def _carve(receiver, z):
    # channel heads first: push the running minimum downstream
    for i in range(receiver.size - 1, -1, -1):
        r = receiver[i]
        if r >= 0 and z[i] < z[r]:
            z[r] = z[i]
    return z


@numba.njit
def _fill(receiver, z):
    # outlets first: pull the running maximum upstream
    for i in range(receiver.size):
        r = receiver[i]
        if r >= 0 and z[i] < z[r]:
            z[i] = z[r]
    return z
