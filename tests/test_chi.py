import numpy as np
import pytest

from ksn_basins.chi import chi_concavity
from ksn_basins.chi import chi_transform
from ksn_basins.chi import condition_elevation
from ksn_basins.chi import node_gradient
from ksn_basins.chi import slope_area_concavity


def along_chain(network, values, n):
    """Node values laid out west to east on the middle row of a chain grid."""
    out = np.full(3 * n, np.nan)
    out[network.ixgrid] = values
    return out.reshape(3, n)[1]


def power_law_profile(network, area, concavity, ks=50.0):
    z = np.zeros(len(network))
    for i in range(len(network)):
        r = network.receiver[i]
        if r >= 0:
            z[i] = z[r] + network.step[i] * ks * area[i] ** -concavity
    return z


class TestChiTransform:
    def test_zero_at_outlet_and_non_decreasing_upstream(self, y_network, y_graph):
        area = y_network.get_node_values(y_graph.drainage_area())
        chi = chi_transform(y_network, area, 0.45)
        assert np.all(chi[y_network.outlets()] == 0)
        has_receiver = y_network.receiver >= 0
        assert np.all(chi[has_receiver] >= chi[y_network.receiver[has_receiver]])

    def test_uniform_area_gives_scaled_distance(self, chain_factory):
        _, _, network = chain_factory(6)
        area = np.full(len(network), 400.0)
        chi = chi_transform(network, area, 0.5)
        assert chi == pytest.approx(network.distance / 20.0)

    def test_reference_area(self, chain_factory):
        _, _, network = chain_factory(4)
        area = np.full(len(network), 400.0)
        chi = chi_transform(network, area, 0.5, reference_area=400.0)
        assert chi == pytest.approx(network.distance)


class TestConditionElevation:
    @pytest.fixture
    def bumpy(self, chain_factory):
        dem, _, network = chain_factory(4, elevations=[5.0, 3.0, 4.0, 1.0])
        return network, network.get_node_values(dem)

    def test_carved_profile(self, bumpy):
        network, z = bumpy
        carved = condition_elevation(network, z, interp_value=0)
        assert list(along_chain(network, carved, 4)) == [5.0, 3.0, 3.0, 1.0]

    def test_filled_profile(self, bumpy):
        network, z = bumpy
        filled = condition_elevation(network, z, interp_value=1)
        assert list(along_chain(network, filled, 4)) == [5.0, 4.0, 4.0, 1.0]

    def test_mixed_profile_never_rises_downstream(self, bumpy):
        network, z = bumpy
        conditioned = condition_elevation(network, z, interp_value=0.1)
        has_receiver = network.receiver >= 0
        assert np.all(
            conditioned[has_receiver] >= conditioned[network.receiver[has_receiver]]
        )
        assert list(along_chain(network, conditioned, 4)) == pytest.approx(
            [5.0, 3.1, 3.1, 1.0]
        )

    def test_input_is_not_modified(self, bumpy):
        network, z = bumpy
        before = z.copy()
        condition_elevation(network, z)
        assert np.array_equal(z, before)


class TestNodeGradient:
    def test_gradient_to_receiver(self, chain_factory):
        dem, _, network = chain_factory(4, elevations=[4.0, 3.0, 2.0, 1.0])
        gradient = node_gradient(network, network.get_node_values(dem))
        assert np.isnan(gradient[network.outlets()]).all()
        has_receiver = network.receiver >= 0
        assert gradient[has_receiver] == pytest.approx(0.1)


class TestConcavity:
    def test_slope_area_recovers_power_law(self, chain_factory):
        _, _, network = chain_factory(30)
        # area increases downstream, smallest at the western channel head
        area = 1e4 * (1 + network.distance.max() - network.distance)
        z = power_law_profile(network, area, 0.45)
        assert slope_area_concavity(network, z, area) == pytest.approx(0.45, abs=1e-6)

    def test_slope_area_needs_three_bins(self, chain_factory):
        dem, _, network = chain_factory(3)
        area = np.array([300.0, 200.0, 100.0])
        assert np.isnan(slope_area_concavity(network, network.get_node_values(dem), area))

    def test_chi_recovers_concavity(self, y_network, y_graph):
        area = y_network.get_node_values(y_graph.drainage_area())
        z = 3.0 * chi_transform(y_network, area, 0.4)
        assert chi_concavity(y_network, z, area) == pytest.approx(0.4, abs=1e-3)

    def test_chi_too_small_network(self, chain_factory):
        dem, _, network = chain_factory(2)
        area = np.array([200.0, 100.0])
        assert np.isnan(chi_concavity(network, network.get_node_values(dem), area))
