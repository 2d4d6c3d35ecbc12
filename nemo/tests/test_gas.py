"""
Pytest tests for the two-temperature gas model.

Tests verify:
1. Species heat capacities follow the rigid-rotor model
2. Energy inversion recovers T and Tve
3. Chemistry conserves mass
4. Vibrational relaxation vanishes in thermal equilibrium
5. Transport properties are positive
"""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from nemo.src import UserDefinedGas
from nemo.src.gas import RU


@pytest.fixture
def nitrogen():
    """Two-species nitrogen mixture."""
    return UserDefinedGas.from_preset('nitrogen2')


@pytest.fixture
def air():
    """Five-species air."""
    return UserDefinedGas.from_preset('air5')


def mixture_state(gas, T, Tve, rho=0.05, Y=None):
    """Uniform mixture state at the given temperatures."""
    T = np.atleast_1d(np.asarray(T, dtype=float))
    Tve = np.atleast_1d(np.asarray(Tve, dtype=float))
    if Y is None:
        Y = np.full(gas.n_species, 1.0 / gas.n_species)
    rhos = rho * np.asarray(Y)[:, np.newaxis] * np.ones_like(T)
    return gas.set_state(rhos, T, Tve)


class TestThermodynamics:
    """Species and mixture thermodynamic relations."""

    def test_translational_rotational_heat_capacity(self, nitrogen):
        """Cv_tr is 5/2 R for molecules and 3/2 R for atoms."""
        R = RU / nitrogen.molar_mass
        assert np.allclose(nitrogen.cv_tr, [2.5 * R[0], 1.5 * R[1]]), \
            f"Unexpected Cv_tr: {nitrogen.cv_tr}"

    def test_atoms_have_no_vibrational_energy(self, nitrogen):
        """Atomic species carry no vibrational energy."""
        eve = nitrogen.species_eve(np.array([300.0, 5000.0]))
        assert np.all(eve[1] == 0.0), f"Atomic eve should be zero, got {eve[1]}"
        assert np.all(np.diff(eve[0]) > 0.0), "Molecular eve should increase with Tve"

    def test_pressure_is_dalton_sum(self, air):
        """P = sum(rho_s R_s) T."""
        state = mixture_state(air, 1000.0, 800.0)
        expected = np.sum(state.rhos * air.species_gas_constant[:, np.newaxis], axis=0) * 1000.0
        assert np.allclose(state.pressure, expected), \
            f"Pressure {state.pressure} != {expected}"

    def test_set_state_ptt_recovers_pressure(self, nitrogen):
        """A state built from (P, Y, T, Tve) reproduces P."""
        Y = np.array([[0.9], [0.1]])
        state = nitrogen.set_state_ptt(np.array([5000.0]), Y, np.array([2000.0]), np.array([1500.0]))
        assert np.isclose(state.pressure[0], 5000.0), f"Got P = {state.pressure[0]}"
        assert np.allclose(state.mass_fractions, Y), "Mass fractions not preserved"

    @pytest.mark.parametrize("T, Tve", [(300.0, 300.0), (3000.0, 1200.0), (8000.0, 9000.0)])
    def test_temperature_inversion(self, air, T, Tve):
        """Energies computed at (T, Tve) invert back to (T, Tve)."""
        state = mixture_state(air, T, Tve, Y=[0.7, 0.15, 0.05, 0.05, 0.05])
        e_total, e_ve = state.mixture_energies
        rho = state.density
        T_out, Tve_out, converged = air.temperatures(state.rhos, rho * e_total, rho * e_ve)

        assert np.all(converged), "Inversion did not converge"
        assert np.allclose(T_out, T, rtol=1e-8), f"T: {T_out} != {T}"
        assert np.allclose(Tve_out, Tve, rtol=1e-6), f"Tve: {Tve_out} != {Tve}"

    def test_frozen_sound_speed_exceeds_isothermal(self, nitrogen):
        """The frozen sound speed is above sqrt(P/rho)."""
        state = mixture_state(nitrogen, 500.0, 500.0)
        assert np.all(state.sound_speed > np.sqrt(state.pressure / state.density))


class TestChemistry:
    """Finite-rate chemistry and relaxation."""

    def test_unknown_preset_raises(self):
        """Unknown preset names raise ValueError."""
        with pytest.raises(ValueError):
            UserDefinedGas.from_preset('argon')

    @pytest.mark.parametrize("preset", ['nitrogen2', 'air5'])
    def test_production_rates_conserve_mass(self, preset):
        """Sum of species mass production rates is zero."""
        gas = UserDefinedGas.from_preset(preset)
        state = mixture_state(gas, np.array([6000.0, 9000.0]), np.array([5000.0, 7000.0]),
                              rho=0.01)
        omega = state.net_production_rates
        scale = np.max(np.abs(omega))
        assert scale > 0.0, "Expected active chemistry at high temperature"
        assert np.allclose(np.sum(omega, axis=0), 0.0, atol=1e-10 * scale), \
            f"Mass not conserved: {np.sum(omega, axis=0)}"

    def test_dissociation_at_high_temperature(self, nitrogen):
        """Pure N2 at 10000 K dissociates: N2 destroyed, N created."""
        state = mixture_state(nitrogen, 10000.0, 10000.0, rho=0.01, Y=[1.0, 0.0])
        omega = state.net_production_rates
        assert omega[0, 0] < 0.0 and omega[1, 0] > 0.0, f"Unexpected rates {omega[:, 0]}"

    def test_relaxation_zero_in_thermal_equilibrium(self, air):
        """Landau-Teller exchange vanishes when T = Tve."""
        state = mixture_state(air, np.array([500.0, 4000.0]), np.array([500.0, 4000.0]))
        assert np.all(state.eve_source_term == 0.0), \
            f"Expected zero exchange, got {state.eve_source_term}"

    def test_relaxation_drives_toward_equilibrium(self, air):
        """Energy flows into vibration when T > Tve and out when T < Tve."""
        state = mixture_state(air, np.array([5000.0, 2000.0]), np.array([2000.0, 5000.0]))
        q = state.eve_source_term
        assert q[0] > 0.0 and q[1] < 0.0, f"Unexpected exchange signs {q}"


class TestTransport:
    """Viscosity, conductivity and diffusion."""

    def test_transport_properties_positive(self, air):
        """Mixture transport properties are positive and finite."""
        state = mixture_state(air, np.array([300.0, 3000.0]), np.array([300.0, 2500.0]))
        k_tr, k_ve = state.thermal_conductivities
        for name, value in [('mu', state.viscosity), ('k_tr', k_tr),
                            ('D', state.diffusion_coefficients)]:
            assert np.all(np.isfinite(value)) and np.all(value > 0.0), \
                f"{name} not positive: {value}"
        assert np.all(k_ve >= 0.0), f"k_ve negative: {k_ve}"

    def test_air_viscosity_magnitude(self, air):
        """Air viscosity at 300 K is of order 1e-5 Pa s."""
        state = mixture_state(air, 300.0, 300.0, Y=[0.767, 0.233, 0.0, 0.0, 0.0])
        assert 5e-6 < state.viscosity[0] < 5e-5, f"mu = {state.viscosity[0]}"
