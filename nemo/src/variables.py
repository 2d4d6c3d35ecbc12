"""
Per-point solution storage for the NEMO solver.

Conserved state and its time levels, the primitive cache with derivative
data, local time steps, spectral radii, gradients and limiters.
"""

import numpy as np

from .gas import GasModel
from .state import FlowState, VariableLayout, cons_to_prim


class NodeVariables:
    """
    Solution container for all mesh points (owned and halo).

    U is the integrated quantity; the FlowState cache is recomputed from it
    by ``set_primitive_variables`` every time U changes.
    """

    def __init__(self, U_init: np.ndarray, layout: VariableLayout, gas: GasModel,
                 T_min: float = 50.0, T_max: float = 8.0e4):
        """
        Args:
            U_init: Initial conserved state (n_var, n_points)
            layout: Variable layout
            gas: Thermochemistry model
            T_min, T_max: Admissible temperature range [K]
        """
        self.layout = layout
        self.gas = gas
        self.T_min = T_min
        self.T_max = T_max

        n_var, n_points = U_init.shape
        self.n_points = n_points

        self.solution = np.array(U_init, dtype=float)
        self.solution_old = self.solution.copy()
        self.solution_time_n = self.solution.copy()
        self.solution_time_n1 = self.solution.copy()

        self.delta_time = np.zeros(n_points)
        self.max_lambda_inv = np.zeros(n_points)
        self.max_lambda_visc = np.zeros(n_points)
        self.lambda_centered = np.zeros(n_points)
        self.res_trunc_error = np.zeros((n_var, n_points))
        self.under_relaxation = np.ones(n_points)

        self.gradient = np.zeros((n_var, layout.n_dim, n_points))
        self.limiter = np.ones((n_var, n_points))

        # Gradients of the viscous primitives, filled only when a viscous strategy is active
        self.primitive_gradient = None

        self.state = cons_to_prim(self.solution, gas, layout, T_min, T_max)

    def set_old_solution(self) -> None:
        self.solution_old[:] = self.solution

    def push_time_levels(self) -> None:
        """Shift U^n -> U^(n-1) and U -> U^n at the end of a physical step."""
        self.solution_time_n1[:] = self.solution_time_n
        self.solution_time_n[:] = self.solution

    def set_primitive_variables(self, points=None) -> int:
        """
        Recompute the primitive cache from U.

        Non-physical points fall back to the previous iterate's conserved
        state and are converted again.

        Returns:
            Number of non-physical points encountered
        """
        if points is None:
            points = np.arange(self.n_points)
        U = self.solution[:, points]
        new = cons_to_prim(U, self.gas, self.layout, self.T_min, self.T_max,
                           T_guess=self.state.Tve[points])
        bad = new.nonphysical
        n_bad = int(np.count_nonzero(bad))

        if n_bad:
            bad_points = points[bad]
            self.solution[:, bad_points] = self.solution_old[:, bad_points]
            retry = cons_to_prim(self.solution[:, bad_points], self.gas, self.layout,
                                 self.T_min, self.T_max)
            new = _scatter(new, np.flatnonzero(bad), retry)

        self._store(points, new)
        return n_bad

    def _store(self, points: np.ndarray, new: FlowState) -> None:
        s = self.state
        s.U[:, points] = new.U
        s.V[:, points] = new.V
        s.dPdU[:, points] = new.dPdU
        s.dTdU[:, points] = new.dTdU
        s.dTvedU[:, points] = new.dTvedU
        s.eve[:, points] = new.eve
        s.cvve[:, points] = new.cvve
        s.nonphysical[points] = new.nonphysical


def _scatter(target: FlowState, index: np.ndarray, values: FlowState) -> FlowState:
    """Overwrite columns ``index`` of ``target`` with ``values``."""
    out = target.copy()
    out.U[:, index] = values.U
    out.V[:, index] = values.V
    out.dPdU[:, index] = values.dPdU
    out.dTdU[:, index] = values.dTdU
    out.dTvedU[:, index] = values.dTvedU
    out.eve[:, index] = values.eve
    out.cvve[:, index] = values.cvve
    out.nonphysical[index] = values.nonphysical
    return out
