"""
NEMO Finite-Volume Core
=======================

Edge-based finite-volume solver for multi-species, two-temperature
(thermochemical non-equilibrium) compressible flow on median-dual meshes.

Features:
- Centered (Lax) and upwind (AUSM, HLLC, Rusanov) convective fluxes
- MUSCL reconstruction with Venkatakrishnan / Barth-Jespersen limiters
- Finite-rate chemistry, Landau-Teller vibrational relaxation, axisymmetry
- Far-field, symmetry, outlet and supersonic outlet boundaries
- Explicit Euler, Runge-Kutta and implicit Euler pseudo-time stepping
- Optional viscous flux strategy and MPI process context

State representation (conservative variables):
    rho_s   - species partial densities [kg/m³]
    rhoU    - momentum per volume [kg/(m²·s)]
    rhoE    - total energy per volume [J/m³]
    rhoEve  - vibrational-electronic energy per volume [J/m³]

Example:
    gas = UserDefinedGas.from_preset('nitrogen2')
    mesh = DualMesh.line(0.0, 1.0, 51)
    config = SolverConfig(
        free_stream={'mach': 2.0, 'mass_fractions': (1.0, 0.0)},
        markers={'left': {'kind': 'far_field'},
                 'right': {'kind': 'supersonic_outlet'},
                 'lower': {'kind': 'symmetry'}, 'upper': {'kind': 'symmetry'}})
    solver = NEMOEulerSolver(mesh, gas, config)
    result = solver.solve(max_iter=200)
"""

from .config import (SolverConfig, FreeStreamConfig, MarkerConfig, LinearSolverConfig,
                     Capabilities, BoundaryKind, ConvectiveScheme, UpwindScheme,
                     TimeIntegration, TimeMarching, SlopeLimiter, GradientMethod)
from .parallel import ProcessContext, SerialContext, MPIContext, SolverError
from .gas import GasModel, GasState, UserDefinedGas, Species, Reaction
from .state import VariableLayout, FlowState, cons_to_prim, prim_to_cons
from .variables import NodeVariables
from .mesh import DualMesh, BoundaryMarker
from .flux import FluxScheme, LaxCentered, AUSMFlux, HLLCFlux, RusanovFlux
from .sources import SourceTerm, AxisymmetricSource, ChemistrySource, VibRelaxationSource
from .viscous import ViscousFlux, Transport
from .boundary import (BoundaryCondition, FarFieldBC, SymmetryBC, EulerWallBC, InletBC,
                       SupersonicInletBC, OutletBC, SupersonicOutletBC)
from .freestream import FreeStream
from .linear_solver import BlockJacobian, LinearSolver
from .solver import NEMOEulerSolver
from .restart import read_restart, write_restart, load_restart
from .plotting import plot_convergence, plot_line_solution

__all__ = [
    # Configuration
    'SolverConfig',
    'FreeStreamConfig',
    'MarkerConfig',
    'LinearSolverConfig',
    'Capabilities',
    'BoundaryKind',
    'ConvectiveScheme',
    'UpwindScheme',
    'TimeIntegration',
    'TimeMarching',
    'SlopeLimiter',
    'GradientMethod',

    # Process context
    'ProcessContext',
    'SerialContext',
    'MPIContext',
    'SolverError',

    # Gas model
    'GasModel',
    'GasState',
    'UserDefinedGas',
    'Species',
    'Reaction',

    # Flow state
    'VariableLayout',
    'FlowState',
    'cons_to_prim',
    'prim_to_cons',
    'NodeVariables',

    # Mesh
    'DualMesh',
    'BoundaryMarker',

    # Flux schemes
    'FluxScheme',
    'LaxCentered',
    'AUSMFlux',
    'HLLCFlux',
    'RusanovFlux',
    'ViscousFlux',
    'Transport',

    # Source terms
    'SourceTerm',
    'AxisymmetricSource',
    'ChemistrySource',
    'VibRelaxationSource',

    # Boundary conditions
    'BoundaryCondition',
    'FarFieldBC',
    'SymmetryBC',
    'EulerWallBC',
    'InletBC',
    'SupersonicInletBC',
    'OutletBC',
    'SupersonicOutletBC',

    # Solver
    'FreeStream',
    'BlockJacobian',
    'LinearSolver',
    'NEMOEulerSolver',

    # I/O
    'read_restart',
    'write_restart',
    'load_restart',
    'plot_convergence',
    'plot_line_solution',
]

__version__ = '1.0.0'
