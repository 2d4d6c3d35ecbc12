"""
NEMO Package - Two-Temperature Non-Equilibrium Flow Solver
==========================================================

Re-exports all public components from nemo.src
"""

from nemo.src import (
    # Configuration
    SolverConfig,
    MarkerConfig,
    BoundaryKind,
    # Process context
    SerialContext,
    MPIContext,
    SolverError,
    # Gas model and state
    UserDefinedGas,
    FlowState,
    cons_to_prim,
    prim_to_cons,
    # Mesh
    DualMesh,
    # Solver
    NEMOEulerSolver,
    # I/O
    load_restart,
    write_restart,
    plot_convergence,
)

__all__ = [
    'SolverConfig',
    'MarkerConfig',
    'BoundaryKind',
    'SerialContext',
    'MPIContext',
    'SolverError',
    'UserDefinedGas',
    'FlowState',
    'cons_to_prim',
    'prim_to_cons',
    'DualMesh',
    'NEMOEulerSolver',
    'load_restart',
    'write_restart',
    'plot_convergence',
]
