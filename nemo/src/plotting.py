"""
Convergence and solution plots.
"""

from typing import Sequence

import numpy as np
import matplotlib.pyplot as plt


def plot_convergence(history: Sequence[np.ndarray], species_names: Sequence[str] = None,
                     filename: str = None, show: bool = True):
    """
    Plot log10 RMS residual history of the species densities and energies.

    Args:
        history: Per-iteration log10 RMS residuals, each (n_var,)
        species_names: Labels for the species rows
        filename: Save the figure here when given
        show: Call plt.show()

    Returns:
        The matplotlib figure
    """
    res = np.asarray(history)
    fig = plt.figure(figsize=(8, 5))
    if res.size:
        n_var = res.shape[1]
        n_species = len(species_names) if species_names else n_var - 3
        names = list(species_names) if species_names else [f'rho_{s}' for s in range(n_species)]
        for s, name in enumerate(names):
            plt.plot(res[:, s], linewidth=1, label=name)
        plt.plot(res[:, -2], 'k-', linewidth=1, label='rhoE')
        plt.plot(res[:, -1], 'k--', linewidth=1, label='rhoEve')
        plt.legend()
    plt.xlabel('Iteration')
    plt.ylabel('log10(RMS residual)')
    plt.title('Convergence History')
    plt.grid(True)

    if filename:
        plt.savefig(filename, dpi=150, bbox_inches='tight')
    if show:
        plt.show()
    return fig


def plot_line_solution(solver, axis: int = 0, filename: str = None, show: bool = True):
    """
    Plot density, velocity, temperatures and mass fractions along one coordinate.

    Intended for quasi one-dimensional meshes such as ``DualMesh.line``.
    """
    state = solver.get_state()
    x = solver.mesh.coords[axis]
    order = np.argsort(x)
    x = x[order]

    fig, axes = plt.subplots(2, 2, figsize=(12, 8))

    axes[0, 0].plot(x, state.rho[order], 'b-', linewidth=2)
    axes[0, 0].set_ylabel('Density [kg/m³]')
    axes[0, 0].grid(True)

    axes[0, 1].plot(x, state.velocity[axis][order], 'r-', linewidth=2)
    axes[0, 1].set_ylabel('Velocity [m/s]')
    axes[0, 1].grid(True)

    axes[1, 0].plot(x, state.T[order], 'g-', linewidth=2, label='T')
    axes[1, 0].plot(x, state.Tve[order], 'g--', linewidth=2, label='Tve')
    axes[1, 0].set_ylabel('Temperature [K]')
    axes[1, 0].set_xlabel('x [m]')
    axes[1, 0].legend()
    axes[1, 0].grid(True)

    for s, name in enumerate(solver.gas.species_names):
        axes[1, 1].plot(x, state.Y[s][order], linewidth=2, label=name)
    axes[1, 1].set_ylabel('Mass fraction')
    axes[1, 1].set_xlabel('x [m]')
    axes[1, 1].legend()
    axes[1, 1].grid(True)

    plt.tight_layout()
    if filename:
        plt.savefig(filename, dpi=150, bbox_inches='tight')
    if show:
        plt.show()
    return fig
