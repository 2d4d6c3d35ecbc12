"""
Run a two-temperature nitrogen shock tube and plot the solution.

The high-pressure side starts in thermal non-equilibrium (Tve below T),
so the vibrational mode relaxes behind the waves while they move apart.

Run from the repository root:
    python nemo/scripts/run_shock_tube.py [n_points] [n_steps]
"""

import logging
import sys
from pathlib import Path

# Add repository root to path
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import numpy as np
import matplotlib.pyplot as plt
from nemo.src import (DualMesh, NEMOEulerSolver, SolverConfig, UserDefinedGas, prim_to_cons,
                      plot_convergence, plot_line_solution)


def create_solver(n_points=201, delta_t=1.0e-6):
    gas = UserDefinedGas.from_preset('nitrogen2')
    mesh = DualMesh.line(0.0, 1.0, n_points)
    config = SolverConfig(
        frozen=True,
        time_marching='time_stepping',
        delta_unst_time=delta_t,
        upwind_scheme='hllc',
        muscl=True,
        free_stream={'mach': 0.0, 'pressure': 1.0e4, 'temperature': 300.0,
                     'temperature_ve': 300.0, 'mass_fractions': (1.0, 0.0)},
        markers={'left': {'kind': 'euler_wall'}, 'right': {'kind': 'euler_wall'},
                 'lower': {'kind': 'symmetry'}, 'upper': {'kind': 'symmetry'}},
        print_interval=50,
    )
    solver = NEMOEulerSolver(mesh, gas, config)

    x = mesh.coords[0]
    left = x < 0.5
    P = np.where(left, 1.0e6, 1.0e4)
    T = np.where(left, 3000.0, 300.0)
    Tve = np.full(mesh.n_points, 300.0)
    Y = np.vstack([np.ones(mesh.n_points), np.zeros(mesh.n_points)])
    gas_state = gas.set_state_ptt(P, Y, T, Tve)
    solver.set_solution(prim_to_cons(gas_state.rhos, T, Tve, np.zeros((2, mesh.n_points)), gas))
    return solver


def main():
    logging.basicConfig(level=logging.INFO, format='%(message)s')
    n_points = int(sys.argv[1]) if len(sys.argv) > 1 else 201
    n_steps = int(sys.argv[2]) if len(sys.argv) > 2 else 300

    solver = create_solver(n_points)
    result = solver.solve(max_iter=n_steps)

    print(f"\nt = {result['time']*1000:.3f} ms after {result['iterations']} steps "
          f"({result['wall_time']:.2f} s)")
    print(f"Counters: {result['counters']}")

    plot_line_solution(solver, filename='shock_tube_solution.png', show=False)
    plot_convergence(solver.residual_history, solver.gas.species_names,
                     filename='shock_tube_convergence.png', show=False)
    print("Saved plots to: shock_tube_solution.png, shock_tube_convergence.png")
    plt.show()


if __name__ == "__main__":
    main()
