"""
ASCII restart files.

Format: comma separated, one quoted header line, then one row per point:
    "PointID","x","y",["z",]"Density_0",..,"Momentum_x",..,"Energy","Energy_ve"[,extra..][,"Grid_Velocity_x",..]
"""

import logging
from typing import List, Tuple

import numpy as np

log = logging.getLogger(__name__)

COORD_NAMES = ('x', 'y', 'z')


def restart_fields(n_species: int, n_dim: int, moving: bool = False) -> List[str]:
    fields = ['PointID'] + list(COORD_NAMES[:n_dim])
    fields += [f'Density_{s}' for s in range(n_species)]
    fields += [f'Momentum_{c}' for c in COORD_NAMES[:n_dim]]
    fields += ['Energy', 'Energy_ve']
    if moving:
        fields += [f'Grid_Velocity_{c}' for c in COORD_NAMES[:n_dim]]
    return fields


def write_restart(filename: str, solver) -> None:
    """Write the owned points of ``solver`` to ``filename``."""
    mesh = solver.mesh
    n = mesh.n_point_domain
    fields = restart_fields(solver.layout.n_species, mesh.n_dim, mesh.moving)

    columns = [mesh.global_index[:n][np.newaxis].astype(float), mesh.coords[:, :n],
               solver.nodes.solution[:, :n]]
    if mesh.moving:
        columns.append(mesh.grid_velocity[:, :n])
    data = np.vstack(columns).T

    header = ','.join(f'"{name}"' for name in fields)
    fmt = ['%d'] + ['%.15e'] * (data.shape[1] - 1)
    np.savetxt(filename, data, delimiter=',', header=header, comments='', fmt=fmt)
    log.info(f"Restart written: {filename} ({n} points)")


def read_restart(filename: str) -> Tuple[List[str], np.ndarray]:
    """
    Read a restart file.

    Returns:
        Field names (unquoted) and data array (n_rows, n_fields)
    """
    with open(filename) as f:
        header = f.readline().strip()
    fields = [name.strip().strip('"') for name in header.split(',')]
    data = np.loadtxt(filename, delimiter=',', skiprows=1, ndmin=2)
    if data.shape[1] != len(fields):
        raise ValueError(f"Restart file {filename}: {data.shape[1]} columns, "
                         f"{len(fields)} header fields")
    return fields, data


def load_restart(solver, filename: str) -> None:
    """
    Load a restart file into ``solver``.

    Rows are matched to owned points through their global PointID; the
    coordinate columns are skipped, the next n_var columns are the conserved
    state, and on moving meshes the trailing n_dim columns are the grid
    velocity. Owned points missing from the file are fatal on every rank.
    """
    mesh = solver.mesh
    ctx = solver.context
    n_var = solver.layout.n_var
    nd = mesh.n_dim

    fields, data = read_restart(filename)
    if data.shape[1] < 1 + nd + n_var:
        ctx.error(f"Restart file {filename} has {data.shape[1]} columns, "
                  f"expected at least {1 + nd + n_var}.", "load_restart")

    to_local = mesh.global_to_local()
    ids = data[:, 0].astype(int)
    found = np.zeros(mesh.n_point_domain, dtype=bool)
    rows = []
    points = []
    for row, gid in enumerate(ids):
        local = to_local.get(int(gid))
        if local is not None:
            rows.append(row)
            points.append(local)
            found[local] = True
    rows = np.asarray(rows, dtype=int)
    points = np.asarray(points, dtype=int)

    missing = bool(ctx.allreduce(bool(not np.all(found)), 'lor'))
    if missing:
        ctx.error(f"The restart file {filename} does not match the mesh: "
                  f"{int(np.count_nonzero(~found))} local points are missing.", "load_restart")

    start = 1 + nd
    solver.nodes.solution[:, points] = data[rows, start:start + n_var].T
    if mesh.moving:
        mesh.grid_velocity[:, points] = data[rows, -nd:].T

    ctx.exchange(mesh, solver.nodes.solution)
    solver.nodes.set_old_solution()
    solver.preprocessing()
    if ctx.is_root:
        log.info(f"Restart loaded: {filename}")
