"""
Block-sparse Jacobian and the linear solve of the implicit update.

Unknowns are ordered point-major: index ``p * n_var + v``.
"""

import logging
from typing import Tuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix
from scipy.sparse.linalg import LinearOperator, bicgstab, gmres, spilu, spsolve

from .config import LinearSolverConfig
from .parallel import SolverError

log = logging.getLogger(__name__)


class BlockJacobian:
    """
    Jacobian with one dense (n_var x n_var) block per non-zero.

    Block storage:
        0 .. n_points-1       diagonal block of each point
        n_points + 2e         block (i, j) of edge e
        n_points + 2e + 1     block (j, i) of edge e
    """

    def __init__(self, n_points: int, n_var: int, edges: np.ndarray):
        self.n_points = n_points
        self.n_var = n_var
        self.edges = np.asarray(edges, dtype=int).reshape(-1, 2)
        n_edges = self.edges.shape[0]

        i, j = self.edges[:, 0], self.edges[:, 1]
        diag = np.arange(n_points)
        self.block_row = np.concatenate([diag, np.column_stack([i, j]).ravel()])
        self.block_col = np.concatenate([diag, np.column_stack([j, i]).ravel()])
        self.blocks = np.zeros((n_points + 2 * n_edges, n_var, n_var))

    def set_zero(self) -> None:
        self.blocks[:] = 0.0

    def add_edge_blocks(self, edge_ids: np.ndarray, J_i: np.ndarray, J_j: np.ndarray,
                        sign: float = 1.0) -> None:
        """
        Linearisation of a flux added to point i and subtracted from point j.

            row i: diag(i) += J_i, (i, j) += J_j
            row j: (j, i) -= J_i, diag(j) -= J_j
        """
        edge_ids = np.asarray(edge_ids, dtype=int)
        i, j = self.edges[edge_ids, 0], self.edges[edge_ids, 1]
        ij = self.n_points + 2 * edge_ids
        np.add.at(self.blocks, i, sign * J_i)
        np.add.at(self.blocks, ij, sign * J_j)
        np.add.at(self.blocks, ij + 1, -sign * J_i)
        np.add.at(self.blocks, j, -sign * J_j)

    def add_diag_blocks(self, points: np.ndarray, blocks: np.ndarray,
                        sign: float = 1.0) -> None:
        np.add.at(self.blocks, np.asarray(points, dtype=int), sign * blocks)

    def add_to_diagonal(self, points: np.ndarray, values: np.ndarray) -> None:
        """Add ``values[k] * I`` to the diagonal block of ``points[k]``."""
        points = np.asarray(points, dtype=int)
        diag = np.arange(self.n_var)
        np.add.at(self.blocks, (points[:, None], diag[None, :], diag[None, :]),
                  np.broadcast_to(np.asarray(values, dtype=float)[:, None],
                                  (len(points), self.n_var)))

    def set_identity_rows(self, points: np.ndarray) -> None:
        """Clear every block in the rows of ``points`` and put I on the diagonal."""
        rows = np.zeros(self.n_points, dtype=bool)
        rows[np.asarray(points, dtype=int)] = True
        self.blocks[rows[self.block_row]] = 0.0
        self.blocks[np.asarray(points, dtype=int)] = np.eye(self.n_var)

    def diagonal_blocks(self, n_rows: int = None) -> np.ndarray:
        n_rows = self.n_points if n_rows is None else n_rows
        return self.blocks[:n_rows]

    def to_csr(self, n_rows: int = None) -> csr_matrix:
        """
        Assemble the scalar sparse matrix.

        Args:
            n_rows: Keep only blocks whose row and column are below this
                point index (owned points). Defaults to all points.
        """
        n_rows = self.n_points if n_rows is None else n_rows
        keep = (self.block_row < n_rows) & (self.block_col < n_rows)
        nv = self.n_var
        offs = np.arange(nv)
        rows = self.block_row[keep][:, None, None] * nv + offs[None, :, None]
        cols = self.block_col[keep][:, None, None] * nv + offs[None, None, :]
        rows, cols = np.broadcast_arrays(rows, cols)
        size = n_rows * nv
        return coo_matrix((self.blocks[keep].ravel(), (rows.ravel(), cols.ravel())),
                          shape=(size, size)).tocsr()


class LinearSolver:
    """Krylov or direct solve of the implicit system with scipy.sparse."""

    METHODS = ('bicgstab', 'gmres', 'direct')
    PRECONDITIONERS = ('jacobi', 'ilu', 'none')

    def __init__(self, config: LinearSolverConfig = None):
        self.config = config if config is not None else LinearSolverConfig()
        if self.config.method not in self.METHODS:
            raise ValueError(f"Unknown linear solver: {self.config.method}. Options: {list(self.METHODS)}")
        if self.config.preconditioner not in self.PRECONDITIONERS:
            raise ValueError(f"Unknown preconditioner: {self.config.preconditioner}. "
                             f"Options: {list(self.PRECONDITIONERS)}")

    def _preconditioner(self, A: csr_matrix, jacobian: BlockJacobian, n_rows: int):
        kind = self.config.preconditioner
        if kind == 'none':
            return None
        if kind == 'ilu':
            ilu = spilu(A.tocsc())
            return LinearOperator(A.shape, matvec=ilu.solve)

        nv = jacobian.n_var
        inv = np.linalg.inv(jacobian.diagonal_blocks(n_rows))

        def apply(x):
            return np.einsum('pab,pb->pa', inv, x.reshape(n_rows, nv)).ravel()
        return LinearOperator(A.shape, matvec=apply)

    def solve(self, jacobian: BlockJacobian, rhs: np.ndarray,
              n_rows: int = None) -> Tuple[np.ndarray, int]:
        """
        Solve J x = rhs on the first ``n_rows`` points.

        Args:
            jacobian: Assembled block Jacobian
            rhs: Right-hand side (n_var, n_points)
            n_rows: Number of owned points (default: all)

        Returns:
            x: Solution (n_var, n_points), zero on halo points
            iterations: Linear iterations performed
        """
        n_rows = jacobian.n_points if n_rows is None else n_rows
        nv = jacobian.n_var
        A = jacobian.to_csr(n_rows)
        b = np.ascontiguousarray(rhs[:, :n_rows].T).ravel()

        x_full = np.zeros_like(rhs, dtype=float)
        if not np.any(b):
            return x_full, 0

        cfg = self.config
        if cfg.method == 'direct':
            x = spsolve(A.tocsc(), b)
            iterations = 1
        else:
            M = self._preconditioner(A, jacobian, n_rows)
            count = [0]

            def callback(_):
                count[0] += 1

            if cfg.method == 'bicgstab':
                x, info = bicgstab(A, b, rtol=cfg.tolerance, atol=0.0, maxiter=cfg.max_iter,
                                   M=M, callback=callback)
            else:
                x, info = gmres(A, b, rtol=cfg.tolerance, atol=0.0, restart=cfg.restart,
                                maxiter=cfg.max_iter, M=M, callback=callback,
                                callback_type='pr_norm')
            if info < 0:
                raise SolverError(f"{cfg.method} breakdown (info={info})")
            if info > 0:
                log.debug(f"{cfg.method} not converged in {info} iterations")
            iterations = count[0]

        x_full[:, :n_rows] = x.reshape(n_rows, nv).T
        return x_full, iterations
