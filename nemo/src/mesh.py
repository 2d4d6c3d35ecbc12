"""
Vertex-centred (median dual) mesh for the edge-based finite-volume solver.

Conventions:
    - Edge normals are area-weighted and point from the first endpoint to the second.
    - Boundary vertex normals are area-weighted and point out of the domain.
    - Owned points come first (0 .. n_point_domain-1), halo points follow.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class BoundaryMarker:
    """Boundary vertices of one marker with their outward dual-face normals."""
    vertices: np.ndarray            # (n_vertex,) point indices
    normals: np.ndarray             # (n_dim, n_vertex) outward, area-weighted
    normal_neighbors: Optional[np.ndarray] = None  # (n_vertex,) interior neighbour

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=int)
        self.normals = np.asarray(self.normals, dtype=float).reshape(-1, len(self.vertices))
        if self.normal_neighbors is None:
            self.normal_neighbors = self.vertices.copy()
        else:
            self.normal_neighbors = np.asarray(self.normal_neighbors, dtype=int)

    @property
    def n_vertex(self) -> int:
        return len(self.vertices)

    @property
    def areas(self) -> np.ndarray:
        return np.sqrt(np.sum(self.normals**2, axis=0))


@dataclass
class DualMesh:
    """
    Edge-based dual mesh.

    - coords: Point coordinates (n_dim, n_points)
    - edges: Edge endpoints (n_edges, 2)
    - normals: Edge dual-face normals (n_dim, n_edges)
    - volumes: Dual volumes at the current time level (n_points)
    - markers: Boundary markers keyed by tag
    """
    coords: np.ndarray
    edges: np.ndarray
    normals: np.ndarray
    volumes: np.ndarray
    markers: Dict[str, BoundaryMarker] = field(default_factory=dict)
    n_point_domain: Optional[int] = None
    volumes_n: Optional[np.ndarray] = None
    volumes_nm1: Optional[np.ndarray] = None
    grid_velocity: Optional[np.ndarray] = None
    global_index: Optional[np.ndarray] = None
    halo_send: Dict[int, np.ndarray] = field(default_factory=dict)
    halo_recv: Dict[int, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        self.coords = np.atleast_2d(np.asarray(self.coords, dtype=float))
        self.edges = np.asarray(self.edges, dtype=int).reshape(-1, 2)
        self.normals = np.asarray(self.normals, dtype=float).reshape(self.coords.shape[0], -1)
        self.volumes = np.asarray(self.volumes, dtype=float)

        self.n_dim, self.n_points = self.coords.shape
        self.n_edges = self.edges.shape[0]
        if self.n_point_domain is None:
            self.n_point_domain = self.n_points
        if self.volumes_n is None:
            self.volumes_n = self.volumes.copy()
        if self.volumes_nm1 is None:
            self.volumes_nm1 = self.volumes_n.copy()
        if self.global_index is None:
            self.global_index = np.arange(self.n_points)

        self.n_neighbors = np.bincount(self.edges.ravel(), minlength=self.n_points)
        self.edge_areas = np.sqrt(np.sum(self.normals**2, axis=0))

    @property
    def domain(self) -> np.ndarray:
        """Mask of points owned by this rank."""
        mask = np.zeros(self.n_points, dtype=bool)
        mask[:self.n_point_domain] = True
        return mask

    @property
    def moving(self) -> bool:
        return self.grid_velocity is not None

    def global_to_local(self) -> Dict[int, int]:
        return {int(g): i for i, g in enumerate(self.global_index[:self.n_point_domain])}

    @classmethod
    def line(cls, x_min: float, x_max: float, n_points: int, height: float = 1.0,
             periodic: bool = False) -> 'DualMesh':
        """
        Row of points along x embedded in 2D.

        Markers: 'left' and 'right' end faces (absent when periodic) and
        'lower'/'upper' side faces covering every point.

        Args:
            x_min, x_max: Domain bounds
            n_points: Number of points
            height: Extent of the dual cells in y
            periodic: Close the row with an edge from the last to the first point
        """
        if periodic:
            dx = (x_max - x_min) / n_points
            x = x_min + dx * np.arange(n_points)
            widths = np.full(n_points, dx)
        else:
            x = np.linspace(x_min, x_max, n_points)
            dx = x[1] - x[0]
            widths = np.full(n_points, dx)
            widths[[0, -1]] = 0.5 * dx

        coords = np.vstack([x, np.zeros(n_points)])
        idx = np.arange(n_points)
        edges = np.column_stack([idx[:-1], idx[1:]])
        if periodic:
            edges = np.vstack([edges, [n_points - 1, 0]])
        normals = np.zeros((2, len(edges)))
        normals[0] = height

        markers = {
            'lower': BoundaryMarker(idx, np.vstack([np.zeros(n_points), -widths])),
            'upper': BoundaryMarker(idx, np.vstack([np.zeros(n_points), widths])),
        }
        if not periodic:
            markers['left'] = BoundaryMarker([0], [[-height], [0.0]], [1])
            markers['right'] = BoundaryMarker([n_points - 1], [[height], [0.0]], [n_points - 2])

        return cls(coords=coords, edges=edges, normals=normals,
                   volumes=widths * height, markers=markers)

    @classmethod
    def rectangle(cls, nx: int, ny: int, lx: float = 1.0, ly: float = 1.0,
                  x0: float = 0.0, y0: float = 0.0) -> 'DualMesh':
        """
        Cartesian grid of nx * ny points with its median-dual cells.

        Markers: 'left', 'right', 'lower', 'upper'. Corner points belong to
        two markers, each carrying its own part of the dual boundary.
        """
        x = np.linspace(x0, x0 + lx, nx)
        y = np.linspace(y0, y0 + ly, ny)
        dx, dy = x[1] - x[0], y[1] - y[0]
        wx = np.full(nx, dx)
        wx[[0, -1]] *= 0.5
        wy = np.full(ny, dy)
        wy[[0, -1]] *= 0.5

        X, Y = np.meshgrid(x, y, indexing='ij')
        ids = np.arange(nx * ny).reshape(nx, ny)
        coords = np.vstack([X.ravel(), Y.ravel()])
        volumes = np.outer(wx, wy).ravel()

        ex = np.column_stack([ids[:-1, :].ravel(), ids[1:, :].ravel()])
        nx_normals = np.vstack([np.tile(wy, nx - 1), np.zeros(len(ex))])
        ey = np.column_stack([ids[:, :-1].ravel(), ids[:, 1:].ravel()])
        ny_normals = np.vstack([np.zeros(len(ey)), np.tile(wx[:, np.newaxis], (1, ny - 1)).ravel()])

        markers = {
            'left': BoundaryMarker(ids[0, :], np.vstack([-wy, np.zeros(ny)]), ids[1, :]),
            'right': BoundaryMarker(ids[-1, :], np.vstack([wy, np.zeros(ny)]), ids[-2, :]),
            'lower': BoundaryMarker(ids[:, 0], np.vstack([np.zeros(nx), -wx]), ids[:, 1]),
            'upper': BoundaryMarker(ids[:, -1], np.vstack([np.zeros(nx), wx]), ids[:, -2]),
        }
        return cls(coords=coords, edges=np.vstack([ex, ey]),
                   normals=np.hstack([nx_normals, ny_normals]),
                   volumes=volumes, markers=markers)


def scatter_add(target: np.ndarray, index: np.ndarray, values: np.ndarray) -> None:
    """Unbuffered ``target[..., index] += values`` along the last (point) axis."""
    np.add.at(np.moveaxis(target, -1, 0), index, np.moveaxis(values, -1, 0))
