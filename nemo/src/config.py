"""
Solver configuration for the NEMO finite-volume core.

Plain dataclasses with string-valued enums. ``SolverConfig.from_dict`` accepts
nested dictionaries (e.g. loaded from JSON or YAML) and converts them into the
nested config objects.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Dict, Optional, Tuple


class ConvectiveScheme(str, Enum):
    CENTERED = 'centered'
    UPWIND = 'upwind'


class CenteredScheme(str, Enum):
    LAX = 'lax'


class UpwindScheme(str, Enum):
    AUSM = 'ausm'
    HLLC = 'hllc'
    RUSANOV = 'rusanov'


class TimeIntegration(str, Enum):
    EULER_EXPLICIT = 'euler_explicit'
    RUNGE_KUTTA_EXPLICIT = 'runge_kutta_explicit'
    EULER_IMPLICIT = 'euler_implicit'


class TimeMarching(str, Enum):
    STEADY = 'steady'
    TIME_STEPPING = 'time_stepping'
    DUAL_TIME_1ST = 'dual_time_1st'
    DUAL_TIME_2ND = 'dual_time_2nd'


class GradientMethod(str, Enum):
    GREEN_GAUSS = 'green_gauss'
    WEIGHTED_LEAST_SQUARES = 'weighted_least_squares'


class SlopeLimiter(str, Enum):
    NONE = 'none'
    VENKATAKRISHNAN = 'venkatakrishnan'
    BARTH_JESPERSEN = 'barth_jespersen'


class BoundaryKind(str, Enum):
    FAR_FIELD = 'far_field'
    SYMMETRY = 'symmetry'
    EULER_WALL = 'euler_wall'
    INLET = 'inlet'
    OUTLET = 'outlet'
    SUPERSONIC_INLET = 'supersonic_inlet'
    SUPERSONIC_OUTLET = 'supersonic_outlet'


class InletKind(str, Enum):
    TOTAL_CONDITIONS = 'total_conditions'
    MASS_FLOW = 'mass_flow'


class InitOption(str, Enum):
    TD_CONDITIONS = 'td_conditions'
    REYNOLDS = 'reynolds'


@dataclass(frozen=True)
class Capabilities:
    """Physics switched on for a run."""
    has_viscous_terms: bool = False
    has_chemistry: bool = True
    has_axisymmetry: bool = False


@dataclass
class FreeStreamConfig:
    """Free-stream thermodynamic and kinematic conditions (SI units)."""
    mach: float = 0.5
    aoa: float = 0.0                # Angle of attack [deg]
    aos: float = 0.0                # Angle of sideslip [deg]
    pressure: float = 101325.0      # [Pa]
    temperature: float = 300.0      # [K]
    temperature_ve: float = 300.0   # [K]
    mass_fractions: Tuple[float, ...] = (0.79, 0.21)


@dataclass
class MarkerConfig:
    """Boundary condition attached to one mesh marker."""
    kind: BoundaryKind = BoundaryKind.FAR_FIELD
    outlet_pressure: Optional[float] = None
    inlet_kind: InletKind = InletKind.TOTAL_CONDITIONS
    total_pressure: Optional[float] = None
    total_temperature: Optional[float] = None
    mass_flow: Optional[float] = None
    flow_direction: Optional[Tuple[float, ...]] = None

    def __post_init__(self):
        self.kind = BoundaryKind(self.kind)
        self.inlet_kind = InletKind(self.inlet_kind)
        if self.kind == BoundaryKind.OUTLET and self.outlet_pressure is None:
            raise ValueError("Outlet marker requires outlet_pressure")


@dataclass
class LinearSolverConfig:
    """Krylov/direct solve used by the implicit update."""
    method: str = 'bicgstab'        # Options: 'bicgstab', 'gmres', 'direct'
    preconditioner: str = 'jacobi'  # Options: 'jacobi', 'ilu', 'none'
    tolerance: float = 1e-6
    max_iter: int = 50
    restart: int = 30               # GMRES restart length


@dataclass
class SolverConfig:
    """Configuration for the NEMO Euler solver."""
    # Convective discretisation
    convective_scheme: ConvectiveScheme = ConvectiveScheme.UPWIND
    centered_scheme: CenteredScheme = CenteredScheme.LAX
    upwind_scheme: UpwindScheme = UpwindScheme.AUSM
    lax_coeff: float = 0.15
    muscl: bool = False
    gradient_method: GradientMethod = GradientMethod.GREEN_GAUSS
    slope_limiter: SlopeLimiter = SlopeLimiter.VENKATAKRISHNAN
    venkat_coeff: float = 0.05
    ref_length: float = 1.0
    limiter_iterations: int = 999999

    # Time integration
    time_integration: TimeIntegration = TimeIntegration.EULER_EXPLICIT
    time_marching: TimeMarching = TimeMarching.STEADY
    rk_alpha: Tuple[float, ...] = (0.66667, 0.66667, 1.0)
    cfl: float = 0.5
    unst_cfl: float = 0.0
    delta_unst_time: float = 0.0
    max_delta_time: float = 1e6
    under_relaxation: float = 1.0

    # Physics
    viscous: bool = False
    axisymmetric: bool = False
    frozen: bool = False
    monoatomic: bool = False
    init_option: InitOption = InitOption.TD_CONDITIONS
    length_reynolds: float = 1.0
    temperature_min: float = 50.0
    temperature_max: float = 8.0e4

    # Parallel reductions of diagnostic counters
    comm_full: bool = True

    # Driver
    max_iter: int = 1000
    convergence_tol: float = -8.0   # log10 of species-density RMS residual
    print_interval: int = 100

    free_stream: FreeStreamConfig = field(default_factory=FreeStreamConfig)
    linear_solver: LinearSolverConfig = field(default_factory=LinearSolverConfig)
    markers: Dict[str, MarkerConfig] = field(default_factory=dict)

    def __post_init__(self):
        self.convective_scheme = ConvectiveScheme(self.convective_scheme)
        self.centered_scheme = CenteredScheme(self.centered_scheme)
        self.upwind_scheme = UpwindScheme(self.upwind_scheme)
        self.gradient_method = GradientMethod(self.gradient_method)
        self.slope_limiter = SlopeLimiter(self.slope_limiter)
        self.time_integration = TimeIntegration(self.time_integration)
        self.time_marching = TimeMarching(self.time_marching)
        self.init_option = InitOption(self.init_option)

        if isinstance(self.free_stream, dict):
            self.free_stream = FreeStreamConfig(**self.free_stream)
        if isinstance(self.linear_solver, dict):
            self.linear_solver = LinearSolverConfig(**self.linear_solver)
        self.markers = {
            tag: MarkerConfig(**marker) if isinstance(marker, dict) else marker
            for tag, marker in self.markers.items()
        }
        self.rk_alpha = tuple(self.rk_alpha)

    @classmethod
    def from_dict(cls, data: Dict) -> 'SolverConfig':
        """Build a config from a (possibly nested) dictionary."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities(
            has_viscous_terms=self.viscous,
            has_chemistry=not (self.frozen or self.monoatomic),
            has_axisymmetry=self.axisymmetric,
        )

    @property
    def implicit(self) -> bool:
        return self.time_integration == TimeIntegration.EULER_IMPLICIT

    @property
    def dual_time(self) -> bool:
        return self.time_marching in (TimeMarching.DUAL_TIME_1ST,
                                      TimeMarching.DUAL_TIME_2ND)

    @property
    def unsteady(self) -> bool:
        return self.time_marching != TimeMarching.STEADY
