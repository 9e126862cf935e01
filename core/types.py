"""
Strongly typed containers for case configuration, grid, and solution.

Global shape and sign conventions:
- N: number of spatial nodes (boundaries included); M: number of time checkpoints
- k: number of fields (1 = advection-dispersion only, 2 = fluid + sorbed loading)
- x increases from the inlet (x=0) to the outlet (x=L); v > 0 means flow toward x=L
- Field order is fixed: index 0 is the fluid concentration "C", index 1 the loading "q"
- Solution.values.shape == (M, N, k)
- Natural flux f = D*dC/dx - v*C (transport toward +x is -f)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from core.errors import InvalidParameterError

FloatArray = NDArray[np.float64]

FIELD_FLUID = "C"
FIELD_SORBED = "q"


def _require_finite(name: str, value: float) -> float:
    value = float(value)
    if not np.isfinite(value):
        raise InvalidParameterError(f"{name} must be finite, got {value!r}")
    return value


def _require_positive(name: str, value: float) -> float:
    value = _require_finite(name, value)
    if value <= 0.0:
        raise InvalidParameterError(f"{name} must be > 0, got {value:g}")
    return value


def _require_nonneg(name: str, value: float) -> float:
    value = _require_finite(name, value)
    if value < 0.0:
        raise InvalidParameterError(f"{name} must be >= 0, got {value:g}")
    return value


@dataclass(slots=True)
class CaseMeta:
    """Metadata for the case block."""

    id: str
    title: str = ""
    version: int = 1
    notes: Optional[str] = None


@dataclass(slots=True)
class CasePaths:
    """Case-level paths (resolved by the loader).

    Attributes
    ----------
    output_root : Path
        Root directory under which per-run directories are created.
    case_dir : Path, optional
        Run directory; filled by the driver once the run starts.
    """

    output_root: Path
    case_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if not isinstance(self.output_root, Path):
            raise TypeError("output_root must be pathlib.Path (loader must convert str -> Path).")


@dataclass(slots=True)
class CaseGeometry:
    """Bed geometry: length [m] and number of nodes (boundaries included)."""

    length: float
    n_nodes: int

    def __post_init__(self) -> None:
        self.length = _require_positive("geometry.length", self.length)
        if int(self.n_nodes) != self.n_nodes or int(self.n_nodes) < 3:
            raise InvalidParameterError(f"geometry.n_nodes must be an integer >= 3, got {self.n_nodes!r}")
        self.n_nodes = int(self.n_nodes)


@dataclass(slots=True)
class CaseTime:
    """Simulated window [t0, t_end] sampled at n_checkpoints output times."""

    t_end: float
    n_checkpoints: int
    t0: float = 0.0

    def __post_init__(self) -> None:
        self.t0 = _require_finite("time.t0", self.t0)
        self.t_end = _require_finite("time.t_end", self.t_end)
        if self.t_end <= self.t0:
            raise InvalidParameterError(f"time.t_end must exceed t0 (t0={self.t0:g}, t_end={self.t_end:g})")
        if int(self.n_checkpoints) != self.n_checkpoints or int(self.n_checkpoints) < 2:
            raise InvalidParameterError(
                f"time.n_checkpoints must be an integer >= 2, got {self.n_checkpoints!r}"
            )
        self.n_checkpoints = int(self.n_checkpoints)


@dataclass(slots=True)
class CaseTransport:
    """Advection-dispersion parameters.

    D : dispersion coefficient [m^2/s]
    v : interstitial velocity [m/s], toward +x
    C_in : inlet concentration [mol/m^3]
    advection_scheme : "upwind" | "central"
    """

    D: float
    v: float
    C_in: float
    advection_scheme: str = "upwind"

    def __post_init__(self) -> None:
        self.D = _require_nonneg("transport.D", self.D)
        # Reversed flow would need a rederived outlet relation; refuse it.
        self.v = _require_nonneg("transport.v", self.v)
        self.C_in = _require_nonneg("transport.C_in", self.C_in)
        scheme = str(self.advection_scheme).strip().lower()
        if scheme not in ("upwind", "central"):
            raise InvalidParameterError(
                f"transport.advection_scheme must be 'upwind' or 'central', got {self.advection_scheme!r}"
            )
        self.advection_scheme = scheme


@dataclass(slots=True)
class CaseIsotherm:
    """Isotherm model selection and parameters (validated by physics.isotherm)."""

    model: str = "langmuir"
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CaseSorption:
    """Sorbed-phase coupling (linear driving force toward an isotherm)."""

    enabled: bool = False
    porosity: float = 0.3
    density: float = 1.0e6
    K_F: float = 0.1
    isotherm: CaseIsotherm = field(default_factory=CaseIsotherm)

    def __post_init__(self) -> None:
        if not isinstance(self.isotherm, CaseIsotherm):
            raise TypeError("sorption.isotherm must be CaseIsotherm (loader must build dataclass).")
        if not self.enabled:
            return
        self.porosity = _require_finite("sorption.porosity", self.porosity)
        if not (0.0 < self.porosity < 1.0):
            raise InvalidParameterError(f"sorption.porosity must lie in (0, 1), got {self.porosity:g}")
        self.density = _require_positive("sorption.density", self.density)
        self.K_F = _require_positive("sorption.K_F", self.K_F)


@dataclass(slots=True)
class CaseBoundary:
    """Raw per-(field, side) boundary statement.

    type : "dirichlet" | "outflow" | "zero_flux" | "robin"
    value : Dirichlet value (defaults to C_in at the fluid inlet)
    a, b, q : Robin coefficients for p(u) = a*u + b
    """

    type: str
    value: Optional[float] = None
    a: float = 0.0
    b: float = 0.0
    q: float = 1.0


def default_boundaries() -> Dict[str, Dict[str, CaseBoundary]]:
    return {
        FIELD_FLUID: {
            "left": CaseBoundary(type="dirichlet"),
            "right": CaseBoundary(type="outflow"),
        },
        FIELD_SORBED: {
            "left": CaseBoundary(type="zero_flux"),
            "right": CaseBoundary(type="zero_flux"),
        },
    }


@dataclass(slots=True)
class CaseInitial:
    """Uniform initial fields."""

    C0: float = 0.0
    q0: float = 0.0

    def __post_init__(self) -> None:
        self.C0 = _require_nonneg("initial.C0", self.C0)
        self.q0 = _require_nonneg("initial.q0", self.q0)


@dataclass(slots=True)
class CaseIntegrator:
    """Adaptive time integrator settings.

    atol is either one value for the whole state or a per-field mapping
    {field name: atol}; see solvers.timestepper.field_tolerances for how a
    scalar is spread over fields of very different magnitude.
    """

    method: str = "BDF"
    rtol: float = 1.0e-3
    atol: Union[float, Dict[str, float]] = 1.0e-6
    max_steps: int = 100_000
    first_step: Optional[float] = None
    max_step: Optional[float] = None
    use_sparsity: bool = True

    def __post_init__(self) -> None:
        self.rtol = _require_positive("integrator.rtol", self.rtol)
        if isinstance(self.atol, Mapping):
            if not self.atol:
                raise InvalidParameterError("integrator.atol mapping must name at least one field")
            self.atol = {str(k): _require_positive(f"integrator.atol.{k}", v) for k, v in self.atol.items()}
        else:
            self.atol = _require_positive("integrator.atol", self.atol)
        if int(self.max_steps) != self.max_steps or int(self.max_steps) < 1:
            raise InvalidParameterError(f"integrator.max_steps must be a positive integer, got {self.max_steps!r}")
        self.max_steps = int(self.max_steps)
        if self.first_step is not None:
            self.first_step = _require_positive("integrator.first_step", self.first_step)
        if self.max_step is not None:
            self.max_step = _require_positive("integrator.max_step", self.max_step)


@dataclass(slots=True)
class CaseIO:
    """Output controls."""

    write_solution: bool = True
    write_breakthrough: bool = True
    write_profiles: bool = True
    profile_times: List[float] = field(default_factory=list)
    write_reference: bool = False


@dataclass(slots=True)
class CaseConfig:
    """Top-level case configuration container."""

    case: CaseMeta
    paths: CasePaths
    geometry: CaseGeometry
    time: CaseTime
    transport: CaseTransport
    sorption: CaseSorption = field(default_factory=CaseSorption)
    boundaries: Dict[str, Dict[str, CaseBoundary]] = field(default_factory=default_boundaries)
    initial: CaseInitial = field(default_factory=CaseInitial)
    integrator: CaseIntegrator = field(default_factory=CaseIntegrator)
    io: CaseIO = field(default_factory=CaseIO)

    def __post_init__(self) -> None:
        for name, cls in (
            ("geometry", CaseGeometry),
            ("time", CaseTime),
            ("transport", CaseTransport),
            ("sorption", CaseSorption),
            ("initial", CaseInitial),
            ("integrator", CaseIntegrator),
            ("io", CaseIO),
        ):
            if not isinstance(getattr(self, name), cls):
                raise TypeError(f"{name} must be {cls.__name__} (loader must build dataclass).")
        for fname in self.field_names():
            sides = self.boundaries.get(fname)
            if sides is None or set(sides) != {"left", "right"}:
                raise InvalidParameterError(
                    f"boundaries.{fname} must define exactly one 'left' and one 'right' relation"
                )

    def field_names(self) -> Tuple[str, ...]:
        if self.sorption.enabled:
            return (FIELD_FLUID, FIELD_SORBED)
        return (FIELD_FLUID,)


@dataclass(frozen=True, slots=True)
class Grid1D:
    """Uniform 1D node grid plus output time checkpoints (no generation logic).

    Fields
    ------
    x : (N,) float64
        Node positions [m], x[0] = 0 (inlet), x[-1] = L (outlet).
    t : (M,) float64
        Output checkpoints [s].
    dx : (N-1,) float64
        Node spacings x[i+1] - x[i].
    """

    x: FloatArray
    t: FloatArray
    dx: FloatArray

    def __post_init__(self) -> None:
        if self.x.ndim != 1 or self.x.size < 3:
            raise InvalidParameterError(f"x must be 1D with at least 3 nodes, got shape {self.x.shape}")
        if self.t.ndim != 1 or self.t.size < 2:
            raise InvalidParameterError(f"t must be 1D with at least 2 checkpoints, got shape {self.t.shape}")
        if self.dx.shape != (self.x.size - 1,):
            raise InvalidParameterError(f"dx shape {self.dx.shape} != ({self.x.size - 1},)")
        if not np.all(np.diff(self.x) > 0.0):
            raise InvalidParameterError("x must be strictly increasing.")
        if not np.all(np.diff(self.t) > 0.0):
            raise InvalidParameterError("t must be strictly increasing.")
        for arr in (self.x, self.t, self.dx):
            arr.flags.writeable = False

    @property
    def N(self) -> int:
        return int(self.x.size)

    @property
    def M(self) -> int:
        return int(self.t.size)

    @property
    def length(self) -> float:
        return float(self.x[-1] - self.x[0])


@dataclass(slots=True)
class Solution:
    """Dense solution on (checkpoint, node, field).

    values : (M, N, k) float64
    face_flux_in, face_flux_out : (M, k) float64
        Cumulative transport (-f) integrated over time across the first and last
        interior faces, i.e. what entered / left the interior control volume.
    """

    x: FloatArray
    t: FloatArray
    values: FloatArray
    field_names: Tuple[str, ...]
    face_flux_in: FloatArray
    face_flux_out: FloatArray
    stats: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        M, N, k = self.t.size, self.x.size, len(self.field_names)
        if self.values.shape != (M, N, k):
            raise ValueError(f"values shape {self.values.shape} != ({M}, {N}, {k})")
        if self.face_flux_in.shape != (M, k) or self.face_flux_out.shape != (M, k):
            raise ValueError(f"face flux shapes must be ({M}, {k})")

    def field_index(self, name: str) -> int:
        try:
            return self.field_names.index(name)
        except ValueError:
            raise KeyError(f"Unknown field {name!r}; available: {self.field_names}") from None

    def field_values(self, name: str) -> FloatArray:
        """Return the (M, N) slab for one field."""
        return self.values[:, :, self.field_index(name)]

    def breakthrough(self, name: str = FIELD_FLUID) -> FloatArray:
        """Outlet value over time for one field."""
        return self.values[:, -1, self.field_index(name)]
