"""
Driver for one fixed-bed case.

Responsibilities:
- Load CaseConfig from YAML.
- Build grid/layout/transport model/boundaries/initial state.
- Integrate over the checkpoint window and assemble the Solution.
- Close the mass balance, optionally compare with the Ogata-Banks reference.
- Write outputs into a timestamped run directory.

Exit codes: 0 success, 2 configuration error, 1 run failure.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import yaml

from assembly.discretizer import MethodOfLinesSystem, build_system
from core.errors import BoundaryUnsolvableError, InvalidParameterError, NonConvergenceError
from core.grid import build_grid
from core.layout import build_layout
from core.logging_utils import add_file_handler, get_log_level_from_env, setup_logging
from core.types import (
    FIELD_FLUID,
    CaseBoundary,
    CaseConfig,
    CaseGeometry,
    CaseIO,
    CaseInitial,
    CaseIntegrator,
    CaseIsotherm,
    CaseMeta,
    CasePaths,
    CaseSorption,
    CaseTime,
    CaseTransport,
    Solution,
    default_boundaries,
)
from outputs.writers import write_outputs
from physics.analytical import ogata_banks
from physics.initial import build_initial_state
from postprocess.assembler import assemble_solution
from postprocess.mass_balance import MassBalance, compute_mass_balance
from solvers.timestepper import integrate_system

logger = logging.getLogger(__name__)

_CONFIG_ERRORS = (InvalidParameterError, KeyError, TypeError, ValueError, yaml.YAMLError, OSError)
_RUN_ERRORS = (NonConvergenceError, BoundaryUnsolvableError)


# -----------------------------------------------------------------------------
# Config loading
# -----------------------------------------------------------------------------
def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def _build_boundaries(raw: Optional[Mapping[str, Any]]) -> Dict[str, Dict[str, CaseBoundary]]:
    """Overlay boundaries.<field>.<side> mappings on the default relations."""
    boundaries = default_boundaries()
    for fname, sides in (raw or {}).items():
        if not isinstance(sides, Mapping):
            raise InvalidParameterError(f"boundaries.{fname} must be a mapping of side -> relation")
        per_field = boundaries.setdefault(str(fname), {})
        for side, entry in sides.items():
            if side not in ("left", "right"):
                raise InvalidParameterError(f"boundaries.{fname}: unknown side {side!r}")
            if isinstance(entry, str):
                entry = {"type": entry}
            value = entry.get("value", None)
            per_field[side] = CaseBoundary(
                type=str(entry["type"]),
                value=float(value) if value is not None else None,
                a=float(entry.get("a", 0.0)),
                b=float(entry.get("b", 0.0)),
                q=float(entry.get("q", 1.0)),
            )
    return boundaries


def build_case_config(raw: Mapping[str, Any], base: Optional[Path] = None) -> CaseConfig:
    """Translate a raw YAML mapping into CaseConfig with nested dataclasses."""
    base = Path.cwd() if base is None else Path(base)

    case_cfg = CaseMeta(**raw["case"])

    paths_raw = raw.get("paths", {}) or {}
    paths_cfg = CasePaths(output_root=_resolve_path(base, paths_raw.get("output_root", "out")))

    geom_raw = raw["geometry"]
    geom_cfg = CaseGeometry(length=geom_raw["length"], n_nodes=geom_raw["n_nodes"])

    time_raw = raw["time"]
    time_cfg = CaseTime(
        t0=time_raw.get("t0", 0.0),
        t_end=time_raw["t_end"],
        n_checkpoints=time_raw["n_checkpoints"],
    )

    tr_raw = raw["transport"]
    transport_cfg = CaseTransport(
        D=tr_raw["D"],
        v=tr_raw["v"],
        C_in=tr_raw["C_in"],
        advection_scheme=str(tr_raw.get("advection_scheme", "upwind")),
    )

    sorp_raw = raw.get("sorption", {}) or {}
    iso_raw = sorp_raw.get("isotherm", {}) or {}
    sorption_cfg = CaseSorption(
        enabled=bool(sorp_raw.get("enabled", False)),
        porosity=float(sorp_raw.get("porosity", 0.3)),
        density=float(sorp_raw.get("density", 1.0e6)),
        K_F=float(sorp_raw.get("K_F", 0.1)),
        isotherm=CaseIsotherm(
            model=str(iso_raw.get("model", "langmuir")),
            params=dict(iso_raw.get("params", {}) or {}),
        ),
    )

    init_raw = raw.get("initial", {}) or {}
    init_cfg = CaseInitial(C0=init_raw.get("C0", 0.0), q0=init_raw.get("q0", 0.0))

    integ_raw = raw.get("integrator", {}) or {}
    integ_cfg = CaseIntegrator(
        method=str(integ_raw.get("method", "BDF")),
        rtol=integ_raw.get("rtol", 1.0e-3),
        atol=integ_raw.get("atol", 1.0e-6),
        max_steps=integ_raw.get("max_steps", 100_000),
        first_step=integ_raw.get("first_step", None),
        max_step=integ_raw.get("max_step", None),
        use_sparsity=bool(integ_raw.get("use_sparsity", True)),
    )

    io_raw = raw.get("io", {}) or {}
    io_cfg = CaseIO(
        write_solution=bool(io_raw.get("write_solution", True)),
        write_breakthrough=bool(io_raw.get("write_breakthrough", True)),
        write_profiles=bool(io_raw.get("write_profiles", True)),
        profile_times=[float(t) for t in io_raw.get("profile_times", []) or []],
        write_reference=bool(io_raw.get("write_reference", False)),
    )

    return CaseConfig(
        case=case_cfg,
        paths=paths_cfg,
        geometry=geom_cfg,
        time=time_cfg,
        transport=transport_cfg,
        sorption=sorption_cfg,
        boundaries=_build_boundaries(raw.get("boundaries")),
        initial=init_cfg,
        integrator=integ_cfg,
        io=io_cfg,
    )


def load_case_config(cfg_path: str | Path) -> CaseConfig:
    """Load a YAML case file; relative paths resolve against its directory."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file))
    if not isinstance(raw, Mapping):
        raise InvalidParameterError(f"{cfg_file}: top level must be a mapping")
    return build_case_config(raw, base=cfg_file.parent)


# -----------------------------------------------------------------------------
# Run
# -----------------------------------------------------------------------------
def solve_case(cfg: CaseConfig) -> Tuple[Solution, MethodOfLinesSystem]:
    """Build every model for cfg, integrate, and assemble the Solution."""
    grid = build_grid(cfg)
    layout = build_layout(cfg, grid)
    system = build_system(cfg, grid, layout)
    y0 = build_initial_state(cfg, grid, layout)
    result = integrate_system(system, y0, grid.t, cfg.integrator)
    return assemble_solution(system, result), system


def reference_breakthrough(cfg: CaseConfig, solution: Solution) -> np.ndarray:
    """Ogata-Banks outlet concentration at the checkpoints (no sorption)."""
    return ogata_banks(
        solution.x[-1],
        solution.t - cfg.time.t0,
        cfg.transport.D,
        cfg.transport.v,
        cfg.transport.C_in,
    )


def _prepare_run_dir(cfg: CaseConfig, cfg_path: str) -> Path:
    """Create per-run output directory and copy cfg yaml into it."""
    out_root = Path(cfg.paths.output_root)
    case_id = getattr(cfg.case, "id", "case")
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = out_root / case_id / stamp
    run_dir.mkdir(parents=True, exist_ok=True)

    cfg.paths.case_dir = run_dir

    try:
        shutil.copy2(cfg_path, run_dir / "config.yaml")
    except OSError as exc:  # pragma: no cover - best-effort copy
        logger.warning("Failed to copy cfg to run dir: %s", exc)
    return run_dir


def _build_summary(cfg: CaseConfig, solution: Solution, mb: MassBalance) -> Dict[str, Any]:
    outlet = solution.breakthrough(FIELD_FLUID)
    return {
        "case_id": cfg.case.id,
        "fields": list(solution.field_names),
        "n_nodes": int(solution.x.size),
        "n_checkpoints": int(solution.t.size),
        "t_end": float(solution.t[-1]),
        "outlet_final": float(outlet[-1]),
        "outlet_max": float(np.max(outlet)),
        "mass_balance": mb.as_dict(),
        "integrator": solution.stats,
    }


def run_case(
    cfg_path: str,
    *,
    dry_run: bool = False,
    log_level: int | str = logging.INFO,
) -> int:
    """Run one fixed-bed case. Return 0 on success, non-zero on failure."""
    cfg_path = str(cfg_path)
    level = get_log_level_from_env(default=log_level)
    setup_logging(level=level)

    try:
        cfg = load_case_config(cfg_path)
        grid = build_grid(cfg)
        layout = build_layout(cfg, grid)
        system = build_system(cfg, grid, layout)
    except _CONFIG_ERRORS as exc:
        logger.error("Invalid case %s: %s", cfg_path, exc)
        return 2

    logger.info(
        "Case: %s fields=%s N=%d M=%d D=%.3e v=%.3e method=%s",
        cfg.case.id,
        ",".join(layout.field_names),
        grid.N,
        grid.M,
        cfg.transport.D,
        cfg.transport.v,
        cfg.integrator.method,
    )
    if dry_run:
        logger.info("Dry run requested: config and models built; skipping integration.")
        return 0

    run_dir = _prepare_run_dir(cfg, cfg_path)
    logger.info("Run directory: %s", run_dir)
    try:
        if add_file_handler(run_dir / "run.log", level=level) is not None:
            logger.info("Logging to file: %s", run_dir / "run.log")
    except OSError as exc:
        logger.warning("Failed to set up file logging: %s", exc)

    try:
        y0 = build_initial_state(cfg, grid, layout)
        result = integrate_system(system, y0, grid.t, cfg.integrator)
        solution = assemble_solution(system, result)
    except _RUN_ERRORS as exc:
        logger.error("Run failed: %s", exc)
        return 1
    except Exception:
        logger.error("Unhandled exception:\n%s", traceback.format_exc())
        return 1

    mb = compute_mass_balance(solution, system)
    reference = None
    if cfg.io.write_reference:
        if cfg.sorption.enabled:
            logger.warning("Ogata-Banks reference ignores sorption; written for comparison only.")
        reference = reference_breakthrough(cfg, solution)

    write_outputs(cfg, solution, summary=_build_summary(cfg, solution, mb), reference=reference)
    logger.info(
        "Completed run: t_end=%.6e outlet C=%.6e (max %.6e)",
        solution.t[-1],
        solution.breakthrough(FIELD_FLUID)[-1],
        np.max(solution.breakthrough(FIELD_FLUID)),
    )
    return 0


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a fixed-bed transport case.")
    parser.add_argument("case_yaml", help="Path to case YAML file.")
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Load config and build models only; skip integration.",
    )
    parser.add_argument(
        "--log_level",
        default="INFO",
        help="Logging level (overridden by FIXEDBED_LOG_LEVEL).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    return run_case(args.case_yaml, dry_run=args.dry_run, log_level=args.log_level)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
