"""
Output helpers:
- get_run_dir: the run directory created by the driver (cfg.paths.case_dir).
- write_solution_npz: full (M, N, k) solution plus grid and face fluxes.
- write_breakthrough_csv: outlet value over time, optionally beside a reference.
- write_profiles_csv: spatial profiles at selected times (long format).
- write_summary_json: run summary, atomic write (temp file + rename).
- write_outputs: apply cfg.io switches for one finished run.
"""

from __future__ import annotations

import csv
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from core.types import FIELD_FLUID, CaseConfig, FloatArray, Solution
from postprocess.assembler import breakthrough_curve, profile_at

logger = logging.getLogger(__name__)


def get_run_dir(cfg: CaseConfig) -> Path:
    """
    Return cfg.paths.case_dir, creating it if needed.

    Falls back to ./out when the driver did not set a run directory.
    """
    case_dir = getattr(getattr(cfg, "paths", None), "case_dir", None)
    if case_dir is None:
        logger.warning("cfg.paths.case_dir not set, using default 'out' directory")
        case_dir = Path("out")
    case_dir = Path(case_dir)
    case_dir.mkdir(parents=True, exist_ok=True)
    return case_dir


def _json_default(obj: Any):
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_solution_npz(solution: Solution, out_dir: Path) -> Path:
    out_path = Path(out_dir) / "solution.npz"
    np.savez(
        out_path,
        x=solution.x,
        t=solution.t,
        values=solution.values,
        field_names=np.asarray(solution.field_names),
        face_flux_in=solution.face_flux_in,
        face_flux_out=solution.face_flux_out,
    )
    logger.info("Wrote %s", out_path)
    return out_path


def write_breakthrough_csv(
    solution: Solution,
    out_dir: Path,
    *,
    reference: Optional[FloatArray] = None,
) -> Path:
    """One row per checkpoint: t, outlet value of every field[, reference]."""
    out_path = Path(out_dir) / "breakthrough.csv"
    header = ["t"] + [f"{name}_out" for name in solution.field_names]
    if reference is not None:
        reference = np.asarray(reference, dtype=np.float64)
        if reference.shape != solution.t.shape:
            raise ValueError(f"reference shape {reference.shape} != {solution.t.shape}")
        header.append(f"{FIELD_FLUID}_ref")
    curves = [breakthrough_curve(solution, name) for name in solution.field_names]
    t = curves[0][0]
    columns = [outlet for _, outlet in curves]
    with out_path.open("w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for m, t_m in enumerate(t):
            row = [f"{t_m:.10e}"] + [f"{col[m]:.10e}" for col in columns]
            if reference is not None:
                row.append(f"{reference[m]:.10e}")
            writer.writerow(row)
    logger.info("Wrote %s", out_path)
    return out_path


def _default_profile_times(solution: Solution, n: int = 5) -> List[float]:
    idx = np.unique(np.linspace(0, solution.t.size - 1, n).round().astype(int))
    return [float(solution.t[i]) for i in idx]


def write_profiles_csv(
    solution: Solution,
    out_dir: Path,
    times: Optional[Sequence[float]] = None,
) -> Path:
    """Long format: t, x, one column per field. Times outside the window are skipped."""
    out_path = Path(out_dir) / "profiles.csv"
    if not times:
        times = _default_profile_times(solution)
    with out_path.open("w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["t", "x"] + list(solution.field_names))
        for t in times:
            t = float(t)
            if t < solution.t[0] or t > solution.t[-1]:
                logger.warning("profile time %.6e outside [%.6e, %.6e]; skipped", t, solution.t[0], solution.t[-1])
                continue
            cols = [profile_at(solution, t, name) for name in solution.field_names]
            for i, x in enumerate(solution.x):
                writer.writerow([f"{t:.10e}", f"{x:.10e}"] + [f"{c[i]:.10e}" for c in cols])
    logger.info("Wrote %s", out_path)
    return out_path


def write_summary_json(summary: Mapping[str, Any], out_dir: Path) -> Path:
    out_path = Path(out_dir) / "summary.json"
    tmp_path = Path(out_dir) / "summary.json.tmp"
    with open(tmp_path, "w") as f:
        json.dump(dict(summary), f, indent=2, default=_json_default)
    os.replace(tmp_path, out_path)
    logger.info("Wrote %s", out_path)
    return out_path


def write_outputs(
    cfg: CaseConfig,
    solution: Solution,
    *,
    summary: Optional[Dict[str, Any]] = None,
    reference: Optional[FloatArray] = None,
) -> Dict[str, Path]:
    """Write every output enabled in cfg.io; returns {kind: path}."""
    run_dir = get_run_dir(cfg)
    written: Dict[str, Path] = {}
    if cfg.io.write_solution:
        written["solution"] = write_solution_npz(solution, run_dir)
    if cfg.io.write_breakthrough:
        written["breakthrough"] = write_breakthrough_csv(
            solution, run_dir, reference=reference if cfg.io.write_reference else None
        )
    if cfg.io.write_profiles:
        written["profiles"] = write_profiles_csv(solution, run_dir, cfg.io.profile_times)
    written["summary"] = write_summary_json(summary or {}, run_dir)
    return written
