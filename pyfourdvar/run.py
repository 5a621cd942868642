"""Command line interface running conjugate-gradient inner loops on a synthetic grid."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from .config import DescentConfig, load_config
from .descent import DescentDriver
from .history import GradientHistoryStore, MemoryHistoryStore, NetCDFHistoryStore
from .io import save_outputs
from .quadratic import random_problem, run_inner_loops
from .state import FieldSet, GridMasks

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_grid(
    nx: int, ny: int, nz: int, ntracers: int, land_fraction: float, rng: np.random.Generator
) -> tuple[FieldSet, GridMasks]:
    if nx < 2 or ny < 2:
        raise ValueError("The grid needs at least two points in each horizontal direction")
    if not 0.0 <= land_fraction < 1.0:
        raise ValueError("The land fraction must lie in [0, 1)")

    vertical = (nz,) if nz > 0 else ()
    template = FieldSet(
        np.zeros((ny, nx)),
        np.zeros(vertical + (ny, nx - 1)),
        np.zeros(vertical + (ny - 1, nx)),
        {itrc: np.zeros(vertical + (ny, nx)) for itrc in range(1, ntracers + 1)},
    )

    rmask = (rng.uniform(size=(ny, nx)) >= land_fraction).astype(float)
    # Velocity points are wet only between two wet rho points.
    umask = rmask[:, :-1] * rmask[:, 1:]
    vmask = rmask[:-1, :] * rmask[1:, :]
    return template, GridMasks(rmask, umask, vmask)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Minimize a synthetic quadratic cost with the 4D-Var descent algorithm")
    parser.add_argument("--nx", type=int, default=8, help="Number of rho points in the xi direction")
    parser.add_argument("--ny", type=int, default=8, help="Number of rho points in the eta direction")
    parser.add_argument("--nz", type=int, default=0, help="Number of vertical levels (0 for a 2-D state)")
    parser.add_argument("--ntracers", type=int, default=2, help="Number of tracer fields")
    parser.add_argument("--land-fraction", type=float, default=0.0, help="Fraction of masked rho points")
    parser.add_argument("--condition", type=float, default=10.0, help="Condition number bound of the Hessian")
    parser.add_argument("--seed", type=int, default=0, help="Random seed of the synthetic problem")
    parser.add_argument("--ninner", type=int, default=10, help="Number of inner loops after the first")
    parser.add_argument("--config", default=None, help="JSON file holding descent options")
    parser.add_argument("--initial-step", type=float, default=None, help="Initial trial step length")
    parser.add_argument(
        "--no-orthogonalize",
        dest="orthogonalize",
        action="store_false",
        default=None,
        help="Skip the Gram-Schmidt orthogonalization of new gradients",
    )
    parser.add_argument("--normalize", action="store_true", default=None, help="Normalize orthogonalized gradients")
    parser.add_argument(
        "--verify-orthogonality",
        action="store_true",
        default=None,
        help="Report <G,G(r)> for every history record after orthogonalizing",
    )
    parser.add_argument(
        "--history-dir",
        default=None,
        help="Directory receiving one NetCDF file per gradient record (kept in memory when omitted)",
    )
    parser.add_argument("--output-dir", default=None, help="Directory where the final increment is written")
    parser.add_argument(
        "--metadata",
        default=None,
        help="Optional JSON file storing run metadata to be embedded in the summary",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    config = load_config(args.config) if args.config else DescentConfig()
    config = config.updated(
        initial_step=args.initial_step,
        orthogonalize=args.orthogonalize,
        normalize=args.normalize,
        verify_orthogonality=args.verify_orthogonality,
    )
    LOGGER.info("Descent options: %s", config.as_dict())

    rng = np.random.default_rng(args.seed)
    template, masks = _build_grid(args.nx, args.ny, args.nz, args.ntracers, args.land_fraction, rng)
    problem = random_problem(template, masks, rng, condition=args.condition)

    store: GradientHistoryStore
    if args.history_dir:
        store = NetCDFHistoryStore(args.history_dir)
    else:
        store = MemoryHistoryStore()

    driver = DescentDriver(config, store)
    grid_id = 1
    context = driver.open_grid(grid_id, template, masks)
    LOGGER.info(
        "Running %d inner loops on a %dx%d grid with %d tracers and %d active points",
        args.ninner,
        args.nx,
        args.ny,
        args.ntracers,
        masks.active_points(),
    )

    reports = run_inner_loops(driver, grid_id, problem, args.ninner)

    error = context.increment.copy()
    exact = problem.minimizer()
    for name, values in error.items():
        values -= exact[name]
    error_norm = context.dot.norm(error)
    LOGGER.info("Final cost %.12e, distance to the minimizer %.6e", context.cost.value[0], error_norm)

    summary: dict[str, Any] = {
        "tau": [report.tau for report in reports],
        "alpha": [report.alpha for report in reports],
        "beta": [report.beta for report in reports],
        "final_cost": float(context.cost.value[0]),
        "error_norm": error_norm,
    }
    if args.metadata:
        metadata_path = Path(args.metadata)
        with metadata_path.open("r", encoding="utf-8") as handle:
            summary["metadata"] = json.load(handle)

    if args.output_dir:
        save_outputs(
            {"increment.nc": context.increment, "direction.nc": context.direction},
            args.output_dir,
        )
        summary_path = Path(args.output_dir) / "summary.json"
        with summary_path.open("w", encoding="utf-8") as handle:
            json.dump(summary, handle, indent=2)
        LOGGER.info("Writing %s", summary_path)

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
