"""Optional MPI support for global reductions."""

from __future__ import annotations

import importlib
import importlib.util
from typing import Any

import numpy as np

MPI: Any | None
_spec = importlib.util.find_spec("mpi4py")
if _spec is None:
    MPI = None
else:
    MPI = importlib.import_module("mpi4py.MPI")

__all__ = ["MPI", "allreduce_sum", "comm_rank", "comm_size", "get_world_comm"]


def get_world_comm():
    """Return :data:`mpi4py.MPI.COMM_WORLD` when MPI is available."""

    if MPI is None:
        return None
    return MPI.COMM_WORLD


def comm_size(comm) -> int:
    return 1 if comm is None else int(comm.Get_size())


def comm_rank(comm) -> int:
    return 0 if comm is None else int(comm.Get_rank())


def allreduce_sum(local: np.ndarray, comm) -> np.ndarray:
    """Sum *local* over every rank of *comm*.

    Without a communicator, or with a single rank, *local* is returned as is.
    A failing collective propagates its exception; there is no retry.
    """

    if comm is None or comm.Get_size() == 1:
        return local
    buffer = np.ascontiguousarray(local, dtype=float)
    total = np.zeros_like(buffer)
    comm.Allreduce(buffer, total, op=MPI.SUM)
    return total
