"""Append-only storage of gradient snapshots.

Every inner loop adds one gradient to the history of its grid.  Records are
addressed by a positive, 1-based index and are never modified once written:
the orthogonalization relies on the records it has already processed staying
mutually orthogonal.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path

from .errors import HistoryRecordError
from .io import load_state, save_state
from .state import FieldSet

LOGGER = logging.getLogger(__name__)

__all__ = ["GradientHistoryStore", "MemoryHistoryStore", "NetCDFHistoryStore", "load_checked"]


def _check_record(record: int) -> int:
    if isinstance(record, bool) or int(record) != record or record < 1:
        raise HistoryRecordError(f"History records are addressed by positive integers, got {record!r}")
    return int(record)


class GradientHistoryStore(abc.ABC):
    """Key-indexed blob store of gradient field sets."""

    def store(self, grid_id: int, record: int, fields: FieldSet) -> None:
        record = _check_record(record)
        if (grid_id, record) in self:
            raise HistoryRecordError(f"Gradient record {record} of grid {grid_id} already exists")
        self._write(grid_id, record, fields)

    def load(self, grid_id: int, record: int) -> FieldSet:
        record = _check_record(record)
        if (grid_id, record) not in self:
            raise HistoryRecordError(f"Gradient record {record} of grid {grid_id} does not exist")
        return self._read(grid_id, record)

    @abc.abstractmethod
    def __contains__(self, key: object) -> bool:
        """Return whether ``(grid_id, record)`` has been stored."""

    @abc.abstractmethod
    def records(self, grid_id: int) -> list[int]:
        """Return the sorted record indices stored for *grid_id*."""

    @abc.abstractmethod
    def _write(self, grid_id: int, record: int, fields: FieldSet) -> None: ...

    @abc.abstractmethod
    def _read(self, grid_id: int, record: int) -> FieldSet: ...


class MemoryHistoryStore(GradientHistoryStore):
    """In-process history; records are copied on write and on read."""

    def __init__(self) -> None:
        self._records: dict[tuple[int, int], FieldSet] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def records(self, grid_id: int) -> list[int]:
        return sorted(record for grid, record in self._records if grid == grid_id)

    def _write(self, grid_id: int, record: int, fields: FieldSet) -> None:
        self._records[(grid_id, record)] = fields.copy()

    def _read(self, grid_id: int, record: int) -> FieldSet:
        return self._records[(grid_id, record)].copy()


class NetCDFHistoryStore(GradientHistoryStore):
    """One NetCDF file per record, named ``<prefix>_g<grid>_<record>.nc``."""

    def __init__(self, directory: str | Path, prefix: str = "adj"):
        self.directory = Path(directory)
        self.prefix = prefix
        self.directory.mkdir(parents=True, exist_ok=True)

    def path(self, grid_id: int, record: int) -> Path:
        return self.directory / f"{self.prefix}_g{int(grid_id):02d}_{int(record):03d}.nc"

    def __contains__(self, key: object) -> bool:
        grid_id, record = key  # type: ignore[misc]
        return self.path(grid_id, record).exists()

    def records(self, grid_id: int) -> list[int]:
        pattern = f"{self.prefix}_g{int(grid_id):02d}_*.nc"
        found = []
        for path in self.directory.glob(pattern):
            suffix = path.stem.rsplit("_", 1)[-1]
            if suffix.isdigit():
                found.append(int(suffix))
        return sorted(found)

    def _write(self, grid_id: int, record: int, fields: FieldSet) -> None:
        save_state(fields, self.path(grid_id, record), attrs={"grid": int(grid_id), "record": record})

    def _read(self, grid_id: int, record: int) -> FieldSet:
        return load_state(self.path(grid_id, record))


def load_checked(store: GradientHistoryStore, grid_id: int, record: int, template: FieldSet) -> FieldSet:
    """Load a record and make sure it matches the layout of *template*."""

    fields = store.load(grid_id, record)
    template.check_layout(fields, what=f"Gradient record {record} of grid {grid_id}")
    LOGGER.debug("Loaded gradient record %d of grid %d", record, grid_id)
    return fields
