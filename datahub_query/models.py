"""Data shapes exchanged with the DataHub job API."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar

T = TypeVar("T")


class JobState(str, Enum):
    PENDING = "PENDING"
    METADATA_RETRIEVAL = "METADATA_RETRIEVAL"
    PLANNING = "PLANNING"
    QUEUED = "QUEUED"
    ENGINE_START = "ENGINE_START"
    EXECUTION_PLANNING = "EXECUTION_PLANNING"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` once no further state changes are expected."""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED})


@dataclass(slots=True, frozen=True)
class Job:
    """A submitted query job, identified by an opaque id."""

    id: str

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "Job":
        job_id = data.get("id")
        if job_id is None or job_id == "":
            raise ValueError("submission response carries no job id")
        return cls(id=str(job_id))


@dataclass(slots=True, frozen=True)
class JobStatus:
    """Snapshot of a job as reported by ``GET /job/{id}``."""

    job_state: str
    query_type: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    row_count: Optional[int] = None
    error_message: Optional[str] = None
    acceleration: Any = None

    @property
    def state(self) -> Optional[JobState]:
        """The state as a :class:`JobState`, or ``None`` if the server sent an unknown one."""
        try:
            return JobState(self.job_state)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        state = self.state
        return state is not None and state.is_terminal

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "JobStatus":
        """Build a status from the wire format.

        Raises ``ValueError`` when ``jobState`` is missing. Unknown states are
        kept verbatim and count as not finished.
        """
        raw_state = data.get("jobState")
        if not raw_state:
            raise ValueError("job status carries no jobState")
        row_count = data.get("rowCount")
        return cls(
            job_state=str(raw_state),
            query_type=data.get("queryType"),
            started_at=data.get("startedAt"),
            ended_at=data.get("endedAt"),
            row_count=int(row_count) if row_count is not None else None,
            error_message=data.get("errorMessage") or None,
            acceleration=data.get("acceleration"),
        )


@dataclass(slots=True, frozen=True)
class FieldType:
    """Type descriptor of a result column.

    ``sub_schema`` is set for structured types (``STRUCT``, ``LIST``, ``UNION``).
    """

    name: str
    sub_schema: Optional[List["DatasetField"]] = None
    precision: Optional[int] = None
    scale: Optional[int] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "FieldType":
        sub = data.get("subSchema")
        sub_schema: Optional[List[DatasetField]] = None
        if sub is not None:
            # Some server versions send a single field instead of a list
            if isinstance(sub, Mapping):
                sub = [sub]
            sub_schema = [DatasetField.from_payload(f) for f in sub]
        return cls(
            name=str(data["name"]),
            sub_schema=sub_schema,
            precision=data.get("precision"),
            scale=data.get("scale"),
        )


@dataclass(slots=True, frozen=True)
class DatasetField:
    name: str
    type: FieldType

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "DatasetField":
        return cls(name=str(data["name"]), type=FieldType.from_payload(data["type"]))


@dataclass(frozen=True)
class JobResult(Generic[T]):
    """One page of rows of a completed job."""

    row_count: int
    schema: List[DatasetField] = field(default_factory=list)
    rows: List[T] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "JobResult[Any]":
        return cls(
            row_count=int(data.get("rowCount") or 0),
            schema=[DatasetField.from_payload(f) for f in data.get("schema") or []],
            rows=list(data.get("rows") or []),
        )

    def to_payload(self) -> Dict[str, Any]:
        """Return the result in the wire format (camelCase keys)."""
        return {
            "rowCount": self.row_count,
            "schema": [_field_to_payload(f) for f in self.schema],
            "rows": self.rows,
        }


def _field_to_payload(f: DatasetField) -> Dict[str, Any]:
    type_payload: Dict[str, Any] = {"name": f.type.name}
    if f.type.sub_schema is not None:
        type_payload["subSchema"] = [_field_to_payload(s) for s in f.type.sub_schema]
    if f.type.precision is not None:
        type_payload["precision"] = f.type.precision
    if f.type.scale is not None:
        type_payload["scale"] = f.type.scale
    return {"name": f.name, "type": type_payload}


@dataclass(frozen=True)
class QueryConfig:
    """Per-query options.

    ``timeout`` is in seconds; ``math.inf`` or any negative value means the
    query may run forever.
    """

    timeout: float = math.inf
    offset: int = 0
    limit: int = 100

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError("offset must be >= 0")
        if self.limit <= 0:
            raise ValueError("limit must be > 0")

    @property
    def has_deadline(self) -> bool:
        return math.isfinite(self.timeout) and self.timeout >= 0

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "QueryConfig":
        """Return a copy with ``overrides`` applied; ``None`` values are ignored."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"unknown query option(s): {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
