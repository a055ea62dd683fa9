"""Error and warning taxonomy for a generation run.

Failures that abort a single edge raise :class:`DegenerateGeometryError`;
the pipeline records them per edge and carries on with the rest of the
network.  Everything else that a caller should know about is a warning
subclassing :class:`RoadNetworkWarning`.  Warnings never stop a pass:
they are appended to a :class:`Diagnostics` collector that travels
with the run result, and each one is logged as it is recorded.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Type

from src.utils.logging import get_logger

logger = get_logger(__name__)


class DegenerateGeometryError(ValueError):
    """Fewer than two usable control points, or a zero-length edge."""

    def __init__(self, message: str, edge_id: Optional[int] = None):
        super().__init__(message)
        self.edge_id = edge_id


class RoadNetworkWarning(UserWarning):
    """Base class of all non-fatal findings."""

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"type": type(self).__name__, "message": str(self)}
        record.update({k: v for k, v in vars(self).items() if not k.startswith("_")})
        return record


class JunctionAmbiguityWarning(RoadNetworkWarning):
    """Junction geometry could not be classified confidently."""

    def __init__(self, message: str, junction_id: int):
        super().__init__(message)
        self.junction_id = junction_id


class GradeViolationWarning(RoadNetworkWarning):
    """A smoothed or structure profile exceeds the configured grade."""

    def __init__(self, message: str, edge_id: int, grade_percent: float, limit_percent: float):
        super().__init__(message)
        self.edge_id = edge_id
        self.grade_percent = float(grade_percent)
        self.limit_percent = float(limit_percent)


class ClearanceViolationWarning(RoadNetworkWarning):
    """A tunnel cannot reach its clearance within the allowed grade."""

    def __init__(self, message: str, edge_id: int, achieved_clearance: float, required_clearance: float):
        super().__init__(message)
        self.edge_id = edge_id
        self.achieved_clearance = float(achieved_clearance)
        self.required_clearance = float(required_clearance)


@dataclass
class EdgeFailure:
    """An edge that was dropped from the run."""
    edge_id: int
    message: str


class Diagnostics:
    """Ordered collection of warnings raised during a run."""

    def __init__(self) -> None:
        self._items: List[RoadNetworkWarning] = []

    def add(self, warning: RoadNetworkWarning) -> None:
        logger.warning("%s: %s", type(warning).__name__, warning)
        self._items.append(warning)

    def extend(self, warnings: List[RoadNetworkWarning]) -> None:
        for warning in warnings:
            self.add(warning)

    def by_type(self, kind: Type[RoadNetworkWarning]) -> List[RoadNetworkWarning]:
        return [w for w in self._items if isinstance(w, kind)]

    def to_records(self) -> List[Dict[str, Any]]:
        return [w.to_record() for w in self._items]

    def __iter__(self) -> Iterator[RoadNetworkWarning]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
