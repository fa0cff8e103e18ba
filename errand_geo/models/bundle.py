"""Task projections used by the bundling engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from errand_geo.models.location import Location


@dataclass(frozen=True)
class TaskSummary:
    """Minimal read-only projection of an open task."""

    id: int | str
    price: float
    estimated_time_text: str | None
    location: Location | None
    estimated_minutes: int | None = None

    def to_dict(self):
        return {
            'id': self.id,
            'price': self.price,
            'estimated_time': self.estimated_time_text,
            'estimated_minutes': self.estimated_minutes,
            'location': self.location.to_dict() if self.location else None,
        }


@dataclass
class TaskBundle:
    """A geographically chained run of open tasks."""

    tasks: list[TaskSummary] = field(default_factory=list)
    total_earnings: float = 0.0
    total_time_minutes: int = 0
    total_distance_km: float = 0.0

    @property
    def task_ids(self):
        return [task.id for task in self.tasks]

    def to_dict(self):
        return {
            'task_ids': self.task_ids,
            'tasks': [task.to_dict() for task in self.tasks],
            'total_earnings': self.total_earnings,
            'total_time_minutes': self.total_time_minutes,
            'total_time': f'{self.total_time_minutes} minutes',
            'total_distance_km': round(self.total_distance_km, 2),
        }
