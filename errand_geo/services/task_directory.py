"""Read-only view of the task store used for tracking authorization."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from errand_geo import db
from errand_geo.models.location import Location
from errand_geo.models.task_request import TaskRequest


@dataclass(frozen=True)
class TaskParticipants:
    task_id: int
    creator_id: int
    performer_id: int | None
    destination: Location | None
    terminal: bool = False

    def is_participant(self, user_id) -> bool:
        return user_id is not None and user_id in (self.creator_id, self.performer_id)


class TaskDirectory(ABC):

    @abstractmethod
    def participants(self, task_id) -> TaskParticipants | None:
        """Participants of a task, or None if the task does not exist."""


class SqlTaskDirectory(TaskDirectory):
    """Looks tasks up in the task_requests table. Needs an app context."""

    def participants(self, task_id):
        task = db.session.get(TaskRequest, task_id)
        if not task:
            return None
        return TaskParticipants(
            task_id=task.id,
            creator_id=task.creator_id,
            performer_id=task.assigned_to_id,
            destination=task.coordinates,
            terminal=task.is_terminal,
        )
