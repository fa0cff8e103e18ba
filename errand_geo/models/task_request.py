"""Task request model: the slice of the errand store the geo engine reads."""

from datetime import datetime
from errand_geo import db
from errand_geo.models.bundle import TaskSummary
from errand_geo.models.location import Location, validate_location

TERMINAL_STATUSES = ('completed', 'cancelled')


class TaskRequest(db.Model):
    """TaskRequest model for campus errands."""

    __tablename__ = 'task_requests'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    category = db.Column(db.String(50), nullable=False, default='delivery', index=True)
    budget = db.Column(db.Float, nullable=True)
    is_free = db.Column(db.Boolean, default=False, nullable=False)
    urgency = db.Column(db.String(20), default='low', nullable=False)  # 'low', 'medium', 'high'
    estimated_time = db.Column(db.String(64), nullable=True)  # free text, e.g. '15-20 minutes'
    estimated_minutes = db.Column(db.Integer, nullable=True)
    location = db.Column(db.String(255), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    creator_id = db.Column(db.Integer, nullable=False, index=True)
    assigned_to_id = db.Column(db.Integer, nullable=True, index=True)
    status = db.Column(db.String(20), default='open', nullable=False, index=True)  # 'open', 'assigned', 'in_progress', 'completed', 'cancelled'
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def coordinates(self):
        """Task location as a Location, or None when it has no usable coordinates."""
        if self.latitude is None or self.longitude is None:
            return None
        loc = Location(lat=self.latitude, lng=self.longitude, address=self.location)
        return loc if validate_location(loc) else None

    def to_summary(self):
        return TaskSummary(
            id=self.id,
            price=float(self.budget or 0),
            estimated_time_text=self.estimated_time,
            location=self.coordinates,
            estimated_minutes=self.estimated_minutes,
        )

    def to_dict(self):
        """Convert task request to dictionary."""
        return {
            'id': self.id,
            'title': self.title,
            'category': self.category,
            'budget': self.budget,
            'is_free': self.is_free,
            'urgency': self.urgency,
            'estimated_time': self.estimated_time,
            'estimated_minutes': self.estimated_minutes,
            'location': self.location,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'creator_id': self.creator_id,
            'assigned_to_id': self.assigned_to_id,
            'status': self.status,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    def __repr__(self):
        return f'<TaskRequest {self.id}: {self.title}>'
