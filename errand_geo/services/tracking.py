"""Live location sharing between a task performer and the task creator.

A LocationTrackingSession owns one task's position stream:

    Idle -> Starting -> Active <-> Degraded -> Stopped

The performer's client is the only writer. Every accepted position is
appended to a capped history and published together with it as one
document, so readers never see current and history out of step. Route/ETA
lookups run on a worker pool and never hold up the next position.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime, timezone

from errand_geo.constants import CAMPUS_CENTER
from errand_geo.errors import (
    PermissionDenied,
    PositionErrorKind,
    PositionUnavailable,
    RoutingFailure,
    StaleData,
    TaskClosed,
    TrackingAccessDenied,
    TrackingNotFound,
)
from errand_geo.models.location import Location, LocationHistoryPoint, validate_location
from errand_geo.services.distance import is_within_campus
from errand_geo.services.map_services import MapServicesProvider, PushPositionSource
from errand_geo.utils.formatting import (
    format_arrival,
    format_distance,
    format_duration,
    format_last_update,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class TrackingState(str, enum.Enum):
    IDLE = 'idle'
    STARTING = 'starting'
    ACTIVE = 'active'
    DEGRADED = 'degraded'
    STOPPED = 'stopped'


@dataclass(frozen=True)
class TrackingConfig:
    high_accuracy_timeout: float = 10.0
    low_accuracy_timeout: float = 20.0
    stale_after: float = 60.0
    watchdog_interval: float = 15.0
    history_limit: int = HISTORY_LIMIT
    default_anchor: Location = field(
        default_factory=lambda: Location(lat=CAMPUS_CENTER['lat'], lng=CAMPUS_CENTER['lng'], address='Campus center')
    )
    reverse_geocode_initial_fix: bool = True

    @classmethod
    def from_config(cls, config):
        return cls(
            high_accuracy_timeout=float(config.get('TRACKING_HIGH_ACCURACY_TIMEOUT', 10)),
            low_accuracy_timeout=float(config.get('TRACKING_LOW_ACCURACY_TIMEOUT', 20)),
            stale_after=float(config.get('TRACKING_STALE_AFTER', 60)),
            watchdog_interval=float(config.get('TRACKING_WATCHDOG_INTERVAL', 15)),
            history_limit=int(config.get('TRACKING_HISTORY_LIMIT', HISTORY_LIMIT)),
        )


def _now_millis():
    return int(time.time() * 1000)


class LocationTrackingSession:
    """One task's live-location lifecycle. Use TrackingManager to create these."""

    def __init__(self, task_id, performer_id, destination, source, store,
                 map_services=None, executor=None, config=None, client_ip=None):
        self.session_id = uuid.uuid4().hex
        self.task_id = task_id
        self.performer_id = performer_id
        self.destination = destination if validate_location(destination) else None
        self.source = source
        self.store = store
        self.map_services = map_services or MapServicesProvider()
        self.executor = executor
        self.config = config or TrackingConfig()
        self.client_ip = client_ip

        self.state = TrackingState.IDLE
        self.degraded_reason = None
        self.current = None
        self.history = []
        self.route = None
        self.sequence = 0
        self.last_position_millis = None

        self.started = threading.Event()
        self._lock = threading.RLock()
        self._cancel_watch = None
        self._watchdog_stop = threading.Event()
        self._route_future = None
        self._route_running = False
        self._route_pending = False

    def __repr__(self):
        return f'<LocationTrackingSession task={self.task_id} state={self.state.value}>'

    @property
    def is_live(self):
        return self.state in (TrackingState.STARTING, TrackingState.ACTIVE, TrackingState.DEGRADED)

    # ============ Lifecycle ============

    def start(self):
        """Acquire an initial fix, publish it, then follow the source's push stream."""
        with self._lock:
            if self.state is not TrackingState.IDLE:
                logger.warning(f'Tracking for task {self.task_id} already {self.state.value}')
                return self.state
            self.state = TrackingState.STARTING
        logger.info(f'Starting location sharing for task {self.task_id} (performer {self.performer_id})')

        try:
            fix, degraded_reason = self._acquire_initial_fix()
            if degraded_reason is None and self.config.reverse_geocode_initial_fix and not fix.address:
                fix = fix.with_address(self._reverse_geocode(fix))
            with self._lock:
                if self.state is TrackingState.STOPPED:
                    return self.state
                # Pushes that arrive from here on queue on the lock behind the first fix
                self._accept(fix, degraded_reason=degraded_reason)
                self._cancel_watch = self.source.start_watching(self.ingest, self._on_source_error)

            if self.config.watchdog_interval > 0:
                threading.Thread(
                    target=self._watchdog_loop,
                    name=f'tracking-watchdog-{self.task_id}',
                    daemon=True,
                ).start()
        finally:
            self.started.set()
        return self.state

    def stop(self, reason='stopped by performer'):
        """Cancel the position stream and clear the published state."""
        with self._lock:
            if self.state is TrackingState.STOPPED:
                return False
            self.state = TrackingState.STOPPED
            cancel, self._cancel_watch = self._cancel_watch, None
            self.current = None
            self.history = []
            self.route = None

        if cancel:
            cancel()
        self._watchdog_stop.set()
        self.store.clear(self.task_id)
        self.started.set()
        logger.info(f'Location sharing for task {self.task_id} stopped: {reason}')
        return True

    def wait_until_started(self, timeout=None):
        return self.started.wait(timeout)

    def wait_for_route(self, timeout=None):
        """Block until the in-flight route lookup (if any) has finished."""
        future = self._route_future
        if future is not None:
            wait_futures([future], timeout=timeout)

    # ============ Initial fix ============

    def _acquire_initial_fix(self):
        """High accuracy -> low accuracy -> network -> default anchor."""
        permission_denied = False
        try:
            return self.source.get_current_position(
                high_accuracy=True, timeout=self.config.high_accuracy_timeout), None
        except PermissionDenied as e:
            permission_denied = True
            logger.warning(f'Task {self.task_id}: location permission denied: {e}')
        except PositionUnavailable as e:
            logger.warning(f'Task {self.task_id}: high accuracy fix failed, trying lower accuracy: {e}')

        if not permission_denied and not self._stopping():
            try:
                return self.source.get_current_position(
                    high_accuracy=False, timeout=self.config.low_accuracy_timeout), None
            except PositionUnavailable as e:
                logger.warning(f'Task {self.task_id}: low accuracy fix failed: {e}')

        locator = self.map_services.network_locator
        if locator is not None and self.client_ip and not self._stopping():
            try:
                location = locator.locate(self.client_ip)
            except Exception as e:
                logger.warning(f'Task {self.task_id}: network location failed: {e}')
                location = None
            if validate_location(location):
                logger.info(f'Task {self.task_id}: using approximate network location for {self.client_ip}')
                return location.stamped(), 'network_location'

        logger.warning(f'Task {self.task_id}: all location attempts failed, using campus center')
        return self.config.default_anchor.stamped(), 'default_anchor'

    def _stopping(self):
        return self.state is TrackingState.STOPPED

    def _reverse_geocode(self, location):
        try:
            return self.map_services.geocoder.reverse(location)
        except Exception as e:
            logger.warning(f'Error getting address for task {self.task_id}: {e}')
            return None

    # ============ Position stream ============

    def ingest(self, location) -> bool:
        """Handle one pushed position. Invalid or late positions are dropped."""
        if not validate_location(location):
            logger.warning(f'Rejected invalid position for task {self.task_id}: {location!r}')
            return False
        return self._accept(location)

    def _accept(self, location, degraded_reason=None) -> bool:
        with self._lock:
            if self.state not in (TrackingState.STARTING, TrackingState.ACTIVE, TrackingState.DEGRADED):
                return False

            location = location.stamped()
            self.current = location
            self.history.append(LocationHistoryPoint.from_location(location))
            overflow = len(self.history) - self.config.history_limit
            if overflow > 0:
                del self.history[:overflow]
            self.last_position_millis = _now_millis()

            if degraded_reason:
                self._set_state(TrackingState.DEGRADED, degraded_reason)
            else:
                self._set_state(TrackingState.ACTIVE)

            if not is_within_campus(location):
                logger.warning(f'Task {self.task_id}: position is outside the campus area, but still usable')

            self._publish_locked()

        self._request_route()
        return True

    def _on_source_error(self, kind, message=None):
        kind = PositionErrorKind.parse(kind)
        logger.warning(f'Positioning error for task {self.task_id}: {kind.value} {message or ""}'.rstrip())
        with self._lock:
            if self.state is TrackingState.ACTIVE:
                self._set_state(TrackingState.DEGRADED, kind.value)
                self._publish_locked()

    def check_staleness(self, now_millis=None) -> bool:
        """Move Active -> Degraded when no position arrived within stale_after."""
        now_millis = now_millis or _now_millis()
        with self._lock:
            if self.state is not TrackingState.ACTIVE or self.last_position_millis is None:
                return False
            if (now_millis - self.last_position_millis) / 1000 <= self.config.stale_after:
                return False
            stale = StaleData(
                f'No position for task {self.task_id} in over {self.config.stale_after:g}s'
            )
            self._set_state(TrackingState.DEGRADED, 'stale')
            self._publish_locked()
        logger.warning(f'Location is stale: {stale}')
        return True

    def _watchdog_loop(self):
        while not self._watchdog_stop.wait(self.config.watchdog_interval):
            try:
                self.check_staleness()
            except Exception as e:
                logger.error(f'Staleness check failed for task {self.task_id}: {e}', exc_info=True)

    def _set_state(self, state, reason=None):
        if state is not self.state:
            logger.info(f'Task {self.task_id} tracking {self.state.value} -> {state.value}')
        self.state = state
        self.degraded_reason = reason if state is TrackingState.DEGRADED else None

    # ============ Route / ETA ============

    def _request_route(self):
        with self._lock:
            if self.state is TrackingState.STOPPED or self.current is None or self.destination is None:
                return
            if self._route_running:
                self._route_pending = True
                return
            self._route_running = True
            self._route_pending = False

        if self.executor is None:
            self._route_worker()
            return
        try:
            self._route_future = self.executor.submit(self._route_worker)
        except RuntimeError as e:
            logger.warning(f'Route lookup for task {self.task_id} not scheduled: {e}')
            with self._lock:
                self._route_running = False

    def _route_worker(self):
        while True:
            with self._lock:
                if self.state is TrackingState.STOPPED or self.current is None:
                    self._route_running = False
                    return
                origin = self.current
                self._route_pending = False

            estimate = None
            try:
                estimate = self.map_services.router.route(origin, self.destination).with_arrival()
            except RoutingFailure as e:
                logger.warning(f'Routing failed for task {self.task_id}, keeping previous route: {e}')
            except Exception as e:
                logger.error(f'Unexpected routing error for task {self.task_id}: {e}', exc_info=True)

            with self._lock:
                if self.state is TrackingState.STOPPED:
                    self._route_running = False
                    return
                if estimate is not None:
                    self.route = estimate
                    self._publish_locked()
                if not self._route_pending:
                    self._route_running = False
                    return

    # ============ Publishing ============

    def _document_locked(self):
        now = datetime.now(timezone.utc)
        return {
            'session_id': self.session_id,
            'task_id': self.task_id,
            'performer_id': self.performer_id,
            'state': self.state.value,
            'degraded_reason': self.degraded_reason,
            'current': self.current.to_dict() if self.current else None,
            'history': [point.to_dict() for point in self.history],
            'route': self.route.to_dict() if self.route else None,
            'destination': self.destination.to_dict() if self.destination else None,
            'within_service_area': is_within_campus(self.current),
            'sequence': self.sequence,
            'last_position_millis': self.last_position_millis,
            'updated_at': now.isoformat(),
            'updated_at_millis': int(now.timestamp() * 1000),
        }

    def _publish_locked(self):
        self.sequence += 1
        if not self.store.write(self.task_id, self._document_locked()):
            logger.warning(f'Location write for task {self.task_id} (seq {self.sequence}) was rejected')

    def snapshot(self):
        with self._lock:
            return self._document_locked()


def reader_view(task_id, doc, stale_after=60.0, now_millis=None):
    """What a subscriber sees: the published doc plus staleness and display text."""
    if not doc:
        return {
            'task_id': task_id,
            'state': TrackingState.IDLE.value,
            'current': None,
            'history': [],
            'route': None,
            'staleness': None,
            'display': None,
        }

    now_millis = now_millis or _now_millis()
    last = doc.get('last_position_millis') or doc.get('updated_at_millis')
    seconds_ago = max(0.0, (now_millis - last) / 1000) if last else None
    updated_at = datetime.fromtimestamp(last / 1000) if last else None

    route = doc.get('route') or {}
    arrival = route.get('estimated_arrival')
    view = dict(doc)
    view['staleness'] = {
        'seconds_since_update': seconds_ago,
        'is_stale': seconds_ago is None or seconds_ago > stale_after,
        'last_update_text': format_last_update(seconds_ago, updated_at),
    }
    view['display'] = {
        'distance_text': format_distance(route.get('distance_meters')),
        'duration_text': format_duration(route.get('duration_seconds')),
        'arrival_text': format_arrival(datetime.fromisoformat(arrival).astimezone()) if arrival else None,
    }
    return view


class TrackingManager:
    """Owns this process's tracking sessions and enforces who may do what."""

    def __init__(self, store, task_directory, map_services=None, config=None,
                 source_factory=PushPositionSource, max_route_workers=4):
        self.store = store
        self.task_directory = task_directory
        self.map_services = map_services or MapServicesProvider()
        self.config = config or TrackingConfig()
        self.source_factory = source_factory
        self.executor = ThreadPoolExecutor(max_workers=max_route_workers, thread_name_prefix='tracking-route')
        self._sessions = {}
        self._lock = threading.Lock()

    def _participants(self, task_id):
        info = self.task_directory.participants(task_id)
        if info is None:
            raise TrackingNotFound(f'Task {task_id} not found')
        return info

    def _require_performer(self, info, user_id):
        if info.performer_id is None or info.performer_id != user_id:
            raise TrackingAccessDenied('Only the task performer can share their location')

    def get_session(self, task_id):
        with self._lock:
            return self._sessions.get(task_id)

    def start_tracking(self, task_id, performer_id, destination=None, initial_position=None,
                       wait=False, client_ip=None):
        """Start (or return the already running) session for a task.

        client_ip is the performer's address, used only for the coarse network
        fallback when the device never sends a fix.
        """
        info = self._participants(task_id)
        self._require_performer(info, performer_id)
        if info.terminal:
            raise TaskClosed(f'Task {task_id} is no longer active')

        with self._lock:
            existing = self._sessions.get(task_id)
            if existing is not None and existing.state is not TrackingState.STOPPED:
                return existing
            session = LocationTrackingSession(
                task_id=task_id,
                performer_id=performer_id,
                destination=destination or info.destination,
                source=self.source_factory(),
                store=self.store,
                map_services=self.map_services,
                executor=self.executor,
                config=self.config,
                client_ip=client_ip,
            )
            self._sessions[task_id] = session

        if validate_location(initial_position):
            session.source.push(initial_position)

        if wait:
            session.start()
        else:
            threading.Thread(target=session.start, name=f'tracking-start-{task_id}', daemon=True).start()
        return session

    def stop_tracking(self, session, reason='stopped by performer'):
        stopped = session.stop(reason)
        with self._lock:
            if self._sessions.get(session.task_id) is session:
                self._sessions.pop(session.task_id, None)
        return stopped

    def stop_for_user(self, task_id, user_id):
        info = self._participants(task_id)
        self._require_performer(info, user_id)
        session = self.get_session(task_id)
        if session is None:
            # Nothing live here; still make sure readers see a cleared state
            self.store.clear(task_id)
            return False
        return self.stop_tracking(session)

    def end_for_task(self, task_id, reason='task finished'):
        """Task reached a terminal status."""
        session = self.get_session(task_id)
        if session is None:
            self.store.clear(task_id)
            return False
        return self.stop_tracking(session, reason)

    def _live_session(self, task_id, user_id):
        info = self._participants(task_id)
        self._require_performer(info, user_id)
        if info.terminal:
            self.end_for_task(task_id)
            raise TaskClosed(f'Task {task_id} is no longer active')
        session = self.get_session(task_id)
        if session is None or not session.is_live:
            raise TrackingNotFound(f'No active location sharing for task {task_id}')
        return session

    def push_position(self, task_id, user_id, location) -> bool:
        session = self._live_session(task_id, user_id)
        if not validate_location(location):
            logger.warning(f'Rejected invalid position for task {task_id}')
            return False
        session.source.push(location)
        return True

    def report_position_error(self, task_id, user_id, kind, message=None):
        session = self._live_session(task_id, user_id)
        session.source.report_error(PositionErrorKind.parse(kind), message)

    def _require_participant(self, task_id, user_id):
        info = self._participants(task_id)
        if not info.is_participant(user_id):
            raise TrackingAccessDenied('Only the task creator and performer can view its location')
        return info

    def read_tracking(self, task_id, user_id):
        self._require_participant(task_id, user_id)
        session = self.get_session(task_id)
        if session is not None:
            session.check_staleness()
        return reader_view(task_id, self.store.read(task_id), self.config.stale_after)

    def subscribe_tracking(self, task_id, user_id, on_update):
        """Deliver the current state now and every change after; returns unsubscribe."""
        self._require_participant(task_id, user_id)
        stale_after = self.config.stale_after

        def deliver(doc):
            on_update(reader_view(task_id, doc, stale_after))

        unsubscribe = self.store.subscribe(task_id, deliver)
        deliver(self.store.read(task_id))
        return unsubscribe

    def shutdown(self):
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            self.stop_tracking(session, reason='service shutting down')
        self.executor.shutdown(wait=False)
