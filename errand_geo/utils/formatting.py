"""Human-readable strings for tracking views."""


def format_distance(meters):
    if meters is None:
        return 'Unknown'
    if meters < 1000:
        return f'{meters:.0f} m'
    return f'{meters / 1000:.1f} km'


def format_duration(seconds):
    if seconds is None:
        return 'Unknown'
    seconds = int(seconds)
    if seconds < 60:
        return f'{seconds} sec'
    if seconds < 3600:
        return f'{seconds // 60} min'
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f'{hours} hr {minutes} min'


def format_last_update(seconds_ago, updated_at=None):
    """'12s ago', '3m ago', or the clock time once it is over an hour old."""
    if seconds_ago is None:
        return ''
    seconds_ago = int(seconds_ago)
    if seconds_ago < 60:
        return f'{seconds_ago}s ago'
    if seconds_ago < 3600:
        return f'{seconds_ago // 60}m ago'
    return updated_at.strftime('%H:%M') if updated_at else f'{seconds_ago // 3600}h ago'


def format_arrival(arrival):
    return arrival.strftime('%H:%M') if arrival else None
