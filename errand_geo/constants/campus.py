"""Campus geography, the single source of truth for the backend.

Must stay in sync with the frontend map bounds.
"""

# Campus bounds, slightly expanded to include nearby areas
CAMPUS_BOUNDS = {
    'north': 29.6680,
    'south': 29.6214,
    'east': -82.3120,
    'west': -82.3878,
}

# ~5 km tolerance around the bounds before a position is flagged
CAMPUS_BOUNDS_MARGIN_DEG = 0.05

# Default anchor used when every positioning attempt fails
CAMPUS_CENTER = {'lat': 29.6516, 'lng': -82.3490}
