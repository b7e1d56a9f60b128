"""
POI favorites sharing service.

Favorites for anonymous devices and signed-in users, immutable share links
with import tracking, and live import statistics for link owners.
"""

__version__ = "1.0.0"
