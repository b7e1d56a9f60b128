"""
API routers for the POI sharing service.
"""
