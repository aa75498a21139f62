"""
Router initialization module.

Exports all API routers for the NetScope backend.
"""
from netscope.server.routers import auth, scans, realtime, system

__all__ = [
    "auth",
    "scans",
    "realtime",
    "system",
]
