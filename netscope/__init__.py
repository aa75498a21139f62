# ============================================================================
# netscope/__init__.py
# Package Marker for the NetScope Backend
# ============================================================================
#
# PURPOSE:
# Backend for a network scanning dashboard: runs nmap as a subprocess,
# streams its progress to browsers over server-sent events, parses the XML
# report and keeps scan history in SQLite.
#
# ============================================================================

__version__ = "1.0.0"
