# ============================================================================
# netscope/server/__init__.py
# Server Package - FastAPI Web Server
# ============================================================================
#
# KEY ENDPOINTS:
# - POST /v1/scans/start - Start a scan from a profile
# - POST /v1/scans/builder/start - Start a scan from a full configuration
# - GET /v1/scans/{scan_id}/stream - Server-sent events for a live scan
# - GET /v1/scans/{scan_id} - Persisted scan record
#
# KEY MODULES:
# - **api.py**: FastAPI application, startup/shutdown, router registration
# - **state.py**: The single set of collaborators shared by all handlers
#
# ============================================================================
