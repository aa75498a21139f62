# ============================================================================
# netscope/data/__init__.py
# Data Layer Package - Storage and Persistence
# ============================================================================
#
# MODULES IN THIS PACKAGE:
# - **db.py**: SQLite database layer (scan records, summaries, host results)
#
# Live sessions are NOT stored here; they live in memory in
# netscope.base.session and only their final outcome is persisted.
#
# ============================================================================
