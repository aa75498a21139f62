"""Foundational components the rest of NetScope depends on."""
#
# WHAT'S IN THIS PACKAGE:
# - config.py: Application configuration (tokens, paths, timeouts, retention)
# - session.py: In-memory scan sessions and their per-session event fan-out
#
