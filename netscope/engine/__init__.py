"""Manages the scanner subprocess and the lifecycle around it."""
#
# MODULES IN THIS PACKAGE:
# - **runner.py**: Spawns nmap for one session and pumps its two output streams
# - **finalizer.py**: Drives a scan end to end and writes the outcome
# - **reaper.py**: Periodically evicts finished sessions from memory
#
# WORKFLOW:
# Scan accepted → Finalizer marks running → Runner spawns nmap → stderr lines become
# session logs, stdout becomes the XML buffer → exit → parse → persist → done/error
#
