"""Scan configuration, validation and nmap argument construction."""
