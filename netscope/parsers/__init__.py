"""Parsers turning raw scanner output into structured results."""
