"""Pydantic schemas for options, rule config files and finding records."""
