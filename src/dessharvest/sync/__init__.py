"""Fetching and scheduling of DESS Monitor data."""
