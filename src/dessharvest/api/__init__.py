"""DESS Monitor API access."""
