"""DESS Harvest - Collect DESS Monitor inverter data into a database."""

__version__ = "0.1.0"
