#!/usr/bin/env python3
"""Main entry point for DESS Harvest.

This file allows running the application directly with:
    python main.py

For full CLI usage, use:
    dessharvest --help
"""

from dessharvest.cli import cli

if __name__ == "__main__":
    cli()
