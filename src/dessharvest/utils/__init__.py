"""Utility modules for DESS Harvest."""

from dessharvest.utils.exceptions import (
    AuthError,
    ConfigurationError,
    DatabaseError,
    DataError,
    DessHarvestError,
    QueryError,
    RemoteError,
    TransientRemoteError,
    UnsupportedFieldError,
)

__all__ = [
    "AuthError",
    "ConfigurationError",
    "DataError",
    "DatabaseError",
    "DessHarvestError",
    "QueryError",
    "RemoteError",
    "TransientRemoteError",
    "UnsupportedFieldError",
]
