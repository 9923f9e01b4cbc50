"""Custom exception hierarchy for DESS Harvest."""

# Error codes the remote API uses for rejected credentials or signatures.
AUTH_ERROR_CODES: dict[int, str] = {
    261: "User not found",
    262: "Invalid credentials",
    263: "Invalid sign",
    264: "Session expired",
}


class DessHarvestError(Exception):
    """Base exception for all DESS Harvest errors."""

    pass


class ConfigurationError(DessHarvestError):
    """Error in application configuration or missing credentials."""

    pass


class RemoteError(DessHarvestError):
    """Error communicating with the DESS Monitor API."""

    def __init__(self, message: str, code: int | None = None) -> None:
        """Initialize remote error.

        Args:
            message: Error message.
            code: Envelope error code or HTTP status code if available.
        """
        super().__init__(message)
        self.code = code
        self.message = message


class AuthError(RemoteError):
    """The remote API rejected the token or signature."""

    pass


class TransientRemoteError(RemoteError):
    """Timeout, transport failure, malformed envelope or non-auth error code."""

    pass


class DataError(DessHarvestError):
    """An individual sample could not be parsed."""

    pass


class DatabaseError(DessHarvestError):
    """Error with database operations."""

    pass


class QueryError(DessHarvestError):
    """Invalid request against the local query API."""

    pass


class UnsupportedFieldError(QueryError):
    """Chart field is not one of the supported fields."""

    def __init__(self, field: str, supported: list[str]) -> None:
        super().__init__(
            f"Unsupported chart field '{field}'. Supported: {', '.join(supported)}"
        )
        self.field = field
        self.supported = supported


def classify_error_code(code: int, desc: str | None = None) -> RemoteError:
    """Map a non-zero envelope error code to the matching exception.

    Args:
        code: Envelope error code.
        desc: Optional description returned by the API.

    Returns:
        AuthError for credential/signature codes, TransientRemoteError otherwise.
    """
    if code in AUTH_ERROR_CODES:
        return AuthError(f"{AUTH_ERROR_CODES[code]} (err={code})", code=code)
    message = f"API error err={code} desc={desc or '(none)'}"
    return TransientRemoteError(message, code=code)
