"""Request signing and URL assembly for the DESS Monitor API.

Every authenticated request carries ``sign``, ``salt`` and ``token`` query
parameters. The server recomputes the signature from the query string it
receives, so both the parameter order and the percent-encoding must match
what the web client produces:

* token mode: ``sha1(salt + secret + token + "&" + query)`` over a strictly
  percent-encoded query (space as ``%20``, ``:`` as ``%3A``)
* login (``authSource``): ``sha1(salt + sha1(password) + "&" + query)`` over
  the web client's transfer encoding, which turns some escapes back into
  literal characters

A wrong encoding is rejected with a generic format error rather than an
authentication error.
"""

import hashlib
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

from dessharvest.auth.session import AuthSession, SessionMode
from dessharvest.config.settings import DEFAULT_BASE_URL
from dessharvest.utils.exceptions import ConfigurationError

LOGIN_ACTION = "authSource"
DEFAULT_SOURCE = "1"

# Parameter order the server uses when it verifies a signature.
SIGN_PARAM_ORDER = (
    "action",
    "source",
    "pn",
    "devcode",
    "sn",
    "devaddr",
    "field",
    "precision",
    "sdate",
    "edate",
    "i18n",
    "chartStatus",
    "parameter",
    "date",
    "devtype",
    "page",
    "pagesize",
)

# Escapes the web client turns back into literal characters after encoding.
_LITERAL_ESCAPES = (
    ("%20", "+"),
    ("%2B", "+"),
    ("%3A", ":"),
    ("%2C", ","),
    ("%40", "@"),
    ("%24", "$"),
    ("%26", "&"),
    ("%3D", "="),
    ("%28", "("),
    ("%29", ")"),
)


def sha1_hex(value: str) -> str:
    """Hex SHA-1 digest of a UTF-8 string."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def strict_encode(params: Mapping[str, Any]) -> str:
    """Encode parameters leaving only RFC 3986 unreserved characters literal.

    Used for token-mode requests, both in the signed string and in the URL.
    """
    return "&".join(
        f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
        for key, value in params.items()
    )


def transfer_encode(params: Mapping[str, Any]) -> str:
    """Encode parameters into a query string the way the web client does.

    Keys and values are percent-encoded leaving only RFC 3986 unreserved
    characters, then a fixed set of escapes is decoded back.

    Args:
        params: Parameters in the order they must appear.

    Returns:
        Query string without a leading ``?``.
    """
    query = strict_encode(params)
    for escaped, literal in _LITERAL_ESCAPES:
        query = query.replace(escaped, literal)
    return query


def order_params(params: Mapping[str, Any]) -> dict[str, str]:
    """Arrange parameters in canonical order, dropping empty values.

    Parameters outside the canonical list follow in insertion order.
    """
    present = {k: str(v) for k, v in params.items() if v is not None and v != ""}
    ordered = {k: present[k] for k in SIGN_PARAM_ORDER if k in present}
    for key, value in present.items():
        if key not in ordered:
            ordered[key] = value
    return ordered


def _with_trailing_slash(base_url: str) -> str:
    return base_url if base_url.endswith("/") else f"{base_url}/"


class SignedRequestBuilder:
    """Builds signed request URLs for token, legacy and login requests."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the builder.

        Args:
            base_url: Default API base URL for login requests.
            clock: Time source in seconds, used for salts.
        """
        self._base_url = base_url
        self._clock = clock
        self._last_salt = 0
        self._lock = threading.Lock()

    def next_salt(self) -> int:
        """Current time in milliseconds, strictly greater than the last salt issued."""
        with self._lock:
            salt = max(int(self._clock() * 1000), self._last_salt + 1)
            self._last_salt = salt
            return salt

    def sign_params(
        self,
        action: str,
        token: str,
        secret: str,
        extra_params: Mapping[str, Any] | None = None,
        salt: int | None = None,
    ) -> dict[str, str]:
        """Build the complete signed parameter set for a token-mode request.

        Args:
            action: API action name.
            token: Session token from login.
            secret: Session secret from login.
            extra_params: Request parameters.
            salt: Fixed salt; a fresh one is generated when omitted.

        Returns:
            Parameters in URL order: sign, salt, token, then canonical order.
        """
        if salt is None:
            salt = self.next_salt()

        ordered = order_params({"action": action, "source": DEFAULT_SOURCE, **(extra_params or {})})
        sign = sha1_hex(f"{salt}{secret}{token}&{strict_encode(ordered)}")
        return {"sign": sign, "salt": str(salt), "token": token, **ordered}

    def build_url(
        self,
        action: str,
        session: AuthSession,
        extra_params: Mapping[str, Any] | None = None,
        salt: int | None = None,
    ) -> str:
        """Build a request URL for an action using the given session.

        Args:
            action: API action name.
            session: Active session (token or legacy mode).
            extra_params: Request parameters, including device identifiers.
            salt: Fixed salt for token mode.

        Returns:
            Fully qualified URL.

        Raises:
            ConfigurationError: If a token-mode session lacks token or secret.
        """
        if session.mode == SessionMode.LEGACY:
            return self.build_legacy_url(action, session, extra_params)

        if not session.can_sign:
            raise ConfigurationError("Session has no token/secret; log in again")

        params = self.sign_params(
            action,
            session.token,  # type: ignore[arg-type]
            session.secret,  # type: ignore[arg-type]
            extra_params,
            salt=salt,
        )
        return f"{_with_trailing_slash(session.base_url)}?{strict_encode(params)}"

    def build_legacy_url(
        self,
        action: str,
        session: AuthSession,
        extra_params: Mapping[str, Any] | None = None,
    ) -> str:
        """Reuse a captured signature, swapping only action and request params.

        Such URLs stay valid only while the server accepts the captured signature.
        """
        params = {k: v for k, v in session.params.items() if k != "secret"}
        params["action"] = action
        for key, value in (extra_params or {}).items():
            if value is not None and value != "":
                params[key] = str(value)
        return f"{_with_trailing_slash(session.base_url)}?{strict_encode(params)}"

    def build_login_url(
        self,
        usr: str,
        password: str,
        company_key: str,
        base_url: str | None = None,
        salt: int | None = None,
    ) -> str:
        """Build the signed ``authSource`` URL.

        Args:
            usr: Account name (email).
            password: Plain password; only its SHA-1 enters the signature.
            company_key: Company key of the white-label portal.
            base_url: API base URL; the builder default when omitted.
            salt: Fixed salt; a fresh one is generated when omitted.

        Returns:
            Fully qualified login URL.
        """
        if salt is None:
            salt = self.next_salt()

        params = {
            "action": LOGIN_ACTION,
            "usr": usr,
            "source": DEFAULT_SOURCE,
            "company-key": company_key,
        }
        sign = sha1_hex(f"{salt}{sha1_hex(password)}&{transfer_encode(params)}")
        query = transfer_encode({"sign": sign, "salt": salt, **params})
        return f"{_with_trailing_slash(base_url or self._base_url)}?{query}"
