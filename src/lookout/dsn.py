"""DSN parsing and endpoint/auth derivation.

A DSN looks like:

    {scheme}://{public_key}[:{secret_key}]@{host}[:{port}][/{path}]/{project_id}
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from .errors import DsnError


# Ingestion protocol version sent in the auth header
PROTOCOL_VERSION = 7


@dataclass(frozen=True)
class Dsn:
    """Parsed DSN."""
    original: str
    scheme: str
    host: str
    port: int | None
    path: str  # base path before the project ID, without trailing slash
    project_id: str
    public_key: str
    secret_key: str | None = None

    @classmethod
    def parse(cls, dsn: str) -> Dsn:
        if not isinstance(dsn, str) or not dsn.strip():
            raise DsnError(f"Expected a DSN string, got: {dsn!r}")

        parts = urlsplit(dsn.strip())
        if parts.scheme not in ("http", "https"):
            raise DsnError(f"Unsupported DSN scheme {parts.scheme!r} in {dsn!r}")
        if parts.query:
            raise DsnError(f"DSNs with query parameters are not supported: {dsn!r}")
        if not parts.username:
            raise DsnError(f"Missing public key in DSN: {dsn!r}")
        if not parts.hostname:
            raise DsnError(f"Missing host in DSN: {dsn!r}")

        base_path, _, project_id = parts.path.rstrip("/").rpartition("/")
        if not (project_id.isascii() and project_id.isdecimal()):
            raise DsnError(f"Expected the DSN path to end with an integer project ID: {dsn!r}")

        try:
            port = parts.port
        except ValueError as e:
            raise DsnError(f"Invalid port in DSN {dsn!r}: {e}") from e

        return cls(
            original=dsn,
            scheme=parts.scheme,
            host=parts.hostname,
            port=port,
            path=base_path,
            project_id=project_id,
            public_key=parts.username,
            secret_key=parts.password or None,
        )

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}" if self.port else host

    def _api_url(self, endpoint: str) -> str:
        path = f"{self.path}/api/{self.project_id}/{endpoint}/"
        return urlunsplit((self.scheme, self.netloc, path, "", ""))

    @property
    def envelope_url(self) -> str:
        return self._api_url("envelope")

    @property
    def store_url(self) -> str:
        """Legacy single-event endpoint."""
        return self._api_url("store")

    def auth_header(self, client: str) -> str:
        """Value of the `X-Sentry-Auth` request header."""
        fields = [
            ("sentry_version", PROTOCOL_VERSION),
            ("sentry_client", client),
            ("sentry_key", self.public_key),
            ("sentry_secret", self.secret_key),
        ]
        return "Sentry " + ", ".join(f"{name}={value}" for name, value in fields if value is not None)

    def __str__(self) -> str:
        # Never print the secret key
        return urlunsplit((self.scheme, f"{self.public_key}@{self.netloc}",
                           f"{self.path}/{self.project_id}", "", ""))
