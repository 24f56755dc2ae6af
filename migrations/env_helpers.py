"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
DATABASE_URL may be a URL (postgres://, postgresql://) or a libpq
key=value DSN, the same forms psycopg2 accepts at runtime.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse `key=value` pairs; values may be single-quoted with \\ escapes."""
    tokens: dict[str, str] = {}
    i, n = 0, len(dsn)
    while i < n:
        while i < n and dsn[i].isspace():
            i += 1
        eq = dsn.find("=", i)
        if i >= n or eq == -1:
            break
        key = dsn[i:eq].strip()
        i = eq + 1
        if i < n and dsn[i] == "'":
            i += 1
            chars: list[str] = []
            while i < n and dsn[i] != "'":
                if dsn[i] == "\\" and i + 1 < n:
                    i += 1
                chars.append(dsn[i])
                i += 1
            i += 1  # closing quote
            tokens[key] = "".join(chars)
        else:
            end = i
            while end < n and not dsn[end].isspace():
                end += 1
            tokens[key] = dsn[i:end]
            i = end
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and goes in the
    query string; anything else becomes host:port.
    """
    tokens = _parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"


def _inject_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break
    password = os.environ.get("DB_PASSWORD", "")
    return _inject_password(url, password) if password else url
