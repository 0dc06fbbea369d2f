"""Validation of repository URLs declared in a manifest."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from .errors import InvalidUrl

MAX_URL_LENGTH = 2048

SUPPORTED_SCHEMES = ("https", "http", "ssh", "git", "file", "svn", "svn+ssh")

# Characters that never appear in a legitimate clone URL but do appear in
# shell or markup injection attempts.
_FORBIDDEN_CHARS = set("<>\"'`{}")

_SCP_LIKE = re.compile(r"^(?:(?P<user>[A-Za-z0-9._-]+)@)?(?P<host>[A-Za-z0-9.-]+):(?P<path>[^/].*)$")


@dataclass(frozen=True)
class VcsUrl:
    """A parsed and validated repository URL."""

    url: str
    scheme: str
    host: str
    path: str

    @property
    def is_local(self) -> bool:
        return self.scheme == "file"

    @property
    def canonical(self) -> str:
        """Host and path with scheme, user and ``.git`` suffix removed.

        Two URLs pointing at the same repository over ssh and https share
        the same canonical form.
        """
        path = self.path.strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        if self.is_local:
            return f"/{path}"
        return f"{self.host.lower()}/{path}"

    def __str__(self) -> str:
        return self.url

    @classmethod
    def parse(cls, raw: str) -> VcsUrl:
        """Parse ``raw`` and raise InvalidUrl when it is not acceptable."""
        url = (raw or "").strip()
        _check_characters(url)

        if url.startswith("/"):
            return cls(url=url, scheme="file", host="", path=_check_path(url, url))

        if "://" not in url:
            match = _SCP_LIKE.match(url)
            if not match:
                raise InvalidUrl(f"Invalid URL format: {url}", url=url)
            return cls(
                url=url,
                scheme="ssh",
                host=match.group("host"),
                path=_check_path(match.group("path"), url),
            )

        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise InvalidUrl(f"Unsupported URL scheme: {scheme}", url=url)
        if scheme == "file":
            return cls(url=url, scheme="file", host="", path=_check_path(parts.path, url))
        if not parts.hostname:
            raise InvalidUrl("Missing host in URL", url=url)
        return cls(url=url, scheme=scheme, host=parts.hostname, path=_check_path(parts.path, url))


def _check_characters(url: str) -> None:
    if not url:
        raise InvalidUrl("Empty URL")
    if len(url) > MAX_URL_LENGTH:
        raise InvalidUrl(f"URL longer than {MAX_URL_LENGTH} characters", url=url[:80])
    for ch in url:
        if ch.isspace() or not ch.isprintable():
            raise InvalidUrl(f"Invalid character in URL: {ch!r}", url=url)
        if ch in _FORBIDDEN_CHARS:
            raise InvalidUrl(f"Suspicious character in URL: {ch!r}", url=url)


def _check_path(path: str, url: str) -> str:
    stripped = path.strip("/")
    if not stripped:
        raise InvalidUrl("Missing repository path", url=url)
    if ".." in stripped.split("/"):
        raise InvalidUrl("Path traversal in URL", url=url)
    return path


def validate_url(raw: str) -> str:
    """Return ``raw`` stripped if it is a valid repository URL."""
    return VcsUrl.parse(raw).url
