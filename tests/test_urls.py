"""URL validation tests."""

from __future__ import annotations

import pytest

from wmgr.errors import InvalidUrl
from wmgr.urls import VcsUrl, validate_url


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/org/repo.git",
        "ssh://git@example.com:2222/org/repo",
        "git@github.com:org/repo.git",
        "git://example.com/repo",
        "file:///srv/git/repo.git",
        "/srv/git/repo.git",
    ],
)
def test_accepts_common_repository_urls(url: str) -> None:
    assert validate_url(url) == url


@pytest.mark.parametrize(
    "url",
    [
        "",
        "   ",
        "ftp://example.com/repo.git",
        "https://example.com/",
        "https://example.com/org/repo.git; rm -rf /",
        "https://example.com/<script>",
        "https://example.com/../etc/passwd",
        "not a url",
        "https://example.com/" + "a" * 3000,
    ],
)
def test_rejects_invalid_urls(url: str) -> None:
    with pytest.raises(InvalidUrl):
        validate_url(url)


def test_scp_and_https_share_canonical_form() -> None:
    ssh = VcsUrl.parse("git@github.com:org/repo.git")
    https = VcsUrl.parse("https://github.com/org/repo")
    assert ssh.host == "github.com"
    assert ssh.canonical == https.canonical == "github.com/org/repo"


def test_local_paths_are_file_urls() -> None:
    parsed = VcsUrl.parse("/srv/git/repo.git")
    assert parsed.is_local
    assert parsed.canonical == "/srv/git/repo"
