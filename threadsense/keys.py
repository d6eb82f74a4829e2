"""Canonical identity keys for tracker issues and pull requests."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from threadsense.models import IdentityKey

_HASH_REF_RE = re.compile(r"^#(\d+)$")
_BARE_KEY_RE = re.compile(r"^([^/\s#]+)/([^/\s#]+)/(\d+)$")
_OWNER_REPO_RE = re.compile(r"^([^/\s#]+)/([^/\s#]+)$")
_ITEM_SEGMENTS = {"issues", "issue", "pull", "pulls"}
_PULL_SEGMENTS = {"pull", "pulls"}


class InvalidReferenceError(ValueError):
    """Raised when a reference cannot be turned into an identity key."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"Invalid reference {reference!r}: {reason}")
        self.reference = reference
        self.reason = reason


def _identity(org: str, repo: str, number: int) -> IdentityKey:
    # GitHub owner and repository names are case-insensitive.
    return IdentityKey(org=org.lower(), repo=repo.lower(), number=number)


def _parse_number(raw: str, reference: str) -> int:
    if not raw.isdigit():
        raise InvalidReferenceError(reference, f"expected an issue number, got {raw!r}")
    return int(raw)


def _split_ambient_repo(ambient_repo: str | None, reference: str) -> tuple[str, str]:
    match = _OWNER_REPO_RE.match((ambient_repo or "").strip())
    if not match:
        raise InvalidReferenceError(reference, "a bare mention needs an ambient owner/repo")
    return match.group(1), match.group(2)


def _key_from_path(segments: list[str], reference: str, ambient_number: int | None) -> IdentityKey:
    # REST API URLs carry a leading "repos" segment.
    if segments and segments[0] == "repos" and len(segments) >= 3:
        segments = segments[1:]

    if len(segments) == 2:
        if ambient_number is None:
            raise InvalidReferenceError(reference, "repository URL without an issue number")
        return _identity(segments[0], segments[1], ambient_number)

    if len(segments) == 4 and segments[2] in _ITEM_SEGMENTS:
        return _identity(segments[0], segments[1], _parse_number(segments[3], reference))

    # Review comments and PR sub-pages: the PR number sits at index 3, never the trailing id.
    if len(segments) > 4 and segments[2] in _PULL_SEGMENTS:
        return _identity(segments[0], segments[1], _parse_number(segments[3], reference))

    raise InvalidReferenceError(reference, f"unsupported path shape with {len(segments)} segments")


def parse_key(
    reference: str,
    *,
    ambient_repo: str | None = None,
    ambient_number: int | None = None,
) -> IdentityKey:
    """Parse a URL, ``org/repo/N`` key or ``#N`` mention into an IdentityKey."""
    raw = (reference or "").strip()
    if not raw:
        raise InvalidReferenceError(reference, "empty reference")

    hash_match = _HASH_REF_RE.match(raw)
    if hash_match:
        org, repo = _split_ambient_repo(ambient_repo, reference)
        return _identity(org, repo, int(hash_match.group(1)))

    if "://" not in raw:
        bare = raw.split("#", 1)[0]
        match = _BARE_KEY_RE.match(bare)
        if match:
            return _identity(match.group(1), match.group(2), int(match.group(3)))
        match = _OWNER_REPO_RE.match(bare)
        if match and ambient_number is not None:
            return _identity(match.group(1), match.group(2), ambient_number)
        raise InvalidReferenceError(reference, "not a URL, key or #number mention")

    parts = urlsplit(raw)
    if not parts.netloc:
        raise InvalidReferenceError(reference, "URL has no host")
    segments = [segment for segment in parts.path.split("/") if segment]
    return _key_from_path(segments, reference, ambient_number)


def normalize_reference(
    reference: str,
    *,
    ambient_repo: str | None = None,
    ambient_number: int | None = None,
) -> str:
    return parse_key(reference, ambient_repo=ambient_repo, ambient_number=ambient_number).canonical


def split_key(key: str) -> tuple[str, str, int]:
    parsed = parse_key(key)
    return parsed.org, parsed.repo, parsed.number
