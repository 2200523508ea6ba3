from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

from vitals.models.db_models import CommentRow

MAINTAINER_ASSOCIATIONS = {"OWNER", "MEMBER", "COLLABORATOR"}

_ME_TOO_PATTERNS = [
    re.compile(r"^\+1\s*$"),
    re.compile(r"^me\s+too\s*$", re.IGNORECASE),
    re.compile(r"^same\s+here\s*$", re.IGNORECASE),
    re.compile(r"^also\s+need\s+(this|it)\s*$", re.IGNORECASE),
    re.compile(r"^any\s+update", re.IGNORECASE),
    re.compile(r"^still\s+an\s+issue", re.IGNORECASE),
    re.compile(r"^bump\s*$", re.IGNORECASE),
    re.compile(r"^\U0001F44D\s*$"),
    re.compile(r"^:thumbsup:\s*$", re.IGNORECASE),
    re.compile(r"^(facing|having)\s+the\s+same\s+(issue|problem)", re.IGNORECASE),
]

# Longer comments usually carry real content even when they open with "+1".
_ME_TOO_MAX_LENGTH = 50


def is_me_too(body: str | None) -> bool:
    text = (body or "").strip()
    if not text or len(text) >= _ME_TOO_MAX_LENGTH:
        return False
    return any(p.search(text) for p in _ME_TOO_PATTERNS)


def count_me_too(comments: Iterable[CommentRow]) -> int:
    return sum(1 for c in comments if is_me_too(c.body))


def is_maintainer(
    login: str | None, association: str | None, maintainer_logins: Iterable[str] = ()
) -> bool:
    if login and login in set(maintainer_logins):
        return True
    return (association or "").upper() in MAINTAINER_ASSOCIATIONS


def has_maintainer_response(
    comments: Iterable[CommentRow], maintainer_logins: Iterable[str] = ()
) -> bool:
    logins = set(maintainer_logins)
    return any(is_maintainer(c.author_login, c.author_association, logins) for c in comments)


def label_matches(labels: Iterable[str], keywords: Iterable[str]) -> bool:
    """True when any label contains any keyword, case-insensitively."""
    keys = [k.lower() for k in keywords if k]
    return any(k in label.lower() for label in labels for k in keys)


def content_hash(title: str, body: str | None, comments: Iterable[CommentRow]) -> str:
    """Stable digest of the text sentiment analysis looks at."""
    h = hashlib.sha256()
    h.update((title or "").encode("utf-8"))
    h.update(b"\x00")
    h.update((body or "").encode("utf-8"))
    for c in comments:
        h.update(b"\x00")
        h.update((c.body or "").encode("utf-8"))
    return h.hexdigest()
