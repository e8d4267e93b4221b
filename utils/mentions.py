"""Extract mentioned email addresses from comment text."""

from __future__ import annotations

import re

MENTION_PATTERN = re.compile(
    r"@(?:([\w.+-]+@[\w.-]+\.[\w-]+)|[^<@\n]*<([\w.+-]+@[\w.-]+\.[\w-]+)>)"
)


def parse_mentions(body: str | None) -> list[str]:
    """Return lowercase, de-duplicated emails written as ``@a@b.c`` or ``@Name <a@b.c>``."""

    emails: list[str] = []
    for match in MENTION_PATTERN.finditer(body or ""):
        email = (match.group(1) or match.group(2) or "").lower()
        if email and email not in emails:
            emails.append(email)
    return emails
