"""Meeting-title normalization.

Organizers and mail clients decorate titles differently ("FW:", "Acme Corp:",
"[Confidential]"). Matching works on the core subject left after stripping
that noise.
"""

from __future__ import annotations

import re

# One leading "[tag]" or one leading "word:" prefix.
_LEADING_DECORATION = re.compile(r"^(?:\[[^\]]*\]|\w+:)\s*")


def normalize_subject(raw: str | None) -> str:
    """Return the comparable core of a meeting title.

    Everything up to and including the first colon is dropped, then one
    leading bracketed tag or ``word:`` prefix is stripped from the remainder.
    The result is trimmed but keeps its case; callers compare
    case-insensitively.
    """
    if raw is None or not raw.strip():
        return ""

    _, colon, remainder = raw.partition(":")
    text = remainder if colon else raw
    text = _LEADING_DECORATION.sub("", text.strip(), count=1)
    return text.strip()
