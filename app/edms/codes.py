"""
Sequential code generators.

Pure functions; callers hold the row lock that serializes the sequence.
"""
from __future__ import annotations

import re
from collections.abc import Iterable

ALPHABETICAL = "ALPHABETICAL"
NUMERIC = "NUMERIC"
REVISION_SCHEMES = (ALPHABETICAL, NUMERIC)

TRANSMITTAL_PREFIX = "TR-"
_TRANSMITTAL_RE = re.compile(r"^TR-(\d+)$")
_ALPHA_RE = re.compile(r"^[A-Z]+$")
_NUMERIC_RE = re.compile(r"^\d+$")


def is_alphabetical_code(code: str) -> bool:
    return bool(_ALPHA_RE.fullmatch(code or ""))


def is_numeric_code(code: str) -> bool:
    return bool(_NUMERIC_RE.fullmatch(code or ""))


def code_matches_scheme(code: str, scheme: str) -> bool:
    if scheme == NUMERIC:
        return is_numeric_code(code)
    return is_alphabetical_code(code)


def next_revision_code(current: str) -> str:
    """
    Increment a revision code.

    - letters, with carry: "A" -> "B", "Z" -> "AA", "AZ" -> "BA"
    - integers: "0" -> "1", "9" -> "10"
    - empty: "A"
    """
    cur = (current or "").strip().upper()
    if not cur:
        return "A"

    if is_numeric_code(cur):
        return str(int(cur) + 1)

    if not is_alphabetical_code(cur):
        raise ValueError(f"Unsupported revision format: {current!r}")

    chars = list(cur)
    i = len(chars) - 1
    while i >= 0:
        if chars[i] == "Z":
            chars[i] = "A"
            i -= 1
            continue
        chars[i] = chr(ord(chars[i]) + 1)
        return "".join(chars)
    return "A" + "".join(chars)


def first_revision_code(scheme: str) -> str:
    return "0" if scheme == NUMERIC else "A"


def next_revision_code_for_scheme(scheme: str, latest: str | None) -> str:
    """
    Next code in `scheme` after `latest`, the highest code already issued under it.
    Starts the scheme when there is none (or `latest` belongs to the other scheme).
    """
    if not latest or not code_matches_scheme(latest.strip().upper(), scheme):
        return first_revision_code(scheme)
    return next_revision_code(latest)


def revision_code_key(code: str) -> tuple[int, int, str]:
    """Sort key in issue order: numbers numerically, letters by length then alphabet."""
    cur = (code or "").strip().upper()
    if is_numeric_code(cur):
        return (0, int(cur), "")
    return (1, len(cur), cur)


def highest_code_in_scheme(codes: Iterable[str], scheme: str) -> str | None:
    """Highest of `codes` issued under `scheme`, or None when the scheme was never used."""
    matching = [c.strip().upper() for c in codes if code_matches_scheme((c or "").strip().upper(), scheme)]
    if not matching:
        return None
    return max(matching, key=revision_code_key)


def parse_transmittal_number(code: str | None) -> int | None:
    m = _TRANSMITTAL_RE.match((code or "").strip())
    return int(m.group(1)) if m else None


def format_transmittal_code(number: int) -> str:
    return f"{TRANSMITTAL_PREFIX}{number:03d}"


def next_transmittal_code(last_code: str | None = None) -> str:
    """
    "TR-001" when there is no prior code, otherwise the numeric suffix + 1.
    A last code that does not match TR-<digits> restarts at 1.
    """
    n = parse_transmittal_number(last_code)
    return format_transmittal_code((n or 0) + 1)
