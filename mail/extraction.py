"""Parsing helpers for IMAP responses and verification-code extraction."""

from __future__ import annotations
from tracking import t

import quopri
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional, Sequence, Union

from bs4 import BeautifulSoup

from infrastructure.constants import (
    DENIED_CODES,
    FALLBACK_CODE_PATTERN,
    VERIFICATION_CODE_PATTERNS,
)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_CONTEXT_PATTERNS = [re.compile(p, re.IGNORECASE) for p in VERIFICATION_CODE_PATTERNS]
_FALLBACK_PATTERN = re.compile(FALLBACK_CODE_PATTERN)
_QP_MARKERS = re.compile(r"=\r?\n|=[0-9A-F]{2}")
_HTML_MARKERS = re.compile(r"<(html|body|div|p|br|table|span)\b", re.IGNORECASE)


@dataclass(frozen=True)
class VerificationCode:
    """A 4-digit code and when it was discovered in the inbox."""

    value: str
    discovered_at: datetime


def format_imap_date(moment: datetime) -> str:
    """``SINCE`` date in the ``d-Mon-yyyy`` form, independent of locale."""
    t('mail.extraction.format_imap_date')
    return f"{moment.day}-{_MONTHS[moment.month - 1]}-{moment.year}"


def quote_imap_string(value: str) -> str:
    t('mail.extraction.quote_imap_string')
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_search_ids(lines: Iterable[str]) -> List[int]:
    """Pull message ids out of the untagged ``* SEARCH`` line(s)."""
    t('mail.extraction.parse_search_ids')

    ids: List[int] = []
    for line in lines:
        parts = line.strip().split()
        if len(parts) < 2 or parts[0] != "*" or parts[1].upper() != "SEARCH":
            continue
        for token in parts[2:]:
            if token.isdigit():
                ids.append(int(token))
    return ids


def decode_body(raw: Union[bytes, str]) -> str:
    """Turn a fetched body into plain text.

    Quoted-printable soft breaks and escapes are decoded, HTML is flattened
    to its visible text, and whitespace is collapsed.
    """
    t('mail.extraction.decode_body')

    data = raw.encode("utf-8", errors="replace") if isinstance(raw, str) else raw
    if _QP_MARKERS.search(data.decode("ascii", errors="ignore")):
        data = quopri.decodestring(data)
    text = data.decode("utf-8", errors="replace")

    if _HTML_MARKERS.search(text):
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def extract_codes(text: str, denylist: Iterable[str] = DENIED_CODES) -> List[str]:
    """Return sorted unique 4-digit codes from ``text``.

    Contextual patterns win; the bare 4-digit fallback only applies when none
    of them match. Placeholder codes in ``denylist`` are dropped.
    """
    t('mail.extraction.extract_codes')

    denied = set(denylist)
    found: List[str] = []
    for pattern in _CONTEXT_PATTERNS:
        found.extend(pattern.findall(text))

    if not found:
        found = _FALLBACK_PATTERN.findall(text)

    return sorted({code for code in found if code not in denied})


def _header_value(lines: Sequence[str], name: str) -> Optional[str]:
    prefix = f"{name.lower()}:"
    for index, line in enumerate(lines):
        if line.lower().startswith(prefix):
            value = line[len(prefix):].strip()
            # Folded continuation lines start with whitespace.
            for follow in lines[index + 1:]:
                if follow[:1] in {" ", "\t"}:
                    value += " " + follow.strip()
                else:
                    break
            return value
    return None


def parse_date_header(header_block: str) -> Optional[datetime]:
    t('mail.extraction.parse_date_header')
    value = _header_value(header_block.splitlines(), "Date")
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_subject_header(header_block: str) -> Optional[str]:
    t('mail.extraction.parse_subject_header')
    value = _header_value(header_block.splitlines(), "Subject")
    if value is None:
        return None
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError):
        return value
