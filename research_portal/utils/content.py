"""Derived fields for blog posts and application forms."""

from __future__ import annotations

import math
import re
from typing import Any, List, Optional

import markdown
import nh3
from markupsafe import Markup

WORDS_PER_MINUTE = 200
EXCERPT_LENGTH = 200
MAX_GPA = 10.0
MARKDOWN_EXTENSIONS = ('extra', 'sane_lists')

_MARKDOWN_PATTERNS = (
    (re.compile(r'#{1,6}\s+'), ''),
    (re.compile(r'\*\*(.+?)\*\*'), r'\1'),
    (re.compile(r'\*(.+?)\*'), r'\1'),
    (re.compile(r'`(.+?)`'), r'\1'),
    (re.compile(r'\[(.+?)\]\(.+?\)'), r'\1'),
    (re.compile(r'\n+'), ' '),
)


def read_time(content: Optional[str]) -> int:
    """Return the estimated minutes needed to read ``content``."""

    words = (content or '').split()
    if not words:
        return 0
    return max(1, math.ceil(len(words) / WORDS_PER_MINUTE))


def generate_excerpt(content: Optional[str], limit: int = EXCERPT_LENGTH) -> str:
    """Strip markdown from ``content`` and cut it down to ``limit`` characters."""

    plain = content or ''
    for pattern, replacement in _MARKDOWN_PATTERNS:
        plain = pattern.sub(replacement, plain)
    plain = plain.strip()
    if len(plain) > limit:
        return plain[:limit] + '...'
    return plain


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma separated form value into trimmed, non-empty items."""

    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


def is_google_drive_link(url: Optional[str]) -> bool:
    """Empty links are allowed; anything else must point at Drive or Docs."""

    if not url:
        return True
    return 'drive.google.com' in url or 'docs.google.com' in url


def render_markdown(content: Optional[str]) -> Markup:
    """Render blog Markdown to HTML, keeping only nh3's safe tag set."""

    html = markdown.markdown(content or '', extensions=list(MARKDOWN_EXTENSIONS))
    return Markup(nh3.clean(html))


def parse_gpa(value: Any) -> float:
    """Return ``value`` as a GPA on the 10 point scale or raise ``ValueError``."""

    try:
        gpa = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError('GPA must be a number') from exc
    if not math.isfinite(gpa) or not 0 <= gpa <= MAX_GPA:
        raise ValueError(f'GPA must be between 0 and {MAX_GPA:g}')
    return gpa
