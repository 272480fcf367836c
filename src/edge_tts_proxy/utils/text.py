"""
Text Cleaning Before Synthesis.

Chat assistants hand us markdown, links, emoji and citation markers that a
speech engine would read out literally. `normalize()` strips them in a
fixed order; each stage can be switched off through CleaningConfig.

Stage Order (do not reorder - later stages rely on earlier ones):
    1. URLs            http(s)://... tokens
    2. Markdown        images, links (text kept), bold/italic, code, headings
    3. Keywords        user-supplied comma-separated literals
    4. Emoji           emoji-presentation codepoints
    5. Citations       [12] and 【12】 reference markers
    6. Whitespace      line breaks deleted or preserved, runs collapsed, trimmed

Example:
    >>> from edge_tts_proxy.core.config import CleaningConfig
    >>> normalize("**Hi** see https://x.co [2] 😊", CleaningConfig())
    'Hi see'
"""
from __future__ import annotations

import re
from typing import List, Optional, Pattern

from edge_tts_proxy.core.config import CleaningConfig
from edge_tts_proxy.core.logging import debug, get_logger

_LOG = get_logger("edge-tts-proxy.text")

_URL_RE = re.compile(r"https?://[^\s]+")

# (pattern, replacement) pairs applied in sequence
_MARKDOWN_RULES = [
    (re.compile(r"!\[.*?\]\(.*?\)"), ""),          # images
    (re.compile(r"\[(.*?)\]\(.*?\)"), r"\1"),      # links -> link text
    (re.compile(r"(\*\*|__)(.*?)\1"), r"\2"),      # bold
    (re.compile(r"(\*|_)(.*?)\1"), r"\2"),         # italic
    (re.compile(r"`{1,3}(.*?)`{1,3}"), r"\1"),     # inline / fenced code markers
    (re.compile(r"#{1,6}\s"), ""),                 # heading markers
]

# Codepoints whose default presentation is emoji. The supplementary-plane
# pictograph blocks are taken whole; the BMP entries are the individual
# symbols that render as emoji without a variation selector.
_EMOJI_RE = re.compile(
    "["
    "\U0001F004\U0001F0CF\U0001F18E\U0001F191-\U0001F19A"
    "\U0001F1E6-\U0001F1FF"          # regional indicators (flags)
    "\U0001F201\U0001F21A\U0001F22F\U0001F232-\U0001F236\U0001F238-\U0001F23A\U0001F250\U0001F251"
    "\U0001F300-\U0001F5FF"          # symbols & pictographs
    "\U0001F600-\U0001F64F"          # emoticons
    "\U0001F680-\U0001F6FF"          # transport & map
    "\U0001F7E0-\U0001F7EB\U0001F7F0"
    "\U0001F90C-\U0001F9FF"          # supplemental symbols & pictographs
    "\U0001FA70-\U0001FAFF"          # symbols & pictographs extended-A
    "⌚⌛⏩-⏬⏰⏳◽◾"
    "☔☕♈-♓♿⚓⚡⚪⚫⚽⚾"
    "⛄⛅⛎⛔⛪⛲⛳⛵⛺⛽"
    "✅✊✋✨❌❎❓-❕❗➕-➗"
    "➰➿⬛⬜⭐⭕"
    "]"
)

# Reference markers only: 1-3 digits inside ASCII or full-width brackets.
# Longer numbers and bare digits ("in 2024", "[12345]") are left alone.
_CITATION_RE = re.compile(r"\[\d{1,3}\]|【\d{1,3}】")

_LINE_BREAK_RE = re.compile(r"\r\n|\n|\r")
_ANY_WS_RE = re.compile(r"\s+")
_HORIZONTAL_WS_RE = re.compile(r"[ \t]+")


def split_keywords(raw: str) -> List[str]:
    """Comma-split, trim and drop empty entries."""
    return [k.strip() for k in raw.split(",") if k.strip()]


def build_keyword_pattern(raw: str) -> Optional[Pattern[str]]:
    """
    Compile the custom keyword list into one alternation.

    Every keyword is escaped, so user input such as "a.b" or "(x|y)" only
    ever matches itself.

    Returns:
        Compiled pattern, or None for an empty list.
    """
    keywords = split_keywords(raw)
    if not keywords:
        return None
    return re.compile("|".join(re.escape(k) for k in keywords))


def remove_urls(text: str) -> str:
    return _URL_RE.sub("", text)


def strip_markdown(text: str) -> str:
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text


def remove_emoji(text: str) -> str:
    return _EMOJI_RE.sub("", text)


def remove_citations(text: str) -> str:
    return _CITATION_RE.sub("", text)


def normalize_whitespace(text: str, remove_line_breaks: bool) -> str:
    """
    Collapse whitespace and trim.

    With `remove_line_breaks` the breaks are deleted outright (not turned
    into spaces, which suits CJK text) before every whitespace run becomes
    one space. Without it only spaces and tabs collapse.
    """
    if remove_line_breaks:
        text = _LINE_BREAK_RE.sub("", text)
        return _ANY_WS_RE.sub(" ", text).strip()
    return _HORIZONTAL_WS_RE.sub(" ", text).strip()


def normalize(text: str, cleaning: CleaningConfig) -> str:
    """
    Run the cleaning pipeline.

    Args:
        text: Raw request text.
        cleaning: Stage switches and keyword list for this request.

    Returns:
        Cleaned text. May be empty; the chunker then yields no chunks.
    """
    original_len = len(text)

    if cleaning.remove_urls:
        text = remove_urls(text)
    if cleaning.remove_markdown:
        text = strip_markdown(text)

    keyword_re = build_keyword_pattern(cleaning.custom_keywords)
    if keyword_re is not None:
        text = keyword_re.sub("", text)

    if cleaning.remove_emoji:
        text = remove_emoji(text)
    if cleaning.remove_citation_numbers:
        text = remove_citations(text)

    text = normalize_whitespace(text, cleaning.remove_line_breaks)

    debug(_LOG, "normalized", chars_in=original_len, chars_out=len(text))
    return text
