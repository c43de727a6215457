"""Lexical filters over free text: wordlist profanity, link extraction and
a denylist of markup-injection and scam patterns.

Everything here is a pure function of its input, except that the wordlist
lives in a :class:`WordlistFilter` built once at startup and shared by
reference afterwards.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import urlsplit

from better_profanity import Profanity

LINK_PLACEHOLDER = "[LINK REMOVED]"
SANITIZED_MAX_LENGTH = 1000
URL_MAX_LENGTH = 2083
URL_SCHEMES = {"http", "https", "ftp"}

LINK_CANDIDATE_PATTERN = re.compile(
    r"(https?://\S+)|(www\.\S+)|(\S+\.[a-z]{2,}(?:/\S*)?)",
    re.IGNORECASE,
)

_HOST_LABEL = re.compile(r"^(?!-)(?:[^\W_]|-){1,63}(?<!-)$")
_TLD = re.compile(r"^(?:[^\W\d_]{2,63}|xn--[a-z0-9-]{1,59})$", re.IGNORECASE)
_IPV4 = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")

SUSPICIOUS_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"<script[^>]*>.*?</script>",
        r"<iframe[^>]*>.*?</iframe>",
        r"javascript:",
        r"data:text/html",
        r"vbscript:",
        r"on\w+\s*=",
        r"eval\s*\(",
        r"document\.write",
        r"window\.location",
        r"\bphishing\b",
        r"\bscam\b",
        r"urgent.*click.*here",
        r"verify.*account.*immediately",
        r"suspended.*account",
        r"click.*here.*now",
        r"limited.*time.*offer",
        r"\$\d+.*per.*day",
        r"work.*from.*home.*\$\d+",
        r"crypto.*investment.*guaranteed",
        r"bitcoin.*double.*money",
        r"\b(?:viagra|cialis|pharmacy|meds|pills)\b",
        r"\b(?:casino|poker|gambling|lottery|jackpot)\b",
    )
]

_WHITESPACE_RUN = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F-\u009F]")
_ALLOWED_CATEGORY_PREFIXES = ("L", "N", "P", "S", "M")
# str.isspace() also accepts the C0/C1 separators U+001C-U+001F and U+0085; those stay invalid
_CONTROL_WHITESPACE = frozenset("\t\n\x0b\x0c\r")
_FORMAT_WHITESPACE = frozenset("\ufeff")


@dataclass(frozen=True)
class WordlistFilter:
    """Token-level profanity detector.

    Wraps a ``better_profanity`` engine loaded with the stock wordlist plus
    ``extra_terms``. Build one per process and pass it around; nothing
    mutates the engine after construction.
    """

    extra_terms: tuple[str, ...] = ()
    _engine: Profanity = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        engine = Profanity()
        engine.load_censor_words()
        terms = [term.strip().lower() for term in self.extra_terms if term.strip()]
        if terms:
            engine.add_censor_words(terms)
        object.__setattr__(self, "_engine", engine)

    def is_profane(self, text: str) -> bool:
        if not text:
            return False
        return self._engine.contains_profanity(text)

    def clean(self, text: str) -> str:
        if not text:
            return text
        return self._engine.censor(text)


def build_wordlist_filter(extra_terms: Iterable[str] = ()) -> WordlistFilter:
    return WordlistFilter(extra_terms=tuple(extra_terms))


def is_profane(text: str, word_filter: WordlistFilter) -> bool:
    return word_filter.is_profane(text)


def is_well_formed_url(candidate: str) -> bool:
    """Structural URL check: known scheme, dotted host with a real TLD (or an
    IPv4 literal), optional valid port, no whitespace."""
    if not candidate or len(candidate) > URL_MAX_LENGTH:
        return False
    if any(ch.isspace() for ch in candidate):
        return False

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return False

    if port == 0 or parts.scheme.lower() not in URL_SCHEMES:
        return False

    host = parts.hostname
    if not host:
        return False

    if _IPV4.match(host):
        return all(int(octet) <= 255 for octet in host.split("."))

    labels = host.split(".")
    if len(labels) < 2 or len(host) > 253:
        return False
    if not _TLD.match(labels[-1]):
        return False
    return all(_HOST_LABEL.match(label) for label in labels)


def extract_links(text: str) -> list[str]:
    if not text:
        return []

    links = []
    for match in LINK_CANDIDATE_PATTERN.finditer(text):
        candidate = match.group(0)
        if candidate.lower().startswith(("http://", "https://")):
            url = candidate
        else:
            url = f"http://{candidate}"
        if is_well_formed_url(url):
            links.append(candidate)
    return links


def has_links(text: str) -> bool:
    return bool(extract_links(text))


def remove_links(text: str) -> str:
    cleaned = text
    for link in extract_links(text):
        cleaned = cleaned.replace(link, LINK_PLACEHOLDER, 1)
    return cleaned


def has_suspicious_pattern(text: str) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for pattern in SUSPICIOUS_PATTERNS)


def is_allowed_character(ch: str) -> bool:
    if ch == "_" or ch in _CONTROL_WHITESPACE or ch in _FORMAT_WHITESPACE:
        return True
    category = unicodedata.category(ch)
    if ch.isspace():
        return category != "Cc"
    return category.startswith(_ALLOWED_CATEGORY_PREFIXES)


def contains_only_valid_characters(text: str) -> bool:
    return bool(text) and all(is_allowed_character(ch) for ch in text)


def sanitize_content(text: str) -> str:
    collapsed = _WHITESPACE_RUN.sub(" ", text.strip())
    return _CONTROL_CHARS.sub("", collapsed)[:SANITIZED_MAX_LENGTH]
