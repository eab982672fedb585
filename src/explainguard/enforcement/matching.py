"""Text and URL matching without regular expressions.

Every check is a plain case-insensitive substring, prefix or suffix test.
"""
from __future__ import annotations

from typing import Any, Iterable
from urllib.parse import urlsplit


def parse_list(value: Any, *, separators: str = "\n,") -> tuple[str, ...]:
    """Normalize a configured list.

    Accepts a list/tuple/set of strings or a single string split on any of
    `separators`. Items are trimmed; empty items are dropped. Anything else
    yields an empty tuple.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        parts = [value]
        for sep in separators:
            parts = [p for chunk in parts for p in chunk.split(sep)]
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = [p for p in value if isinstance(p, str)]
    else:
        return ()
    return tuple(p.strip() for p in parts if p.strip())


def contains_one(text: str, keywords: Iterable[str]) -> bool:
    keywords = list(keywords)
    if not keywords:
        return True
    lowered = (text or "").lower()
    return any(k.lower() in lowered for k in keywords)


def contains_all(text: str, keywords: Iterable[str]) -> bool:
    keywords = list(keywords)
    if not keywords:
        return True
    lowered = (text or "").lower()
    return all(k.lower() in lowered for k in keywords)


def starts_with_one(text: str, keywords: Iterable[str]) -> bool:
    keywords = list(keywords)
    if not keywords:
        return True
    lowered = (text or "").strip().lower()
    return any(lowered.startswith(k.lower()) for k in keywords)


def ends_with_one(text: str, keywords: Iterable[str]) -> bool:
    keywords = list(keywords)
    if not keywords:
        return True
    lowered = (text or "").strip().lower()
    return any(lowered.endswith(k.lower()) for k in keywords)


def meets_minimum_length(text: str, min_length: int) -> bool:
    return len((text or "").strip()) >= min_length


def any_keyword_present(text: str, keywords: Iterable[str]) -> bool:
    """Like `contains_one`, but an empty keyword list never matches.

    Exclusion rules use this: an unconfigured rule must not exclude everything.
    """
    keywords = list(keywords)
    if not keywords or not text:
        return False
    lowered = text.lower()
    return any(k.lower() in lowered for k in keywords)


def matches_any_pattern(text: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match of any pattern (e.g. a domain) in text."""
    return any_keyword_present(text, patterns)


def url_hostname(url: str) -> str:
    """Lower-cased hostname of `url`, or "" when it cannot be parsed."""
    if not url:
        return ""
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return ""
    return (host or "").lower()


def matches_domain(url: str, domains: Iterable[str]) -> bool:
    """True when the URL's hostname contains one of `domains`.

    Malformed URLs never match.
    """
    domains = [d.lower() for d in domains if d]
    if not domains:
        return False
    host = url_hostname(url)
    if not host:
        return False
    return any(d in host for d in domains)


def contains_url(text: str) -> bool:
    lowered = (text or "").lower()
    return "http://" in lowered or "https://" in lowered
