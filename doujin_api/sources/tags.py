"""Tag filter parsing for random gallery selection.

A raw filter such as ``tag:fox -tag:group, female:"big breasts"`` becomes a
search expression for the source site plus the positive and negative tag
sets that feed the usage statistics.
"""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, NamedTuple, Tuple

# A token is either a run of non-separators, optionally containing one
# double-quoted section (so `female:"big breasts"` stays whole).
_TOKEN_RE = re.compile(r'[^\s,"]*"[^"]*"?[^\s,]*|[^\s,]+')

NEGATION = "-"
_GENERIC_NAMESPACE = "tag"


class TagQuery(NamedTuple):
    query: str
    positive: FrozenSet[str]
    negative: FrozenSet[str]

    @property
    def is_empty(self) -> bool:
        return not self.positive and not self.negative


def _normalize_name(body: str) -> str:
    ns, sep, name = body.partition(":")
    if not sep:
        ns, name = "", body
    name = name.replace('"', "").rstrip("$").strip().lower()
    ns = ns.strip().lower()
    if not name:
        # "tag:" on its own: keep the token literally
        return body.replace('"', "").strip().lower()
    if not ns or ns == _GENERIC_NAMESPACE:
        return name
    return f"{ns}:{name}"


def _split_token(token: str) -> Tuple[bool, str]:
    if token.startswith(NEGATION) and len(token) > 1:
        return True, _normalize_name(token[1:])
    return False, _normalize_name(token)


def _search_term(tag: str) -> str:
    # quotes delimit the term, so none may appear inside it
    cleaned = tag.replace('"', "")
    ns, sep, name = cleaned.partition(":")
    if sep and name:
        return f'{ns}:"{name}$"'
    return f'"{cleaned}$"'


def build_query(positive: Iterable[str], negative: Iterable[str]) -> str:
    terms = [_search_term(t) for t in sorted(positive)]
    terms += [NEGATION + _search_term(t) for t in sorted(negative)]
    return " ".join(terms)


def parse_tags(raw: str | None) -> TagQuery:
    """Parse a free-form tag filter. Never raises.

    A tag given both with and without the negation marker only counts as
    negative, so the two sets are always disjoint.
    """
    positive: set[str] = set()
    negative: set[str] = set()

    for token in _TOKEN_RE.findall(raw or ""):
        is_negative, name = _split_token(token)
        if not name:
            continue
        (negative if is_negative else positive).add(name)

    positive -= negative
    return TagQuery(build_query(positive, negative), frozenset(positive), frozenset(negative))
