"""Tokenization helpers shared by retrieval, ask synthesis, and link proposal."""

from __future__ import annotations

import json
import string
from typing import Iterable, List, Set

_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def ascii_lower(text: str) -> str:
    """Lowercase ``A-Z`` only; every other character keeps its case."""
    return text.translate(_ASCII_LOWER)


def _split_alnum(text: str) -> Iterable[str]:
    token: List[str] = []
    for ch in text:
        if ch.isalnum():
            token.append(ch)
        elif token:
            yield "".join(token)
            token = []
    if token:
        yield "".join(token)


def tokenize(text: str) -> Set[str]:
    """Return the set of ASCII-lowercased alphanumeric tokens in *text*."""
    return {ascii_lower(t) for t in _split_alnum(text)}


def query_terms(query: str) -> List[str]:
    """Lowercase alphanumeric tokens, de-duplicated, first occurrence order."""
    out: List[str] = []
    seen: Set[str] = set()
    for part in _split_alnum(query):
        token = ascii_lower(part)
        if token not in seen:
            seen.add(token)
            out.append(token)
    return out


def normalize_query(query: str) -> str:
    return " ".join(query_terms(query))


def normalize_term_key(term: str) -> str:
    """Collapse style variants: ``User_ID``, ``user-id`` and ``User Id`` -> ``userid``."""
    return "".join(ch.lower() for ch in term if ch.isalnum())


def decode_terms(terms_json: str) -> List[str]:
    """Parse a stored ``terms_json`` column; anything malformed reads as no terms."""
    try:
        value = json.loads(terms_json)
    except (json.JSONDecodeError, TypeError):
        return []
    if not isinstance(value, list):
        return []
    return [str(t) for t in value]


def one_line(text: str) -> str:
    return text.replace("\n", " ")


def matched_terms(query: str, terms: Iterable[str]) -> List[str]:
    """Classification terms whose normalized key appears as a query token."""
    query_tokens = tokenize(query)
    return [t for t in terms if normalize_term_key(t) in query_tokens]
