"""Split markdown bodies into bounded, overlapping chunks for indexing.

Paragraphs (blank-line separated) are packed greedily up to the target
length. Oversized paragraphs fall back to sentence packing with a rolling
overlap, and oversized sentences to fixed character windows.
"""

from __future__ import annotations

from typing import List

from .config import CHUNK_TARGET_LEN

SENTENCE_TERMINATORS = frozenset(".!?。！？\n")

MIN_OVERLAP = 80
MAX_OVERLAP = 180


def overlap_for(target_len: int) -> int:
    return min(max(target_len // 6, MIN_OVERLAP), MAX_OVERLAP)


def split_into_chunks(text: str, target_len: int = CHUNK_TARGET_LEN) -> List[str]:
    """Split *text* into chunks of at most *target_len* characters.

    Args:
        text: Markdown body.
        target_len: Soft upper bound on chunk length in characters.

    Returns:
        Non-empty, trimmed chunks in document order. A whitespace-only
        body yields an empty list; any other body yields at least one chunk.
    """
    out: List[str] = []
    current = ""
    overlap = overlap_for(target_len)

    for part in text.split("\n\n"):
        paragraph = part.strip()
        if not paragraph:
            continue
        if len(paragraph) > target_len:
            if current:
                out.append(current.strip())
                current = ""
            out.extend(split_long_text_with_overlap(paragraph, target_len, overlap))
            continue
        if current and len(current) + len(paragraph) + 2 > target_len:
            out.append(current.strip())
            current = ""
        current = f"{current}\n\n{paragraph}" if current else paragraph

    if current.strip():
        out.append(current.strip())

    if not out:
        fallback = text.strip()
        return [fallback] if fallback else []
    return out


def split_long_text_with_overlap(text: str, target_len: int, overlap: int) -> List[str]:
    """Pack sentences into chunks, carrying the last *overlap* characters forward."""
    chunks: List[str] = []
    current = ""

    for sentence in split_sentences(text):
        if len(sentence) > target_len:
            if current.strip():
                chunks.append(current.strip())
                current = ""
            chunks.extend(split_by_char_window(sentence, target_len, overlap))
            continue
        if current and len(current) + len(sentence) + 1 > target_len:
            finalized = current.strip()
            if finalized:
                chunks.append(finalized)
            current = tail_overlap(finalized, overlap)
        current = f"{current} {sentence}" if current else sentence

    if current.strip():
        chunks.append(current.strip())
    if not chunks:
        return [text.strip()]
    return chunks


def split_sentences(text: str) -> List[str]:
    out: List[str] = []
    current: List[str] = []
    for ch in text:
        current.append(ch)
        if ch in SENTENCE_TERMINATORS:
            sentence = "".join(current).strip()
            if sentence:
                out.append(sentence)
            current = []
    tail = "".join(current).strip()
    if tail:
        out.append(tail)
    return out


def split_by_char_window(text: str, target_len: int, overlap: int) -> List[str]:
    """Fixed-size windows advancing by ``target_len - overlap`` (at least 1)."""
    if len(text) <= target_len:
        return [text]
    out: List[str] = []
    step = max(target_len - overlap, 1)
    start = 0
    while start < len(text):
        end = min(start + target_len, len(text))
        window = text[start:end].strip()
        if window:
            out.append(window)
        if end == len(text):
            break
        start += step
    return out


def tail_overlap(text: str, overlap: int) -> str:
    if overlap <= 0:
        return ""
    if len(text) <= overlap:
        return text
    return text[-overlap:]
