"""Text helpers for summary trimming and labeled provider output."""

from __future__ import annotations

import re

SENTENCE_ENDINGS = (".", "!", "?", "。", "！", "？")
ELLIPSIS = "..."


def trim_to_sentence(text: str, max_len: int, cutoff_ratio: float = 0.7) -> str:
    """Shorten ``text`` to at most ``max_len`` characters.

    Cuts after the last sentence ending inside the limit when that ending
    lies past ``cutoff_ratio * max_len``; otherwise cuts hard and appends an
    ellipsis. Text that already fits is returned unchanged.
    """
    if max_len < 0:
        raise ValueError("max_len must be non-negative")
    if len(text) <= max_len:
        return text

    window = text[:max_len]
    boundary = max(window.rfind(ending) for ending in SENTENCE_ENDINGS)
    if boundary > max_len * cutoff_ratio:
        return window[: boundary + 1]

    if max_len <= len(ELLIPSIS):
        return text[:max_len]
    return text[: max_len - len(ELLIPSIS)].rstrip() + ELLIPSIS


_LABEL_RE = re.compile(r"^\s*[*#-]*\s*([A-Za-z][A-Za-z /]*?)\s*[*]*\s*[:：]\s*[*]*\s*(.*)$")


def parse_labeled_sections(text: str) -> dict[str, str]:
    """Split ``Label: value`` style output into a lower-cased label map.

    Lines that carry no label continue the previous section.
    """
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in text.splitlines():
        match = _LABEL_RE.match(line)
        if match:
            current = match.group(1).strip().lower()
            sections.setdefault(current, [])
            if match.group(2).strip():
                sections[current].append(match.group(2).strip())
        elif current is not None and line.strip():
            sections[current].append(line.strip())
    return {label: "\n".join(parts).strip() for label, parts in sections.items()}
