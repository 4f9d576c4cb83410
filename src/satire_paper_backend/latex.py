"""
Helpers for working with generated LaTeX source.

- Removing the markdown code fences language models like to wrap output in
- Extracting a display title with an ordered list of rules
- The single package fixup applied before a compiler retry
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

FENCE_OPEN_MARKERS = ("```latex", "```")
FENCE_CLOSE = "```"

UNTITLED = "Untitled"

BODY_MARKER = "\\begin{document}"
REQUIRED_PACKAGE = "\\usepackage{amsmath}"

LINE_BREAK_PATTERN = re.compile(r"\\\\|\\newline|\\linebreak")
COMMAND_PATTERN = re.compile(r"\\[a-zA-Z]+(\{[^}]*\})?")
WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class TitleRule:
    name: str
    pattern: re.Pattern[str]

    def capture(self, source: str) -> Optional[str]:
        match = self.pattern.search(source)
        if match and match.group(1):
            return match.group(1)
        return None


# Order matters: a \title always beats the first \section.
TITLE_RULES = (
    TitleRule("title", re.compile(r"\\title\{([^}]*)\}")),
    TitleRule("section", re.compile(r"\\section\{([^}]*)\}")),
    TitleRule("chapter", re.compile(r"\\chapter\{([^}]*)\}")),
    TitleRule("preamble", re.compile(r"\\documentclass.*?\n.*?\n(.*?)\\begin", re.DOTALL)),
)


def strip_code_fences(text: str) -> str:
    """
    Remove a leading and a trailing markdown code fence.

    Only the markers themselves are removed; everything between them is
    returned untouched. Text without fences is returned unchanged.
    """
    for marker in FENCE_OPEN_MARKERS:
        if text.startswith(marker):
            text = text[len(marker):]
            break

    if text.endswith(FENCE_CLOSE):
        text = text[: -len(FENCE_CLOSE)]

    return text


def clean_title(raw: str) -> str:
    title = raw.strip()
    title = LINE_BREAK_PATTERN.sub(" ", title)
    title = COMMAND_PATTERN.sub("", title)
    title = title.replace("{", "").replace("}", "")
    return WHITESPACE_PATTERN.sub(" ", title).strip()


def extract_title(source: str) -> str:
    """
    Pick a human readable title for a LaTeX document.

    Rules are tried in order (``\\title``, ``\\section``, ``\\chapter``, then
    whatever sits between the preamble header and the first ``\\begin``).
    The first rule yielding non-empty text after cleanup wins.

    Returns:
        The cleaned title, or ``"Untitled"`` when no rule produces text
    """
    for rule in TITLE_RULES:
        captured = rule.capture(source)
        if captured is None:
            continue
        title = clean_title(captured)
        if title:
            return title
    return UNTITLED


def apply_package_fixup(source: str) -> str:
    """Inject ``\\usepackage{amsmath}`` right before the body when it is missing."""
    if REQUIRED_PACKAGE in source:
        return source
    return source.replace(BODY_MARKER, f"{REQUIRED_PACKAGE}\n{BODY_MARKER}", 1)
