"""
Common utility functions and helpers for reading engine output.
"""
from typing import List, Optional
import re

_WARNING_RE = re.compile(r"Warning:.*")
_ERROR_RE = re.compile(r"Error:.*")
_TEX_ERROR_RE = re.compile(r"^! .*", re.MULTILINE)

DEFAULT_ERROR_MESSAGE = "Compilation failed"

# Messages MiKTeX prints when its update check blocks a run
_MIKTEX_UPDATE_NOTICE = "So far, you have not checked for MiKTeX updates"
_MIKTEX_MAJOR_ISSUE = "pdflatex: major issue"


def extract_warnings(log: Optional[str]) -> List[str]:
    """
    Collect every warning line reported in a compilation log.

    Args:
        log: Engine log or captured process output

    Returns:
        Matched ``Warning: ...`` fragments, in order of appearance
    """
    if not log:
        return []
    return _WARNING_RE.findall(log)


def extract_error_message(log: Optional[str], fallback: Optional[str] = None) -> str:
    """
    Pick the most useful error message out of a compilation log.

    The first ``Error: ...`` fragment wins, then the first TeX error line
    (``! Undefined control sequence.``), then *fallback*.

    Args:
        log: Engine log or captured process output
        fallback: Message to use when the log has nothing better

    Returns:
        A non-empty error message
    """
    if log:
        match = _ERROR_RE.search(log)
        if match:
            return match.group(0)
        match = _TEX_ERROR_RE.search(log)
        if match:
            return match.group(0).strip()
    return fallback or DEFAULT_ERROR_MESSAGE


def is_miktex_update_warning(log: Optional[str]) -> bool:
    """Return True when *log* shows MiKTeX complaining about its update check."""
    if not log:
        return False
    return (
        _MIKTEX_UPDATE_NOTICE in log
        or ("major issue" in log and "MiKTeX" in log)
        or _MIKTEX_MAJOR_ISSUE in log
    )


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
