"""Tests for the log-reading helpers."""
from app.utils.helpers import (
    extract_error_message,
    extract_warnings,
    is_miktex_update_warning,
    truncate_text,
)

SAMPLE_LOG = """This is pdfTeX, Version 3.141592653-2.6-1.40.25 (TeX Live 2023)
LaTeX Warning: Reference `fig:1' on page 1 undefined on input line 12.
Package hyperref Warning: Token not allowed in a PDF string (Unicode):
LaTeX Warning: There were undefined references.
Output written on main.pdf (1 page, 12345 bytes).
"""


def test_extract_warnings_in_order():
    assert extract_warnings(SAMPLE_LOG) == [
        "Warning: Reference `fig:1' on page 1 undefined on input line 12.",
        "Warning: Token not allowed in a PDF string (Unicode):",
        "Warning: There were undefined references.",
    ]


def test_extract_warnings_empty_log():
    assert extract_warnings("") == []
    assert extract_warnings(None) == []


def test_error_message_prefers_error_fragment():
    log = "! Undefined control sequence.\n! LaTeX Error: File `missing.sty' not found.\n"
    assert extract_error_message(log) == "Error: File `missing.sty' not found."


def test_error_message_falls_back_to_tex_error_line():
    log = "(./main.tex\n! Undefined control sequence.\nl.5 \\foo\n"
    assert extract_error_message(log, "Command failed") == "! Undefined control sequence."


def test_error_message_falls_back_to_given_message():
    assert extract_error_message("nothing useful here", "Command failed") == "Command failed"


def test_error_message_default():
    assert extract_error_message(None) == "Compilation failed"


def test_miktex_update_warning_detection():
    assert is_miktex_update_warning("So far, you have not checked for MiKTeX updates.")
    assert is_miktex_update_warning("MiKTeX encountered a major issue")
    assert is_miktex_update_warning("pdflatex: major issue: something")
    assert not is_miktex_update_warning("LaTeX Warning: There were undefined references.")
    assert not is_miktex_update_warning("a major issue without the vendor name")
    assert not is_miktex_update_warning(None)


def test_truncate_text():
    assert truncate_text("short", 10) == "short"
    assert truncate_text("a" * 20, 10) == "aaaaaaa..."
