from __future__ import annotations

from autodeck.naming import unique_name


def test_unique_name_returns_desired_when_free():
    assert unique_name("Overview", ["Summary"]) == "Overview"


def test_unique_name_appends_counter_case_insensitive():
    assert unique_name("Overview", ["overview"]) == "Overview (2)"
    assert unique_name("Overview", ["Overview", "OVERVIEW (2)"]) == "Overview (3)"


def test_unique_name_puts_counter_before_file_extension():
    assert unique_name("report.pdf", ["Report.pdf"], is_file=True) == "report (2).pdf"
    assert unique_name("notes", ["notes"], is_file=True) == "notes (2)"
    assert unique_name(".env", [".env"], is_file=True) == ".env (2)"

