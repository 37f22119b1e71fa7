"""
Name uniqueness helpers.

No two cards in a collection, and no two documents in a collection, may share
a name. All comparisons are case-insensitive.
"""

from __future__ import annotations


def unique_name(desired: str, existing_names: list[str] | set[str], is_file: bool = False) -> str:
    """Return ``desired`` or the first free "Name (2)", "Name (3)", ... variant.

    For file names the counter goes before the extension: "report (2).pdf".
    """
    taken = {name.lower() for name in existing_names}
    if desired.lower() not in taken:
        return desired

    stem, ext = desired, ""
    if is_file:
        dot = desired.rfind(".")
        if dot > 0:
            stem, ext = desired[:dot], desired[dot:]

    counter = 2
    while True:
        candidate = f"{stem} ({counter}){ext}"
        if candidate.lower() not in taken:
            return candidate
        counter += 1

