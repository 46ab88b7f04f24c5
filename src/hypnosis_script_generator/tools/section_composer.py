"""Compose and splice markdown script documents section by section."""

from __future__ import annotations

import re

from .document_parser import SECTION_BOUNDARY_RE


def compose_header(title: str) -> str:
    return f"# {title}\n\n"


def compose_section(title: str, content: str) -> str:
    """Render one section the way it is appended to the running document."""
    return f"## {title}\n{content.strip()}\n\n"


def strip_leading_header(text: str, section_title: str) -> str:
    """Drop a ``## <section_title>`` line the model echoed at the top of *text*."""
    pattern = re.compile(rf"^\s*##\s+{re.escape(section_title)}\s*\n?")
    return pattern.sub("", text, count=1)


def replace_section(document: str, section_title: str, new_content: str) -> str:
    """Replace the body of the section titled *section_title*.

    The existing header line is kept and any ``##`` header lines inside
    *new_content* are dropped. If the section does not exist it is appended
    at the end of the document.
    """
    cleaned = "\n".join(
        line for line in new_content.split("\n") if not SECTION_BOUNDARY_RE.match(line)
    ).strip()

    result: list[str] = []
    in_target = False
    found = False
    for line in document.split("\n"):
        if SECTION_BOUNDARY_RE.match(line):
            title = line[2:].strip()
            if title == section_title and not found:
                in_target = True
                found = True
                result.extend([line, "", cleaned, ""])
                continue
            in_target = False
            result.append(line)
        elif not in_target:
            result.append(line)

    if not found:
        result.extend(["", f"## {section_title}", "", new_content.strip()])
    return "\n".join(result).strip()
