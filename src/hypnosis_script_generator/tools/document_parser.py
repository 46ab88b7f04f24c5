"""Markdown document, section and outline parsing.

Every function here re-parses the whole string it is given. Streaming
callers simply call again with the accumulated text on every chunk; input
sizes are a few thousand words, so there is no incremental parser.
"""

from __future__ import annotations

import re

from ..errors import OutlineParseError
from ..models import (
    ConversationSection,
    OutlineSection,
    ParsedDocument,
    ParsedSection,
    ScriptOutline,
    SectionStatus,
)

TITLE_RE = re.compile(r"^#\s+(.+)$")
SECTION_BOUNDARY_RE = re.compile(r"^##\s+")
SECTION_TITLE_RE = re.compile(r"^##\s+(.+)$")
# Any titled header ends a section, except on the last line where a title
# shorter than two characters may still be streaming.
SECTION_HEADER_RE = re.compile(r"^##\s+\S")
COMPLETE_SECTION_RE = re.compile(r"^##\s+.{2,}")
INCOMPLETE_HEADER_RE = re.compile(r"^##\s*.?$")

_SLUG_RE = re.compile(r"[^a-z0-9]")


def count_words(text: str) -> int:
    """Whitespace-tokenized word count."""
    return len(text.split())


def extract_title(text: str) -> str | None:
    """Return the first ``# Title`` line's text, or None."""
    for line in text.split("\n"):
        m = TITLE_RE.match(line)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


def _section_title(line: str) -> str:
    m = SECTION_TITLE_RE.match(line)
    return m.group(1).strip() if m else ""


def _drop_trailing_fragment(lines: list[str]) -> list[str]:
    """Ignore a half-typed ``##`` header on the very last line of input."""
    if lines and INCOMPLETE_HEADER_RE.match(lines[-1].strip()):
        return lines[:-1]
    return lines


def parse_sections(text: str) -> list[ParsedSection]:
    """Split *text* into ``##`` sections.

    Content runs from the line after a header up to (not including) the next
    header or the end of the document. Headers whose title is empty close
    the previous section without opening a new one.
    """
    lines = _drop_trailing_fragment(text.split("\n"))
    sections: list[ParsedSection] = []
    start = -1
    title = ""

    def _close(end: int) -> None:
        content = "\n".join(lines[start + 1:end]).strip()
        sections.append(ParsedSection(
            title=title,
            content=content,
            word_count=count_words(content),
            start_line=start,
            end_line=end - 1,
        ))

    for i, line in enumerate(lines):
        if not SECTION_BOUNDARY_RE.match(line):
            continue
        if start >= 0 and title:
            _close(i)
        start = i
        title = _section_title(line)

    if start >= 0 and title:
        _close(len(lines))
    return sections


def parse_document(text: str) -> ParsedDocument:
    """Parse a markdown response into title, sections and total word count."""
    return ParsedDocument(
        title=extract_title(text),
        sections=parse_sections(text),
        total_word_count=count_words(text),
    )


def extract_section_content(text: str, start_line: int) -> str:
    """Return the body of the section whose header sits on *start_line*.

    The body ends at the next titled header; on the final line only a
    header with two or more title characters counts. Trailing blank lines and
    incomplete header fragments (``##`` alone, or with one character) are
    stripped so a dangling ``##`` never shows up in displayed content.
    """
    lines = text.split("\n")
    end = len(lines)
    last_index = len(lines) - 1
    for i in range(start_line + 1, len(lines)):
        header_re = COMPLETE_SECTION_RE if i == last_index else SECTION_HEADER_RE
        if header_re.match(lines[i]):
            end = i
            break

    body = lines[start_line + 1:end]
    while body:
        last = body[-1].strip()
        if not last or INCOMPLETE_HEADER_RE.match(last):
            body.pop()
        else:
            break
    return "\n".join(body).strip()


def section_id_for(title: str) -> str:
    """Stable section id derived from its title."""
    return "section_" + _SLUG_RE.sub("_", title.lower())


def derive_sections(text: str, *, streaming: bool = False) -> list[ConversationSection]:
    """Build the section view of a document.

    Ids are derived from titles (duplicates get a numeric suffix) so the
    same document always yields the same ids. When *streaming* is set the
    last section is reported as still generating.
    """
    parsed = parse_sections(text)
    seen: dict[str, int] = {}
    result: list[ConversationSection] = []
    for index, section in enumerate(parsed):
        base = section_id_for(section.title)
        seen[base] = seen.get(base, 0) + 1
        section_id = base if seen[base] == 1 else f"{base}_{seen[base]}"
        is_live = streaming and index == len(parsed) - 1
        result.append(ConversationSection(
            id=section_id,
            title=section.title,
            content=section.content,
            status=SectionStatus.GENERATING if is_live else SectionStatus.COMPLETED,
            word_count=section.word_count,
        ))
    return result


# ---------------------------------------------------------------------------
# Outline
# ---------------------------------------------------------------------------

def parse_outline(text: str) -> ScriptOutline:
    """Parse the outline response into a title and section stubs.

    The first line must be ``# Title``. Each ``## Heading`` starts a section
    and the first non-empty, non-header line after it is its description;
    any further lines are ignored.

    Raises:
        OutlineParseError: no title line, or no sections.
    """
    lines = text.strip().split("\n")
    m = TITLE_RE.match(lines[0]) if lines else None
    if not m or not m.group(1).strip():
        raise OutlineParseError("Outline must start with a '# Title' line")

    sections: list[OutlineSection] = []
    awaiting_description = False
    for line in lines[1:]:
        stripped = line.strip()
        header = SECTION_TITLE_RE.match(line)
        if header and header.group(1).strip():
            sections.append(OutlineSection(title=header.group(1).strip()))
            awaiting_description = True
            continue
        if not stripped or stripped.startswith("#"):
            continue
        if awaiting_description and sections:
            sections[-1].description = stripped
            awaiting_description = False

    if not sections:
        raise OutlineParseError("Outline contains no '## Section' lines")
    return ScriptOutline(title=m.group(1).strip(), sections=sections)


def format_outline(outline: ScriptOutline) -> str:
    """Render an outline as markdown, the way section prompts embed it."""
    parts = [f"# {outline.title}", ""]
    for section in outline.sections:
        parts.append(f"## {section.title}")
        if section.description:
            parts.append(section.description)
        parts.append("")
    return "\n".join(parts).strip()
