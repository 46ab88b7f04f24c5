"""Track ``##`` sections while a document streams in.

A header can arrive split across chunks (``## E`` then ``## Emergence``),
so a header seen again on the same line is treated as the same section as
long as one title is a prefix of the other.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from ..models import ConversationSection, SectionStatus
from .document_parser import (
    SECTION_TITLE_RE,
    TITLE_RE,
    count_words,
    extract_section_content,
)

logger = logging.getLogger(__name__)


@dataclass
class SectionInProgress:
    section_id: str
    start_line: int
    title: str
    created: bool = False


class StreamingSectionTracker:
    """Per-conversation streaming state."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self.last_processed_line = 0
        self.current_section: SectionInProgress | None = None
        self.title_detected = False
        self.title_line_completed = False

    # -- section bookkeeping ------------------------------------------------

    def should_create_new_section(self, candidate_title: str) -> bool:
        if self.current_section is None:
            return True
        current = self.current_section.title
        return not (candidate_title.startswith(current) or current.startswith(candidate_title))

    def start_new_section(self, start_line: int, title: str) -> SectionInProgress:
        self.current_section = SectionInProgress(
            section_id=f"section_{uuid.uuid4().hex}",
            start_line=start_line,
            title=title,
        )
        self.last_processed_line = start_line
        return self.current_section

    def update_current_section_title(self, title: str) -> None:
        if self.current_section is not None:
            self.current_section.title = title

    def mark_current_section_created(self) -> None:
        if self.current_section is not None:
            self.current_section.created = True

    def clear_current_section(self) -> None:
        self.current_section = None

    def reset(self) -> None:
        self.last_processed_line = 0
        self.current_section = None
        self.title_detected = False
        self.title_line_completed = False

    # -- content processing -------------------------------------------------

    def detect_title(self, content: str) -> str | None:
        """Return the ``# Title`` of *content* while its first line is still open.

        The call that sees the first line terminated returns the final title;
        every later call returns None.
        """
        if self.title_line_completed:
            return None
        first_line, sep, _ = content.partition("\n")
        title = None
        m = TITLE_RE.match(first_line)
        if m and m.group(1).strip():
            title = m.group(1).strip()
            self.title_detected = True
        if sep:
            self.title_line_completed = True
        return title

    def _view(self, section: SectionInProgress, content: str, status: SectionStatus) -> ConversationSection:
        body = extract_section_content(content, section.start_line)
        return ConversationSection(
            id=section.section_id,
            title=section.title,
            content=body,
            status=status,
            word_count=count_words(body),
        )

    def process(self, content: str) -> list[ConversationSection]:
        """Re-scan *content* from the current section's header.

        Returns the section views that changed: a finished section is
        reported ``completed`` when the next header appears, the section
        being written is reported ``generating``.
        """
        lines = content.split("\n")
        changed: list[ConversationSection] = []

        for i in range(self.last_processed_line, len(lines)):
            m = SECTION_TITLE_RE.match(lines[i])
            if not m:
                continue
            title = m.group(1).strip()
            if not title:
                continue

            current = self.current_section
            if current is not None and i == current.start_line:
                if title == current.title:
                    continue
                if not self.should_create_new_section(title):
                    logger.debug("Section title resolving: %r -> %r", current.title, title)
                    self.update_current_section_title(title)
                    continue

            if current is not None and current.created:
                changed.append(self._view(current, content, SectionStatus.COMPLETED))
            self.start_new_section(i, title)
            self.mark_current_section_created()
            logger.debug("New section at line %d: %r", i, title)

        if self.current_section is not None and self.current_section.created:
            changed.append(self._view(self.current_section, content, SectionStatus.GENERATING))
        return changed

    def finish(self, content: str) -> ConversationSection | None:
        """Report the section still being written as completed and stop tracking it."""
        section = self.current_section
        if section is None or not section.created:
            return None
        view = self._view(section, content, SectionStatus.COMPLETED)
        self.clear_current_section()
        return view
