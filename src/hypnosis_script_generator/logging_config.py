"""Rich console setup and generation progress callbacks."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler

from .models import ConversationSection, GenerationPhase, GenerationProgress, SectionStatus

console = Console()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logger with Rich handler."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # openai/httpx log every request at INFO
    for noisy in ("httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING if not verbose else logging.DEBUG)


# ---------------------------------------------------------------------------
# Generation callbacks protocol
# ---------------------------------------------------------------------------


class GenerationCallbacks(Protocol):
    """Observer of a generation run.

    ``on_progress`` fires on every streamed chunk, in arrival order.
    ``on_generation_complete`` always receives the full final text.
    """

    def on_progress(self, progress: GenerationProgress) -> None: ...
    def on_title_detected(self, conversation_id: str, title: str) -> None: ...
    def on_section_update(self, conversation_id: str, section: ConversationSection) -> None: ...
    def on_generation_complete(self, conversation_id: str, content: str) -> None: ...


class NullCallbacks:
    """Callbacks that ignore every event."""

    def on_progress(self, progress: GenerationProgress) -> None:
        pass

    def on_title_detected(self, conversation_id: str, title: str) -> None:
        pass

    def on_section_update(self, conversation_id: str, section: ConversationSection) -> None:
        pass

    def on_generation_complete(self, conversation_id: str, content: str) -> None:
        pass


class RichCallbacks:
    """Rich-based implementation of GenerationCallbacks.

    Prints phase and section transitions, not individual chunks.
    """

    def __init__(self) -> None:
        self._last: tuple[GenerationPhase, int | None] | None = None
        self._title: str | None = None

    def on_progress(self, progress: GenerationProgress) -> None:
        key = (progress.phase, progress.section_index)
        if key == self._last:
            return
        self._last = key
        if progress.phase == GenerationPhase.GENERATING_OUTLINE:
            console.rule("[bold blue]Outline[/]")
        elif progress.phase == GenerationPhase.GENERATING_SECTION:
            if progress.section_index is not None and progress.total_sections:
                console.print(
                    f"  [dim]Section {progress.section_index + 1}/{progress.total_sections}:[/] "
                    f"{progress.section_title}"
                )
            else:
                console.print(f"  [dim]Regenerating:[/] {progress.section_title}")
        elif progress.phase == GenerationPhase.COMPLETE:
            counts = ", ".join(str(c) for c in progress.section_word_counts)
            console.print(f"  [green]Complete[/] [dim]({counts} words per section)[/]" if counts else "  [green]Complete[/]")
        elif progress.phase == GenerationPhase.ERROR:
            if progress.aborted:
                console.print("  [yellow]Stopped:[/] generation aborted")
            else:
                console.print(f"  [red]ERROR:[/] {progress.error}")

    def on_title_detected(self, conversation_id: str, title: str) -> None:
        self._title = title

    def on_section_update(self, conversation_id: str, section: ConversationSection) -> None:
        if section.status == SectionStatus.COMPLETED:
            console.print(f"  [dim]Done:[/] {section.title} ({section.word_count} words)")

    def on_generation_complete(self, conversation_id: str, content: str) -> None:
        if self._title:
            console.print(f"  [bold]{self._title}[/]")
