"""Generation orchestrator: outline, sequential sections, section regeneration.

One ``ScriptGenerationOrchestrator`` drives every conversation of a process.
Each run moves through

    idle -> generating_outline -> generating_section (x N) -> complete

or ends in ``error`` (with ``aborted`` set when the abort event fired).
Streamed text is written to the conversation store and reported through
``GenerationCallbacks`` on every chunk.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

from .conversation_store import ConversationStore
from .errors import (
    ConversationNotFoundError,
    ConversationRequiredError,
    GenerationAbortedError,
    ScriptGeneratorError,
    UpstreamGenerationError,
)
from .examples import ExampleRetriever
from .logging_config import GenerationCallbacks, NullCallbacks
from .models import (
    ChatMessage,
    ChatRole,
    ContextConfig,
    Conversation,
    ConversationSection,
    ExampleDocument,
    GenerationPhase,
    GenerationProgress,
    GenerationRequest,
    ScriptOutline,
    SectionRegenerationRequest,
    SectionStatus,
)
from .prompts import outline_request, script_request, section_request, system_prompt
from .providers import GenerationProvider
from .tools.document_parser import count_words, format_outline, parse_outline, parse_sections, section_id_for
from .tools.section_composer import compose_header, compose_section, replace_section, strip_leading_header
from .tools.streaming_tracker import StreamingSectionTracker
from .tools.token_estimator import estimate_tokens, recommended_example_count

logger = logging.getLogger(__name__)


class ScriptGenerationOrchestrator:
    """Runs initial generations and section regenerations against a provider."""

    def __init__(
        self,
        provider: GenerationProvider,
        store: ConversationStore,
        *,
        retriever: ExampleRetriever | None = None,
        callbacks: GenerationCallbacks | None = None,
        context: ContextConfig | None = None,
        min_words: int = 400,
    ) -> None:
        self.provider = provider
        self.store = store
        self.retriever = retriever
        self.callbacks = callbacks or NullCallbacks()
        self.context = context or ContextConfig()
        self.min_words = min_words

        # At most one run per key: "<conversationId>-initial" / "<conversationId>-<sectionTitle>"
        self._active_initial: set[str] = set()
        self._active_sections: set[str] = set()
        self._progress: dict[str, GenerationProgress] = {}

    # -----------------------------------------------------------------------
    # State queries
    # -----------------------------------------------------------------------

    def get_progress(self, conversation_id: str) -> GenerationProgress | None:
        return self._progress.get(conversation_id)

    def is_active(self, key: str) -> bool:
        return key in self._active_initial or key in self._active_sections

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _dispatch(self, progress: GenerationProgress) -> None:
        self.callbacks.on_progress(progress.model_copy(deep=True))

    @staticmethod
    def _check_abort(abort: asyncio.Event | None) -> None:
        if abort is not None and abort.is_set():
            raise GenerationAbortedError()

    def _fail(self, progress: GenerationProgress, exc: BaseException) -> None:
        aborted = isinstance(exc, GenerationAbortedError)
        progress.phase = GenerationPhase.ERROR
        progress.aborted = aborted
        progress.error = str(exc) or type(exc).__name__
        self.store.flush(progress.conversation_id)
        self._dispatch(progress)
        if aborted:
            logger.info("Generation stopped for %s", progress.conversation_id)
        else:
            logger.error("Generation failed for %s: %s", progress.conversation_id, progress.error)

    async def _stream(
        self,
        chunks: AsyncIterator[str],
        abort: asyncio.Event | None,
        on_chunk: Callable[[str], None],
    ) -> str:
        """Consume *chunks*, calling *on_chunk* with the accumulated text each time."""
        accumulated = ""
        try:
            async for chunk in chunks:
                self._check_abort(abort)
                accumulated += chunk
                on_chunk(accumulated)
        except ScriptGeneratorError:
            raise
        except Exception as exc:
            raise UpstreamGenerationError(f"Generation provider failed: {exc}") from exc
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        self._check_abort(abort)
        return accumulated

    def _history_tokens(self, conversation_id: str) -> int:
        history = self.store.conversation_history(conversation_id)
        return sum(estimate_tokens(m.content) for m in history if m.role != ChatRole.SYSTEM)

    async def _retrieve_examples(self, query: str, conversation_id: str) -> list[ExampleDocument]:
        """Fetch reference scripts; any failure degrades to no examples."""
        if self.retriever is None:
            return []
        limit = recommended_example_count(
            system_prompt(), self._history_tokens(conversation_id), limits=self.context,
        )
        try:
            examples = await self.retriever.search_examples(query, limit)
        except Exception as exc:
            logger.warning("Example retrieval failed, continuing without examples: %s", exc)
            return []
        logger.debug("Retrieved %d example(s) (limit %d)", len(examples), limit)
        return examples

    def _require_known(self, conversation: Conversation) -> None:
        if self.store.get(conversation.id) is None:
            raise ConversationNotFoundError(conversation.id)

    # -----------------------------------------------------------------------
    # Initial generation
    # -----------------------------------------------------------------------

    async def generate_script(
        self,
        request: GenerationRequest,
        conversation: Conversation | None,
        abort: asyncio.Event | None = None,
    ) -> None:
        """Generate an outline, then every section in order.

        Raises:
            ConversationRequiredError: *conversation* is None.
            OutlineParseError: the outline response has no title or sections.
            GenerationAbortedError: *abort* was set.
            UpstreamGenerationError: the provider failed.
        """
        if conversation is None:
            raise ConversationRequiredError()
        self._require_known(conversation)

        key = f"{conversation.id}-initial"
        if key in self._active_initial:
            logger.info("Generation already running for %s; ignoring duplicate request", conversation.id)
            return

        self._active_initial.add(key)
        progress = GenerationProgress(conversation_id=conversation.id)
        self._progress[conversation.id] = progress
        tracker = StreamingSectionTracker(conversation.id)
        try:
            system, user, outline_text, outline, examples = await self._generate_outline(
                request, conversation, progress, tracker, abort,
            )
            full_text = await self._generate_sections(
                request, conversation, progress, tracker, abort,
                system=system, user=user, outline_text=outline_text,
                outline=outline, examples=examples,
            )
            self._check_abort(abort)

            progress.phase = GenerationPhase.COMPLETE
            progress.is_complete = True
            progress.content = full_text
            self.store.update_latest_response(conversation.id, full_text)
            self.store.flush(conversation.id)
            self._dispatch(progress)
            self.callbacks.on_generation_complete(conversation.id, full_text)
            logger.info(
                "Generated %r: %d section(s), %d words",
                outline.title, len(outline.sections), sum(progress.section_word_counts),
            )
        except Exception as exc:
            self._fail(progress, exc)
            raise
        finally:
            self._active_initial.discard(key)

    async def _generate_outline(
        self,
        request: GenerationRequest,
        conversation: Conversation,
        progress: GenerationProgress,
        tracker: StreamingSectionTracker,
        abort: asyncio.Event | None,
    ) -> tuple[ChatMessage, ChatMessage, str, ScriptOutline, list[ExampleDocument]]:
        self._check_abort(abort)
        progress.phase = GenerationPhase.GENERATING_OUTLINE
        self._dispatch(progress)

        examples = await self._retrieve_examples(request.prompt, conversation.id)
        if examples:
            self.store.store_examples(conversation.id, examples)
        system = ChatMessage(role=ChatRole.SYSTEM, content=system_prompt(examples))
        user = ChatMessage(role=ChatRole.USER, content=outline_request(request.prompt))
        self.store.append_generation(conversation.id, [system, user])

        def on_chunk(text: str) -> None:
            self.store.update_latest_response(conversation.id, text)
            title = tracker.detect_title(text)
            if title:
                self.callbacks.on_title_detected(conversation.id, title)
            progress.content = text
            self._dispatch(progress)

        outline_text = await self._stream(
            self.provider.generate_script(request, [system, user], examples, abort, step="outline"),
            abort,
            on_chunk,
        )
        self.store.update_latest_response(conversation.id, outline_text)
        self.store.flush(conversation.id)

        outline = parse_outline(outline_text)
        logger.info("Outline %r with %d section(s)", outline.title, len(outline.sections))
        return system, user, outline_text, outline, examples

    async def _generate_sections(
        self,
        request: GenerationRequest,
        conversation: Conversation,
        progress: GenerationProgress,
        tracker: StreamingSectionTracker,
        abort: asyncio.Event | None,
        *,
        system: ChatMessage,
        user: ChatMessage,
        outline_text: str,
        outline: ScriptOutline,
        examples: list[ExampleDocument],
    ) -> str:
        outline_md = format_outline(outline)
        full_text = compose_header(outline.title)
        self.store.append_generation(
            conversation.id,
            [ChatMessage(role=ChatRole.USER, content=script_request(outline.title, outline_md))],
        )
        self.store.update_latest_response(conversation.id, full_text)
        tracker.reset()

        progress.total_sections = len(outline.sections)
        word_counts: list[int] = []
        for index, section in enumerate(outline.sections):
            self._check_abort(abort)
            progress.phase = GenerationPhase.GENERATING_SECTION
            progress.section_index = index
            progress.section_title = section.title
            self._dispatch(progress)

            messages = [
                system,
                user,
                ChatMessage(role=ChatRole.ASSISTANT, content=outline_text),
                ChatMessage(role=ChatRole.USER, content=section_request(
                    outline_text=outline_md,
                    content_so_far=full_text,
                    section_title=section.title,
                    description=section.description,
                    section_number=index + 1,
                    total_sections=len(outline.sections),
                    min_words=self.min_words,
                )),
            ]

            def on_chunk(text: str, prefix: str = full_text + f"## {section.title}\n") -> None:
                live = prefix + text
                self.store.update_latest_response(conversation.id, live)
                progress.content = live
                for update in tracker.process(live):
                    self.callbacks.on_section_update(conversation.id, update)
                self._dispatch(progress)

            raw = await self._stream(
                self.provider.generate_script(request, messages, examples, abort, step="section"),
                abort,
                on_chunk,
            )
            body = strip_leading_header(raw, section.title).strip()
            word_counts.append(count_words(body))
            full_text += compose_section(section.title, body)

            progress.section_word_counts = list(word_counts)
            progress.content = full_text
            self.store.update_latest_response(conversation.id, full_text)
            self.store.flush(conversation.id)
            self._dispatch(progress)
            logger.debug("Section %d/%d %r: %d words", index + 1, len(outline.sections), section.title, word_counts[-1])

        last = tracker.finish(full_text)
        if last is not None:
            self.callbacks.on_section_update(conversation.id, last)
        return full_text

    # -----------------------------------------------------------------------
    # Section regeneration
    # -----------------------------------------------------------------------

    async def regenerate_section(
        self,
        request: SectionRegenerationRequest,
        conversation: Conversation | None,
        abort: asyncio.Event | None = None,
    ) -> None:
        """Rewrite one section with the full conversation history as context.

        The new generation's response is the previous document with the
        target section replaced by the streamed text.
        """
        if conversation is None:
            raise ConversationNotFoundError(request.conversation_id)
        self._require_known(conversation)

        title = request.section_title
        key = f"{conversation.id}-{title}"
        if key in self._active_sections:
            logger.info("Regeneration of %r already running for %s; ignoring", title, conversation.id)
            return

        self._active_sections.add(key)
        previous = self.store.get_latest_response(conversation.id)
        parsed = parse_sections(previous)
        progress = GenerationProgress(
            conversation_id=conversation.id,
            phase=GenerationPhase.GENERATING_SECTION,
            section_title=title,
            total_sections=len(parsed),
        )
        self._progress[conversation.id] = progress
        section_id = request.section_id or section_id_for(title)
        try:
            self._check_abort(abort)
            history = self.store.conversation_history(conversation.id)
            if not any(m.role == ChatRole.SYSTEM for m in history):
                history.insert(0, ChatMessage(role=ChatRole.SYSTEM, content=system_prompt(conversation.examples)))
            prompt = ChatMessage(role=ChatRole.USER, content=request.prompt)
            self.store.append_generation(conversation.id, [prompt])
            self.store.update_latest_response(conversation.id, replace_section(previous, title, ""))
            self._dispatch(progress)

            def on_chunk(text: str) -> None:
                body = strip_leading_header(text, title)
                live = replace_section(previous, title, body)
                self.store.update_latest_response(conversation.id, live)
                progress.content = live
                self.callbacks.on_section_update(conversation.id, ConversationSection(
                    id=section_id,
                    title=title,
                    content=body.strip(),
                    status=SectionStatus.GENERATING,
                    word_count=count_words(body),
                ))
                self._dispatch(progress)

            raw = await self._stream(
                self.provider.regenerate_section(request, [*history, prompt], abort),
                abort,
                on_chunk,
            )
            body = strip_leading_header(raw, title).strip()
            final = replace_section(previous, title, body)

            progress.phase = GenerationPhase.COMPLETE
            progress.is_complete = True
            progress.content = final
            progress.section_word_counts = [count_words(body)]
            self.store.update_latest_response(conversation.id, final)
            self.store.flush(conversation.id)
            self._dispatch(progress)
            self.callbacks.on_section_update(conversation.id, ConversationSection(
                id=section_id,
                title=title,
                content=body,
                status=SectionStatus.COMPLETED,
                word_count=count_words(body),
            ))
            self.callbacks.on_generation_complete(conversation.id, final)
            logger.info("Regenerated %r: %d words", title, count_words(body))
        except Exception as exc:
            self._fail(progress, exc)
            raise
        finally:
            self._active_sections.discard(key)
