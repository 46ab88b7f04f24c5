"""Reference script library used to ground generation.

Bundled scripts ship in the ``library/`` package directory; a user
directory of ``.md`` files (optionally with a YAML front-matter block
holding ``category``) can be added through ``examples_dir``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import yaml

from .models import ExampleDocument

logger = logging.getLogger(__name__)

BUNDLED_DIR = Path(__file__).parent / "library"

# (query word, content word, matching category, weight)
_KEYWORD_RULES: list[tuple[str, str, str | None, int]] = [
    ("confidence", "confidence", "confidence", 10),
    ("sleep", "sleep", "sleep", 10),
    ("stress", "stress", "relaxation", 10),
    ("speak", "speak", None, 10),
    ("pain", "pain", None, 10),
    ("relax", "relax", "relaxation", 8),
]


class ExampleRetriever(Protocol):
    async def search_examples(self, query: str, limit: int) -> list[ExampleDocument]: ...


def _split_front_matter(text: str) -> tuple[dict, str]:
    if not text.startswith("---\n"):
        return {}, text
    _, _, rest = text.partition("---\n")
    header, sep, body = rest.partition("\n---\n")
    if not sep:
        return {}, text
    try:
        meta = yaml.safe_load(header) or {}
    except yaml.YAMLError:
        logger.warning("Ignoring malformed front matter")
        return {}, text
    return (meta if isinstance(meta, dict) else {}), body


def list_example_files(directory: str | Path) -> list[Path]:
    d = Path(directory)
    if not d.exists():
        return []
    return sorted(d.rglob("*.md"))


def load_examples(directory: str | Path) -> list[ExampleDocument]:
    """Read every markdown script under *directory*."""
    docs = []
    for path in list_example_files(directory):
        meta, body = _split_front_matter(path.read_text(encoding="utf-8"))
        meta.setdefault("filename", path.name)
        docs.append(ExampleDocument(content=body.strip(), metadata=meta))
    return docs


def score_example(query: str, example: ExampleDocument) -> float:
    """Keyword relevance of *example* to *query*."""
    q = query.lower()
    content = example.content.lower()
    category = example.metadata.get("category")
    score = 0
    for query_word, content_word, cat, weight in _KEYWORD_RULES:
        if query_word in q and (content_word in content or (cat is not None and category == cat)):
            score += weight
    for word in q.split():
        if len(word) > 2 and word in content:
            score += 2
    return float(score)


class ExampleLibrary:
    """Keyword-scored search over bundled and user-provided scripts."""

    def __init__(self, examples_dir: str | Path | None = None, *, include_bundled: bool = True):
        self.examples: list[ExampleDocument] = []
        if include_bundled:
            self.examples.extend(load_examples(BUNDLED_DIR))
        if examples_dir:
            extra = load_examples(examples_dir)
            logger.info("Loaded %d example script(s) from %s", len(extra), examples_dir)
            self.examples.extend(extra)

    async def search_examples(self, query: str, limit: int) -> list[ExampleDocument]:
        scored = [
            ExampleDocument(content=ex.content, metadata=ex.metadata, score=score_example(query, ex))
            for ex in self.examples
        ]
        scored.sort(key=lambda ex: ex.score or 0.0, reverse=True)
        return scored[:max(0, limit)]
