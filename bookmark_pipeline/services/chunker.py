"""Semantic markdown chunking with heading breadcrumbs and sentence overlap.

Splits a bookmark's markdown into :class:`~bookmark_pipeline.models.chunking.TextChunk`
objects sized for embedding models (~500 tokens, hard ceiling 550).

Boundaries are chosen in priority order:

1. **Sections** -- every heading opens a section.  A stack of
   ``(heading, depth)`` pairs yields the breadcrumb, e.g.
   ``"Guide > Setup > Linux"``.  Content before the first heading belongs
   to a root section with an empty breadcrumb.
2. **Atomic blocks** -- tables, fenced/indented code and raw HTML become
   a chunk of their own, whatever their size.  Tables are flattened to
   ``"Table: a | b"`` / ``"Row: 1 | 2"`` lines.
3. **Paragraphs** -- consecutive prose blocks of a section are split on
   blank lines and packed greedily up to the token budget.
4. **Sentences** -- only for a paragraph that alone exceeds the budget.
   A sentence that still does not fit falls back to words, then to a
   character split.

A second pass prefixes a chunk with the trailing sentences of its
predecessor when both are from the same section and the chunk is long
enough to benefit.  Atomic chunks never take part in overlap, neither as
source nor as target: a table or code block is kept verbatim, and prose
following one is not prefixed with sentences cut out of it.  Finally
every chunk gets a
``"Section: <breadcrumb>\\n\\n"`` header and its token count is taken on
the final string.

The header is reserved out of the packing budget, so every prose chunk
stays within ``hard_max_tokens`` including header and overlap.

The engine is a pure function of ``(markdown, config, token_counter)``:
identical input always yields byte-identical output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from bookmark_pipeline.models.chunking import ChunkingConfig, TextChunk
from bookmark_pipeline.services.tokenizer import TokenCounter, count_tokens

_PARAGRAPH_RE = re.compile(r"\n\n+")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_WORD_RE = re.compile(r"\s+")

_PARAGRAPH_SEPARATOR = "\n\n"
_SENTENCE_SEPARATOR = " "
_OVERLAP_SEPARATOR = "\n\n"
_BREADCRUMB_JOINER = " > "

_ATOMIC_NODE_TYPES = frozenset({"table", "fence", "code_block", "html_block"})

# CommonMark plus GFM tables.
_PARSER = MarkdownIt("commonmark").enable("table")


# ---------------------------------------------------------------------------
# Section extraction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContentBlock:
    """A top-level markdown node flattened to text."""

    content: str
    atomic: bool


@dataclass
class MarkdownSection:
    """Content under one heading (or before the first heading)."""

    breadcrumb: str
    blocks: list[ContentBlock] = field(default_factory=list)


def _inline_text(node: SyntaxTreeNode) -> str:
    if node.type in ("text", "code_inline", "html_inline"):
        return node.content
    if node.type in ("softbreak", "hardbreak"):
        return "\n"
    if node.type == "image":
        return node.content
    return "".join(_inline_text(child) for child in node.children)


def _table_text(node: SyntaxTreeNode) -> str:
    lines: list[str] = []
    for section in node.children:  # thead / tbody
        for row in section.children:
            cells = [_inline_text(cell).strip() for cell in row.children]
            prefix = "Table:" if not lines else "Row:"
            lines.append(f"{prefix} {' | '.join(cells)}")
    return "\n".join(lines)


def node_text(node: SyntaxTreeNode) -> str:
    """Flatten a block node to plain text.

    Inline markup is dropped (``**bold**`` -> ``bold``), block containers
    (lists, list items, blockquotes) join their children with newlines,
    and tables use the ``Table:`` / ``Row:`` form.
    """
    if node.type == "table":
        return _table_text(node)
    if node.type in ("fence", "code_block", "html_block"):
        return node.content
    if node.type == "inline":
        return _inline_text(node)
    if node.type == "hr":
        return ""
    return "\n".join(node_text(child) for child in node.children)


def parse_sections(markdown: str) -> list[MarkdownSection]:
    """Group the top-level nodes of *markdown* into breadcrumbed sections.

    Sections without any non-empty content block are dropped.
    """
    root = SyntaxTreeNode(_PARSER.parse(markdown))
    sections: list[MarkdownSection] = []
    stack: list[tuple[str, int]] = []
    current: MarkdownSection | None = None

    for node in root.children:
        if node.type == "heading":
            if current is not None and current.blocks:
                sections.append(current)
            depth = int(node.tag[1:])
            while stack and stack[-1][1] >= depth:
                stack.pop()
            stack.append((node_text(node).strip(), depth))
            current = MarkdownSection(
                breadcrumb=_BREADCRUMB_JOINER.join(text for text, _ in stack)
            )
            continue

        if current is None:
            current = MarkdownSection(breadcrumb="")
        content = node_text(node).strip()
        if content:
            current.blocks.append(
                ContentBlock(content=content, atomic=node.type in _ATOMIC_NODE_TYPES)
            )

    if current is not None and current.blocks:
        sections.append(current)
    return sections


def split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if s.strip()]


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _RawChunk:
    content: str
    breadcrumb: str
    section_id: int
    atomic: bool
    overlap: str = ""


class MarkdownChunker:
    """Splits markdown into bounded, breadcrumb-labelled chunks.

    Parameters
    ----------
    config:
        Token budgets; defaults to 500 / 100 overlap / 550 hard / 250 min.
    token_counter:
        Function returning the token count of a string.  Defaults to
        tiktoken ``cl100k_base``; tests inject a deterministic stand-in.
    """

    def __init__(
        self,
        config: ChunkingConfig | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self._config = config or ChunkingConfig()
        self._count = token_counter or count_tokens

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, markdown: str) -> list[TextChunk]:
        """Split *markdown* into chunks ordered by position (0-based, dense)."""
        if not markdown or not markdown.strip():
            return []

        raw_chunks: list[_RawChunk] = []
        for section_id, section in enumerate(parse_sections(markdown), start=1):
            raw_chunks.extend(self._chunk_section(section, section_id))

        return self._finalize(self._add_overlap(raw_chunks))

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def _chunk_section(self, section: MarkdownSection, section_id: int) -> list[_RawChunk]:
        budget = self._packing_budget(section.breadcrumb)
        chunks: list[_RawChunk] = []
        prose: list[str] = []

        def flush() -> None:
            for piece in self._pack_prose(prose, budget):
                chunks.append(_RawChunk(piece, section.breadcrumb, section_id, atomic=False))
            prose.clear()

        for block in section.blocks:
            if block.atomic:
                flush()
                chunks.append(_RawChunk(block.content, section.breadcrumb, section_id, atomic=True))
            else:
                prose.append(block.content)
        flush()
        return chunks

    def _pack_prose(self, texts: list[str], budget: int) -> list[str]:
        paragraphs = [p for text in texts for p in split_paragraphs(text)]
        pieces: list[str] = []
        for merged in self._merge(paragraphs, budget, _PARAGRAPH_SEPARATOR):
            if self._count(merged) > budget:
                pieces.extend(self._split_oversized(merged, budget))
            else:
                pieces.append(merged)
        return pieces

    def _merge(self, pieces: list[str], budget: int, separator: str) -> list[str]:
        """Greedily join *pieces* while the running total stays within *budget*.

        A piece that alone exceeds the budget is emitted on its own for the
        caller to split further.
        """
        merged: list[str] = []
        current = ""
        current_tokens = 0
        separator_tokens = self._count(separator)

        for piece in pieces:
            piece_tokens = self._count(piece)
            if piece_tokens > budget:
                if current:
                    merged.append(current)
                    current, current_tokens = "", 0
                merged.append(piece)
                continue

            new_tokens = current_tokens + piece_tokens + (separator_tokens if current else 0)
            if new_tokens <= budget:
                current = f"{current}{separator}{piece}" if current else piece
                current_tokens = new_tokens
            else:
                if current:
                    merged.append(current)
                current, current_tokens = piece, piece_tokens

        if current:
            merged.append(current)
        return merged

    def _split_oversized(self, text: str, budget: int) -> list[str]:
        pieces: list[str] = []
        for sentence_group in self._merge(split_sentences(text), budget, _SENTENCE_SEPARATOR):
            if self._count(sentence_group) <= budget:
                pieces.append(sentence_group)
                continue
            words = [w for w in _WORD_RE.split(sentence_group) if w]
            for word_group in self._merge(words, budget, _SENTENCE_SEPARATOR):
                if self._count(word_group) <= budget:
                    pieces.append(word_group)
                else:
                    pieces.extend(self._split_characters(word_group, budget))
        return pieces

    def _split_characters(self, text: str, budget: int) -> list[str]:
        if len(text) <= 1 or self._count(text) <= budget:
            return [text]
        middle = len(text) // 2
        return self._split_characters(text[:middle], budget) + self._split_characters(
            text[middle:], budget
        )

    # ------------------------------------------------------------------
    # Overlap
    # ------------------------------------------------------------------

    def _add_overlap(self, chunks: list[_RawChunk]) -> list[_RawChunk]:
        if not chunks or self._config.overlap_tokens <= 0:
            return chunks

        result = [chunks[0]]
        for previous, current in zip(chunks, chunks[1:]):
            eligible = (
                previous.section_id == current.section_id
                and not previous.atomic
                and not current.atomic
                and self._count(current.content) >= self._config.min_tokens_for_overlap
            )
            if not eligible:
                result.append(current)
                continue

            overlap = self._extract_overlap(previous.content)
            if overlap:
                overlap = self._trim_overlap(
                    overlap,
                    current.content,
                    self._config.hard_max_tokens - self._count(self._header(current.breadcrumb)),
                )
            result.append(
                _RawChunk(
                    content=current.content,
                    breadcrumb=current.breadcrumb,
                    section_id=current.section_id,
                    atomic=False,
                    overlap=overlap,
                )
            )
        return result

    def _extract_overlap(self, content: str) -> str:
        """Take trailing sentences of *content* worth about ``overlap_tokens``."""
        target = self._config.overlap_tokens
        ceiling = target * 1.5
        selected: list[str] = []
        total = 0

        for sentence in reversed(split_sentences(content)):
            if total >= target:
                break
            tokens = self._count(sentence)
            if total + tokens <= ceiling:
                selected.insert(0, sentence)
                total += tokens
            elif total == 0:
                selected = [sentence]
                break
            else:
                break
        return _SENTENCE_SEPARATOR.join(selected)

    def _trim_overlap(self, overlap: str, main_content: str, limit: int) -> str:
        """Drop leading overlap sentences until overlap + separator + main fits *limit*."""
        main_tokens = self._count(main_content)
        separator_tokens = self._count(_OVERLAP_SEPARATOR)
        sentences = split_sentences(overlap)
        trimmed = overlap

        while sentences:
            if self._count(trimmed) + separator_tokens + main_tokens <= limit:
                return trimmed
            sentences.pop(0)
            trimmed = _SENTENCE_SEPARATOR.join(sentences)
        return ""

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(self, chunks: list[_RawChunk]) -> list[TextChunk]:
        result: list[TextChunk] = []
        for position, chunk in enumerate(chunks):
            header = self._header(chunk.breadcrumb)
            body = (
                f"{chunk.overlap}{_OVERLAP_SEPARATOR}{chunk.content}"
                if chunk.overlap
                else chunk.content
            )
            content = header + body
            token_count = self._count(content)
            # Prose chunks stay within hard_max_tokens; drop the overlap
            # if the joined string overshoots.
            if chunk.overlap and token_count > self._config.hard_max_tokens:
                content = header + chunk.content
                token_count = self._count(content)
            result.append(
                TextChunk(
                    content=content,
                    position=position,
                    token_count=token_count,
                    breadcrumb_path=chunk.breadcrumb,
                )
            )
        return result

    @staticmethod
    def _header(breadcrumb: str) -> str:
        return f"Section: {breadcrumb}\n\n" if breadcrumb else ""

    def _packing_budget(self, breadcrumb: str) -> int:
        return max(1, self._config.max_tokens - self._count(self._header(breadcrumb)))


def chunk_markdown(
    markdown: str,
    config: ChunkingConfig | None = None,
    token_counter: TokenCounter | None = None,
) -> list[TextChunk]:
    """Functional entry point: ``MarkdownChunker(config, token_counter).chunk(markdown)``."""
    return MarkdownChunker(config=config, token_counter=token_counter).chunk(markdown)
