"""Markdown normalization for the chunking pipeline.

Handles:
- YAML frontmatter parsing
- Markdown to structured plain text rendering
- Heading hierarchy extraction
"""
import re
from typing import Dict, List, Any, Optional, Tuple
from dataclasses import dataclass
import mistune
import yaml
from bs4 import BeautifulSoup
import structlog

from ragprep import config

logger = structlog.get_logger()

# Control characters except tab and newline
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
HTML_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)
HTML_TAG_PATTERN = re.compile(r"<[^>]*>")
NESTED_ITEM_MARKER = "\n• "


def clean_inline(text: str) -> str:
    """Remove control characters and collapse all whitespace to single spaces."""
    text = re.sub(r"[\x00-\x1f\x7f]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def html_to_text(html: str) -> str:
    """Reduce an HTML fragment to its visible text."""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return clean_inline(text)


@dataclass
class Heading:
    """Represents a markdown heading with hierarchy."""

    level: int  # 1-6 for h1-h6
    text: str
    char_position: int
    line_number: int


class PlainTextRenderer(mistune.HTMLRenderer):
    """Renders markdown as plain text that keeps headings, lists, code and tables readable."""

    def __init__(self, table_marker: Optional[str] = None):
        super().__init__(escape=False)
        self.table_marker = table_marker if table_marker is not None else config.TABLE_MARKER

    # Inline level

    def text(self, text: str) -> str:
        return text

    def emphasis(self, text: str) -> str:
        return text

    def strong(self, text: str) -> str:
        return text

    def link(self, text: str, url: str, title: Optional[str] = None) -> str:
        return f"{text} ({title})" if title else text

    def image(self, text: str, url: str, title: Optional[str] = None) -> str:
        return text

    def codespan(self, text: str) -> str:
        return f"`{text}`"

    def linebreak(self) -> str:
        return "\n"

    def softbreak(self) -> str:
        return "\n"

    def inline_html(self, html: str) -> str:
        return html_to_text(html)

    # Block level

    def paragraph(self, text: str) -> str:
        return f"{text}\n\n"

    def heading(self, text: str, level: int, **attrs: Any) -> str:
        return f"\n{'#' * level} {clean_inline(text)}\n"

    def blank_line(self) -> str:
        return ""

    def thematic_break(self) -> str:
        return "\n\n"

    def block_text(self, text: str) -> str:
        return text

    def block_code(self, code: str, info: Optional[str] = None) -> str:
        code = code.strip()
        if not code:
            return ""
        language = info.split()[0] if info and info.strip() else "text"
        return f"```{language}\n{code}\n```\n\n"

    def block_quote(self, text: str) -> str:
        return f"{text}\n\n"

    def block_html(self, html: str) -> str:
        text = html_to_text(html)
        return f"{text}\n\n" if text else ""

    def block_error(self, text: str) -> str:
        return f"{text}\n\n"

    def list(self, text: str, ordered: bool, **attrs: Any) -> str:
        # Leading newline keeps a nested list off its parent item's line
        return f"\n{text}\n"

    def list_item(self, text: str) -> str:
        head, marker, nested = text.partition(NESTED_ITEM_MARKER)
        line = f"• {clean_inline(head)}\n"
        if marker:
            line += f"• {nested.strip()}\n"
        return line

    # Tables (flattened, one row per line)

    def table(self, text: str) -> str:
        return f"\n{self.table_marker}\n{text}\n\n"

    def table_head(self, text: str) -> str:
        return self.table_row(text)

    def table_body(self, text: str) -> str:
        return text

    def table_row(self, text: str) -> str:
        return text.rstrip().rstrip("|").rstrip() + "\n"

    def table_cell(self, text: str, align: Optional[str] = None, head: bool = False) -> str:
        return f"{clean_inline(text)} | "


class MarkdownNormalizer:
    """Turns raw markdown into normalized plain text ready for paragraph splitting."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(
        r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL | re.MULTILINE
    )

    # Regex for markdown headings
    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)$", re.MULTILINE)

    def __init__(self, table_marker: Optional[str] = None):
        """Initialize the normalizer.

        Args:
            table_marker: Line placed before flattened tables (default from config)
        """
        self._markdown = mistune.create_markdown(
            renderer=PlainTextRenderer(table_marker=table_marker),
            plugins=["table"],
        )

    def normalize(self, text: str) -> str:
        """Convert markdown to normalized plain text.

        Never raises for malformed markdown; if rendering fails the text is
        reduced with a best-effort tag strip instead.

        Args:
            text: Raw document text

        Returns:
            Normalized text with paragraphs separated by blank lines
        """
        if not text or not text.strip():
            return ""

        _, body = self.split_frontmatter(text)

        cleaned = HTML_COMMENT_PATTERN.sub("", body)
        cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()

        if not cleaned:
            return ""

        try:
            rendered = self._markdown(cleaned)
        except Exception as e:
            logger.warning(
                "markdown_render_failed",
                error=str(e),
                error_type=type(e).__name__,
                text_preview=cleaned[:100],
            )
            rendered = HTML_TAG_PATTERN.sub(" ", cleaned)

        return self._post_process(rendered)

    def _post_process(self, text: str) -> str:
        """Strip control characters, collapse whitespace runs and blank lines."""
        text = CONTROL_CHARS_PATTERN.sub("", text)
        text = re.sub(r"[ \t\u00a0]+", " ", text)
        text = re.sub(r"[ \t]+$", "", text, flags=re.MULTILINE)
        text = re.sub(r"^[ \t]+", "", text, flags=re.MULTILINE)
        text = re.sub(r"\n\s*\n\s*\n", "\n\n", text)
        return text.strip()

    def split_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = {}

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end():]

    def extract_headings(self, content: str) -> List[Heading]:
        """Extract all markdown headings with their positions.

        Args:
            content: Markdown or normalized text

        Returns:
            List of Heading objects
        """
        headings = []

        for match in self.HEADING_PATTERN.finditer(content):
            headings.append(
                Heading(
                    level=len(match.group(1)),
                    text=match.group(2).strip(),
                    char_position=match.start(),
                    line_number=content[: match.start()].count("\n") + 1,
                )
            )

        return headings

    def get_heading_context(
        self, headings: List[Heading], char_position: int
    ) -> str:
        """Get hierarchical heading context for a given character position.

        Args:
            headings: List of all headings in the document
            char_position: Character position to get context for

        Returns:
            Heading context string like "# Main > ## Sub > ### Detail"
        """
        preceding_headings = [h for h in headings if h.char_position <= char_position]

        if not preceding_headings:
            return ""

        context_stack: List[Heading] = []
        for heading in preceding_headings:
            # Pop headings at same or deeper level
            while context_stack and context_stack[-1].level >= heading.level:
                context_stack.pop()
            context_stack.append(heading)

        return " > ".join(f"{'#' * h.level} {h.text}" for h in context_stack)
