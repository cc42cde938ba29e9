"""LaTeX escaping and a small node tree for building document sources.

Only ``Text`` nodes carry user or model supplied text, and they always go
through ``process_content``. Everything else is trusted template markup.
"""

import re
from dataclasses import dataclass, field
from typing import List, Sequence, Union

LATEX_SPECIAL_CHARS = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}

_SPECIAL_RE = re.compile("|".join(re.escape(char) for char in LATEX_SPECIAL_CHARS))
_ESCAPED_GAP_RE = re.compile(r"(?:\\_){3,}")
_RAW_GAP_RE = re.compile(r"_{3,}")

DEFAULT_GAP_WIDTH = "3cm"


def escape_latex(text: str) -> str:
    """Neutralize every LaTeX special character in a single pass.

    A single pass matters: escaping backslashes first and braces second
    would mangle the braces of \\textbackslash{}.
    """
    if not text:
        return ""
    return _SPECIAL_RE.sub(lambda match: LATEX_SPECIAL_CHARS[match.group()], text)


def gap(width: str = DEFAULT_GAP_WIDTH) -> str:
    return rf"\luecke{{{width}}}"


def process_content(text: str, gap_width: str = DEFAULT_GAP_WIDTH) -> str:
    """Escape text and turn ___ placeholders into fill-in gaps."""
    if not text:
        return ""
    processed = escape_latex(text)
    processed = _ESCAPED_GAP_RE.sub(lambda _: gap(gap_width), processed)
    processed = _RAW_GAP_RE.sub(lambda _: gap(gap_width), processed)
    return processed


# =============================================================================
# NODES
# =============================================================================

class Node:
    def render(self) -> str:
        raise NotImplementedError


@dataclass
class Raw(Node):
    """Trusted template markup, emitted verbatim."""
    latex: str

    def render(self) -> str:
        return self.latex


@dataclass
class Text(Node):
    """Untrusted text, escaped on render."""
    text: str
    gap_width: str = DEFAULT_GAP_WIDTH

    def render(self) -> str:
        return process_content(self.text, self.gap_width)


Inline = Union[str, Node]


def _render_inline(value: Inline) -> str:
    # Bare strings are treated as trusted markup.
    return value if isinstance(value, str) else value.render()


@dataclass
class Block(Node):
    """Sequence of nodes joined by newlines."""
    children: List[Node] = field(default_factory=list)

    def add(self, node: Node) -> "Block":
        self.children.append(node)
        return self

    def render(self) -> str:
        return "\n".join(child.render() for child in self.children)


@dataclass
class Paragraph(Node):
    """A non-indented paragraph followed by vertical space."""
    content: Node
    space_after: str = "0.3cm"

    def render(self) -> str:
        return rf"\noindent {self.content.render()} \par \vspace{{{self.space_after}}}"


@dataclass
class Enumerate(Node):
    """Lettered list a), b), c) ..."""
    items: List[Node] = field(default_factory=list)
    label: str = r"\alph*)"

    def render(self) -> str:
        lines = [rf"\begin{{enumerate}}[label={self.label}, leftmargin=*, nosep]"]
        lines.extend(rf"\item {item.render()}" for item in self.items)
        lines.append(r"\end{enumerate}")
        return "\n".join(lines)


@dataclass
class Table(Node):
    """tabularx table over the full text width with ruled rows."""
    column_spec: str
    rows: List[Sequence[Inline]] = field(default_factory=list)

    def add_row(self, cells: Sequence[Inline]) -> "Table":
        self.rows.append(cells)
        return self

    def render(self) -> str:
        lines = [rf"\begin{{tabularx}}{{\textwidth}}{{{self.column_spec}}}", r"\hline"]
        for row in self.rows:
            lines.append(" & ".join(_render_inline(cell) for cell in row) + r" \\ \hline")
        lines.append(r"\end{tabularx}")
        return "\n".join(lines)
