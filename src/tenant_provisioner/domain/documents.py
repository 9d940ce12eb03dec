"""Structured representation of line-oriented configuration documents.

A document is parsed into an ordered list of blocks. Each block keeps its
raw lines (line endings included), so serializing an unmodified document
reproduces the input byte for byte and inserting a block never touches the
bytes of any other block.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from tenant_provisioner.exceptions import AnchorNotFoundError


@dataclass(slots=True)
class Block:
    """A named run of consecutive lines.

    Attributes:
        kind: Parser-specific category (``"section"``, ``"service"``, ``"server"``, ...).
        name: Title of the block, empty for anonymous text.
        lines: Raw lines including their line endings.
    """

    kind: str
    name: str = ""
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.lines)


BlockPredicate = Callable[[Block], bool]


@dataclass(slots=True)
class Anchor:
    """Named predicate locating the insertion point inside a document."""

    description: str
    matches: BlockPredicate


@dataclass(slots=True)
class BlockDocument:
    """Ordered list of blocks with insert-only editing helpers."""

    blocks: list[Block] = field(default_factory=list)
    newline: str = "\n"
    path: Path | None = None

    def serialize(self) -> str:
        return "".join(block.text for block in self.blocks)

    def find(self, predicate: BlockPredicate) -> int | None:
        """Return the index of the first block matching ``predicate``."""
        for index, block in enumerate(self.blocks):
            if predicate(block):
                return index
        return None

    def insert_before(self, anchor: Anchor, block: Block) -> int:
        """Insert ``block`` immediately before the first block matching ``anchor``.

        Returns:
            Index of the inserted block.

        Raises:
            AnchorNotFoundError: If no block matches the anchor.
        """
        index = self.find(anchor.matches)
        if index is None:
            raise AnchorNotFoundError(self.path or "<document>", anchor.description)
        self.blocks.insert(index, block)
        return index

    def iter_lines(self) -> Iterator[tuple[int, int, str]]:
        """Yield ``(block_index, line_index, line)`` across the whole document."""
        for block_index, block in enumerate(self.blocks):
            for line_index, line in enumerate(block.lines):
                yield block_index, line_index, line

    def lines(self) -> list[str]:
        return [line for _, _, line in self.iter_lines()]

    def insert_line_after(self, block_index: int, line_index: int, line: str) -> None:
        self.blocks[block_index].lines.insert(line_index + 1, line)

    def replace_line(self, block_index: int, line_index: int, line: str) -> None:
        self.blocks[block_index].lines[line_index] = line


def detect_newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def split_lines(text: str) -> list[str]:
    """Split ``text`` into lines keeping their endings (``\\n`` or ``\\r\\n``)."""
    return text.splitlines(keepends=True)


def strip_newline(line: str) -> str:
    return line.rstrip("\r\n")


def read_text_exact(path: Path) -> str:
    """Read ``path`` without newline translation so ``\\r\\n`` survives."""
    with path.open(encoding="utf-8", newline="") as handle:
        return handle.read()
