"""
Self-relative save blocks.

A save file is read through a single ByteSource. Regions of it are described
by Blocks: each block stores an offset relative to its parent, so a creature
record can be addressed the same way whether it sits at the start of a .pk6
file or inside a box inside a save sector. Blocks live in a BlockArena and
refer to each other by integer handle.
"""

import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from block_errors import CyclicAncestry, OutOfBounds

logger = logging.getLogger(__name__)


class ByteSource:
    """Read-only byte buffer of one opened file."""

    def __init__(self, data: bytes, path: Optional[Path] = None) -> None:
        self._data = bytes(data)
        self.path = path

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ByteSource":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Save file not found: {path}")
        try:
            with open(path, "rb") as f:
                data = f.read()
        except IOError as e:
            raise IOError(f"Failed to read save file: {e}")
        logger.debug("Loaded %d bytes from %s", len(data), path)
        return cls(data, path)

    def __len__(self) -> int:
        return len(self._data)

    def read(self, absolute_offset: int, length: int) -> bytes:
        end = absolute_offset + length
        if absolute_offset < 0 or length < 0 or end > len(self._data):
            raise OutOfBounds(absolute_offset, length, len(self._data))
        return self._data[absolute_offset:end]


class BlockKind(Enum):
    CONTAINER = "container"
    PK6 = "pk6"
    PK7 = "pk7"


@dataclass
class _Node:
    offset: int
    kind: BlockKind
    parent: Optional[int] = None
    children: list[int] = field(default_factory=list)
    parsed: list[Any] = field(default_factory=list)


class BlockArena:
    """Owns every block of one parse session over a single ByteSource."""

    def __init__(self, source: ByteSource) -> None:
        self.source = source
        self._nodes: list[_Node] = []

    def new_block(self, offset: int = 0x00, kind: BlockKind = BlockKind.CONTAINER,
                  parent: Optional["Block"] = None) -> "Block":
        self._nodes.append(_Node(offset=offset, kind=kind))
        block = Block(self, len(self._nodes) - 1)
        if parent is not None:
            block.attach_to_parent(parent)
        return block

    def add_records(self, parent: "Block", kind: BlockKind, count: int, stride: int,
                    start: int = 0x00) -> list["Block"]:
        """Lay out `count` records of `kind` every `stride` bytes inside `parent`."""
        return [self.new_block(start + i * stride, kind, parent) for i in range(count)]

    def block(self, handle: int) -> "Block":
        if not 0 <= handle < len(self._nodes):
            raise IndexError(f"No block with handle {handle}")
        return Block(self, handle)

    def roots(self) -> list["Block"]:
        return [Block(self, h) for h, node in enumerate(self._nodes) if node.parent is None]

    def records(self) -> list["Block"]:
        return [Block(self, h) for h, node in enumerate(self._nodes)
                if node.kind is not BlockKind.CONTAINER]

    def node(self, handle: int) -> _Node:
        return self._nodes[handle]

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator["Block"]:
        return (Block(self, h) for h in range(len(self._nodes)))


class Block:
    """Handle to one node of a BlockArena with primitive decoders.

    Every read takes an offset relative to this block's own start and is
    resolved through `absolute_offset`, which walks the parent chain on each
    call.
    """

    __slots__ = ("arena", "handle")

    def __init__(self, arena: BlockArena, handle: int) -> None:
        self.arena = arena
        self.handle = handle

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Block):
            return NotImplemented
        return self.arena is other.arena and self.handle == other.handle

    def __hash__(self) -> int:
        return hash((id(self.arena), self.handle))

    def __repr__(self) -> str:
        return f"Block(handle={self.handle}, kind={self.kind.value}, offset=0x{self.offset:X})"

    @property
    def _node(self) -> _Node:
        return self.arena.node(self.handle)

    @property
    def source(self) -> ByteSource:
        return self.arena.source

    @property
    def offset(self) -> int:
        return self._node.offset

    @offset.setter
    def offset(self, value: int) -> None:
        self._node.offset = value

    @property
    def kind(self) -> BlockKind:
        return self._node.kind

    @property
    def parent(self) -> Optional["Block"]:
        parent = self._node.parent
        return None if parent is None else Block(self.arena, parent)

    @property
    def children(self) -> list["Block"]:
        return [Block(self.arena, h) for h in self._node.children]

    @property
    def parsed(self) -> list[Any]:
        """Values parsed from this block only, not from its children."""
        return list(self._node.parsed)

    def record_parsed(self, value: Any) -> None:
        self._node.parsed.append(value)

    def absolute_offset(self, relative: int = 0x00) -> int:
        total = relative + self.offset
        seen = {self.handle}
        chain = [self.handle]
        parent = self._node.parent
        while parent is not None:
            chain.append(parent)
            if parent in seen:
                raise CyclicAncestry(self.handle, chain)
            seen.add(parent)
            node = self.arena.node(parent)
            total += node.offset
            parent = node.parent
        return total

    def byte_range(self, offset: int, length: int) -> bytes:
        return self.source.read(self.absolute_offset(offset), length)

    def read_u8(self, offset: int) -> int:
        return self.byte_range(offset, 1)[0]

    def read_u16_le(self, offset: int) -> int:
        return struct.unpack("<H", self.byte_range(offset, 2))[0]

    def read_u32_le(self, offset: int) -> int:
        return struct.unpack("<I", self.byte_range(offset, 4))[0]

    def read_i32_le(self, offset: int) -> int:
        return struct.unpack("<i", self.byte_range(offset, 4))[0]

    def read_fixed_string(self, offset: int, byte_length: int) -> str:
        """Decode a NUL-terminated string stored as 2-byte code units.

        Only the low byte of each unit is sampled.
        """
        codes = []
        for code in self.byte_range(offset, byte_length)[::2]:
            if code == 0:
                break
            codes.append(code)
        return "".join(chr(c) for c in codes).replace("\x00", "")

    def walk(self, _path: tuple[int, ...] = ()) -> Iterator["Block"]:
        """Yield this block and its descendants, depth first, in attach order."""
        path = _path + (self.handle,)
        if self.handle in _path:
            raise CyclicAncestry(self.handle, list(path))
        yield self
        for child in self.children:
            yield from child.walk(path)

    def _check_same_arena(self, other: "Block") -> None:
        if other.arena is not self.arena:
            raise ValueError("Blocks must belong to the same arena and byte source")

    def attach_to_parent(self, parent: "Block") -> None:
        """Make this block a child of `parent`, keeping its stored offset.

        A block that already had a parent stays listed in that parent's
        children as well.
        """
        self._check_same_arena(parent)
        self._node.parent = parent.handle
        parent._node.children.append(self.handle)

    def attach_child(self, child: "Block") -> None:
        """Annex `child`, folding this block's absolute offset into its offset.

        The child's parent link is set as well, so `child.absolute_offset`
        counts this block's chain a second time.
        """
        self._check_same_arena(child)
        child.offset += self.absolute_offset(0x00)
        self._node.children.append(child.handle)
        child._node.parent = self.handle
