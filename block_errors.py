"""Typed failures raised while resolving and decoding save blocks."""


class BlockError(RuntimeError):
    """Base class for every failure raised by the block decoding core."""


class OutOfBounds(BlockError):
    """Raised when a resolved byte range falls outside the source buffer."""

    def __init__(self, offset: int, length: int, size: int) -> None:
        self.offset = offset
        self.length = length
        self.size = size
        super().__init__(
            f"Read of {length} bytes at 0x{offset:X} exceeds buffer of {size} bytes"
        )


class CyclicAncestry(BlockError):
    """Raised when a block's parent chain loops back on itself."""

    def __init__(self, handle: int, chain: list[int]) -> None:
        self.handle = handle
        self.chain = chain
        path = " -> ".join(str(h) for h in chain)
        super().__init__(f"Block {handle} has a cyclic parent chain: {path}")


class DecodeConsistency(BlockError):
    """Raised when a fixed-count decode result did not materialize."""


class RegistryFailure(BlockError):
    """Raised when the trainer registry rejects or times out a lookup."""
