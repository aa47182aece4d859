from __future__ import annotations

from typing import NamedTuple

from .constants import BLOCK_MULTIPLE_BYTES


class InvalidBlockSize(ValueError):
    def __init__(self, block_size: int) -> None:
        super().__init__(
            f"Block size {block_size} is not a positive multiple of {BLOCK_MULTIPLE_BYTES} bytes."
        )
        self.block_size = block_size


class BlockPlan(NamedTuple):
    number_full_blocks: int
    partial_last_block: bool
    partial_last_block_length: int


def plan(total_bytes: int, block_size: int) -> BlockPlan:
    if block_size <= 0:
        raise InvalidBlockSize(block_size)
    number_full_blocks, remainder = divmod(total_bytes, block_size)
    return BlockPlan(number_full_blocks, remainder != 0, remainder)


class UploadState:
    """Cursor over the blocks of one resumable upload.

    The state starts on the first block. ``advance()`` moves to the next one and
    returns False once the final block is current, so a driver sends the current
    block, then advances, until advancing fails. An empty payload has a single
    ``[0, 0)`` state with nothing to send.
    """

    def __init__(self, block_size: int, total_bytes: int, *, validate_alignment: bool = True) -> None:
        if block_size <= 0:
            raise InvalidBlockSize(block_size)
        if validate_alignment and block_size % BLOCK_MULTIPLE_BYTES != 0:
            raise InvalidBlockSize(block_size)
        if total_bytes < 0:
            raise ValueError("total_bytes must not be negative.")

        self.block_size = block_size
        self.total_bytes = total_bytes
        self.start_offset = 0
        self.end_offset = min(block_size, total_bytes)

    @classmethod
    def from_data(
        cls, block_size: int, data: bytes, *, validate_alignment: bool = True
    ) -> "UploadState":
        return cls(block_size, len(data), validate_alignment=validate_alignment)

    @property
    def number_full_blocks(self) -> int:
        return plan(self.total_bytes, self.block_size).number_full_blocks

    @property
    def partial_last_block(self) -> bool:
        return plan(self.total_bytes, self.block_size).partial_last_block

    @property
    def partial_last_block_length(self) -> int:
        return plan(self.total_bytes, self.block_size).partial_last_block_length

    @property
    def exhausted(self) -> bool:
        return self.end_offset == self.total_bytes

    def current_range(self) -> tuple[int, int]:
        return self.start_offset, self.end_offset

    def content_range(self) -> str:
        if self.end_offset == self.start_offset:
            raise ValueError("Cannot build a Content-Range for an empty block.")
        return f"bytes {self.start_offset}-{self.end_offset - 1}/{self.total_bytes}"

    def block(self, data: bytes) -> bytes:
        return data[self.start_offset : self.end_offset]

    def advance(self) -> bool:
        if self.exhausted:
            return False
        self.start_offset = self.end_offset
        self.end_offset = min(self.start_offset + self.block_size, self.total_bytes)
        return True

    def __repr__(self) -> str:
        return (
            f"UploadState(block_size={self.block_size}, total_bytes={self.total_bytes}, "
            f"range=[{self.start_offset}, {self.end_offset}))"
        )
