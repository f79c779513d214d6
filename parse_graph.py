#!/usr/bin/env python3

import sys
import argparse
import asyncio
from typing import List, Optional, Tuple

from block_errors import BlockError
from parse_save import RecordFileParser, DEFAULT_SAVE_PATH, parse_int
from pk_formats import STORED_SIZE, field_map
from save_blocks import BlockKind

RESET = '\033[0m'

# (start, end, color, name)
ColoredRange = Tuple[int, int, str, str]


def colored_ranges(fields: List[Tuple[str, int, int]]) -> List[ColoredRange]:
    return [(o, o + s, f'\033[{91 + i % 6}m', n) for i, (n, o, s) in enumerate(fields)]


def field_at(ranges: List[ColoredRange], idx: int) -> Optional[ColoredRange]:
    return next((r for r in ranges if r[0] <= idx < r[1]), None)


def render_line(raw_bytes: bytes, pos: int, end: int, ranges: List[ColoredRange]) -> Tuple[str, str]:
    """Return (label line, hex line) for raw_bytes[pos:end]."""
    labels, cells = "", []
    visible = 0
    for idx in range(pos, end):
        field = field_at(ranges, idx)
        if field is None:
            cells.append(f"{raw_bytes[idx]:02x}")
            continue
        start, stop, color, name = field
        cells.append(f"{color}{raw_bytes[idx]:02x}{RESET}")
        if idx == start or idx == pos:
            width = (min(stop, end) - idx) * 3 - 1
            text = name if len(name) <= width else (name[:width - 1] + '.' if width > 0 else '')
            # ANSI codes take no columns, so pad by what has been drawn
            labels += " " * ((idx - pos) * 3 - visible)
            labels += f"{color}{text.ljust(width)}{RESET}"
            visible = (idx - pos) * 3 + width
    return labels, ' '.join(cells)


def display_colored_bytes(raw_bytes: bytes, ranges: List[ColoredRange], base: int = 0,
                          bytes_per_line: int = 16) -> None:
    for pos in range(0, len(raw_bytes), bytes_per_line):
        end = min(pos + bytes_per_line, len(raw_bytes))
        labels, hex_line = render_line(raw_bytes, pos, end, ranges)
        if labels.strip():
            print()
            print(f"        {labels}")
        print(f"{base + pos:06x}: {hex_line}")


def main(argv: Optional[List[str]] = None) -> None:
    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding='utf-8')  # type: ignore

    parser = argparse.ArgumentParser(description="Visualize the decoded fields of Gen 6/7 records")
    parser.add_argument("path", nargs="?", default=DEFAULT_SAVE_PATH,
                        help=f"Path to record or save file (default: {DEFAULT_SAVE_PATH})")
    parser.add_argument('--format', choices=['pk6', 'pk7'], default='pk6', help='Record format')
    parser.add_argument('--offset', type=parse_int, default=0, help='Offset of the first record')
    parser.add_argument('--count', type=int, default=1, help='Number of records')
    parser.add_argument('--stride', type=parse_int, default=STORED_SIZE, help='Bytes per record')
    args = parser.parse_args(argv)

    kind = BlockKind(args.format)
    save_parser = RecordFileParser(args.path, kind, args.offset, args.count, args.stride, request_delay=0)
    save_parser.load_save_file()
    save_parser.build_tree()
    asyncio.run(save_parser.parse_records())
    ranges = colored_ranges(field_map(kind))

    if save_parser.root is None:
        raise ValueError("Save data not loaded")
    for block in save_parser.root.walk():
        if block.kind is BlockKind.CONTAINER:
            continue
        label = block.parsed[0].nickname if block.parsed else "undecoded"
        print(f"Block {block.handle} @ 0x{block.absolute_offset():06X} ({label}):\n")
        try:
            raw = block.byte_range(0x00, args.stride)
        except BlockError as e:
            print(f"  {e}")
            continue
        display_colored_bytes(raw, ranges, block.absolute_offset())
        print("\n" + "-" * 80 + "\n")


if __name__ == "__main__":
    main()
