"""
Field decoders shared by Generation 3 and later creature records.

The modern format packs more into fewer bytes than the Gen 1/2 layout and
needs bit masks to pull individual values out. All offsets are relative to
the block passed in, so the same decoders work for a standalone .pk6 file
and for a record embedded in a save file.
"""

import struct

from save_blocks import Block
from poke_types import MOVE_SLOTS, OriginTrainer, Stats

NAME_LENGTH = 0x18

# Origin trainer fields, relative to the start of the record
OT_NAME_OFFSET = 0xB0
OT_GAME_OFFSET = 0xDF
OT_ID_OFFSET = 0x0C

IV_BITS = 5
IV_MASK = 31
GENDER_SHIFT = 30
# Decimal 11, not 0b11: with the sign bit set this yields 10 or 11
GENDER_MASK = 11


def nickname(block: Block, offset: int) -> str:
    return block.read_fixed_string(offset, NAME_LENGTH)


def effort_values(block: Block, offset: int) -> Stats:
    hp, attack, defense, sp_attack, sp_defense, speed = block.byte_range(offset, 6)
    return Stats(
        hp=hp, attack=attack, defense=defense,
        sp_attack=sp_attack, sp_defense=sp_defense, speed=speed
    )


def individual_values(block: Block, offset: int) -> Stats:
    """Split a 32-bit word into six 5-bit individual values."""
    word = block.read_u32_le(offset)
    hp, attack, defense, sp_attack, sp_defense, speed = [
        (word >> (i * IV_BITS)) & IV_MASK for i in range(6)
    ]
    return Stats(
        hp=hp, attack=attack, defense=defense,
        sp_attack=sp_attack, sp_defense=sp_defense, speed=speed
    )


def gender(block: Block, offset: int) -> int:
    """Top two bits of the individual-value word.

    The word is read signed, so a set sign bit shifts in ones and the
    mask lets bit 3 through.
    """
    word = block.read_i32_le(offset)
    return (word >> GENDER_SHIFT) & GENDER_MASK


def move_ids(block: Block, offset: int) -> list[int]:
    return list(struct.unpack(f"<{MOVE_SLOTS}H", block.byte_range(offset, MOVE_SLOTS * 2)))


def origin_trainer(block: Block, offset: int) -> OriginTrainer:
    return OriginTrainer(
        name=block.read_fixed_string(offset + OT_NAME_OFFSET, NAME_LENGTH),
        game_id=block.read_u8(offset + OT_GAME_OFFSET),
        local_id=block.read_u8(offset + OT_ID_OFFSET)
    )
