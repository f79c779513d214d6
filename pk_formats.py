"""
Generation 6 and 7 creature record parsers.

Parsing is split in two: `decode_record` reads every field out of a block
synchronously, then `enrich` swaps the decoded origin trainer for a registry
reference id. `parse_block` runs both.
"""

import asyncio
import logging
from typing import Any, NamedTuple, Optional, Protocol

import gen3_format
from block_errors import DecodeConsistency, RegistryFailure
from poke_types import MOVE_SLOTS, Pokemon, RawPokemon
from save_blocks import Block, BlockKind

logger = logging.getLogger(__name__)

# Stored (box) and party record sizes, shared by PK6 and PK7
STORED_SIZE = 0xE8
PARTY_SIZE = 0x104


class TrainerLookup(Protocol):
    async def add_or_get_trainer(self, name: str, game_id: int, local_id: int) -> int:
        ...


class RecordLayout(NamedTuple):
    origin: int
    species: int
    evs: int
    nickname: int
    moves: int
    ivs: int
    gender: int


# PK6 and PK7 currently agree on every offset; each keeps its own table
# so a generation can move a field without touching the other.
PK6_LAYOUT = RecordLayout(
    origin=0x00, species=0x08, evs=0x1E, nickname=0x40, moves=0x5A, ivs=0x74, gender=0x74
)
PK7_LAYOUT = RecordLayout(
    origin=0x00, species=0x08, evs=0x1E, nickname=0x40, moves=0x5A, ivs=0x74, gender=0x74
)


def layout_for(kind: BlockKind) -> RecordLayout:
    match kind:
        case BlockKind.PK6:
            return PK6_LAYOUT
        case BlockKind.PK7:
            return PK7_LAYOUT
        case BlockKind.CONTAINER:
            raise ValueError("Container blocks have no record layout")
    raise ValueError(f"Unknown block kind: {kind!r}")


def field_map(kind: BlockKind) -> list[tuple[str, int, int]]:
    """(name, offset, size) of every decoded field, sorted by offset."""
    layout = layout_for(kind)
    fields = [
        ("sp.Id", layout.species, 2),
        ("otLocalId", layout.origin + gen3_format.OT_ID_OFFSET, 1),
        ("EVs", layout.evs, 6),
        ("nickname", layout.nickname, gen3_format.NAME_LENGTH),
        ("moves", layout.moves, MOVE_SLOTS * 2),
        ("IV", layout.ivs, 4),
        ("otName", layout.origin + gen3_format.OT_NAME_OFFSET, gen3_format.NAME_LENGTH),
        ("otGame", layout.origin + gen3_format.OT_GAME_OFFSET, 1),
    ]
    return sorted(fields, key=lambda f: f[1])


def _decode_pk6(block: Block) -> RawPokemon:
    layout = PK6_LAYOUT
    moves = gen3_format.move_ids(block, layout.moves)
    origin = gen3_format.origin_trainer(block, layout.origin)
    return RawPokemon(
        kind=BlockKind.PK6,
        species_id=block.read_u16_le(layout.species),
        nickname=gen3_format.nickname(block, layout.nickname),
        evs=gen3_format.effort_values(block, layout.evs),
        ivs=gen3_format.individual_values(block, layout.ivs),
        gender=gen3_format.gender(block, layout.gender),
        move_ids=tuple(moves),
        origin_trainer=origin,
    )


def _decode_pk7(block: Block) -> RawPokemon:
    layout = PK7_LAYOUT
    moves = gen3_format.move_ids(block, layout.moves)
    origin = gen3_format.origin_trainer(block, layout.origin)
    return RawPokemon(
        kind=BlockKind.PK7,
        species_id=block.read_u16_le(layout.species),
        nickname=gen3_format.nickname(block, layout.nickname),
        evs=gen3_format.effort_values(block, layout.evs),
        ivs=gen3_format.individual_values(block, layout.ivs),
        gender=gen3_format.gender(block, layout.gender),
        move_ids=tuple(moves),
        origin_trainer=origin,
    )


def decode_record(block: Block) -> Optional[RawPokemon]:
    """Read all fields of a record block. Containers decode to None."""
    match block.kind:
        case BlockKind.CONTAINER:
            return None
        case BlockKind.PK6:
            return _decode_pk6(block)
        case BlockKind.PK7:
            return _decode_pk7(block)
    raise ValueError(f"Unknown block kind: {block.kind!r}")


async def enrich(raw: RawPokemon, registry: TrainerLookup,
                 timeout: Optional[float] = None) -> Pokemon:
    if len(raw.move_ids) != MOVE_SLOTS:
        raise DecodeConsistency(
            f"Expected {MOVE_SLOTS} move slots, decoded {len(raw.move_ids)}"
        )
    if any(move_id is None for move_id in raw.move_ids):
        raise DecodeConsistency(f"Missing move slot in {list(raw.move_ids)}")
    origin = raw.origin_trainer
    try:
        ot_id = await asyncio.wait_for(
            registry.add_or_get_trainer(origin.name, origin.game_id, origin.local_id),
            timeout
        )
    except RegistryFailure:
        raise
    except asyncio.TimeoutError as e:
        raise RegistryFailure(f"Trainer lookup for {origin.name!r} timed out after {timeout}s") from e
    except Exception as e:
        raise RegistryFailure(f"Trainer lookup for {origin.name!r} failed: {e}") from e
    if ot_id is None:
        raise RegistryFailure(f"Trainer registry returned no id for {origin.name!r}")

    move1_id, move2_id, move3_id, move4_id = raw.move_ids
    return Pokemon(
        ot_id=ot_id,
        species_id=raw.species_id,
        nickname=raw.nickname,
        evs=raw.evs,
        ivs=raw.ivs,
        move1_id=move1_id,
        move2_id=move2_id,
        move3_id=move3_id,
        move4_id=move4_id,
        gender=raw.gender,
        kind=raw.kind,
    )


async def parse_block(block: Block, registry: TrainerLookup,
                      timeout: Optional[float] = None) -> Optional[Pokemon]:
    raw = decode_record(block)
    if raw is None:
        return None
    pokemon = await enrich(raw, registry, timeout)
    block.record_parsed(pokemon)
    logger.debug("Parsed %s at 0x%X: #%d %s", raw.kind.value, block.absolute_offset(),
                 pokemon.species_id, pokemon.nickname)
    return pokemon


async def parse_tree(root: Block, registry: TrainerLookup, timeout: Optional[float] = None,
                     return_exceptions: bool = False) -> list[Any]:
    """Parse every record block under `root` concurrently.

    Results come back in tree order. A block listed under more than one
    parent is parsed once, at its first position. With `return_exceptions`,
    a failed record yields its exception in place instead of aborting the
    others.
    """
    records = list(dict.fromkeys(b for b in root.walk() if b.kind is not BlockKind.CONTAINER))
    return list(await asyncio.gather(
        *(parse_block(b, registry, timeout) for b in records),
        return_exceptions=return_exceptions
    ))
