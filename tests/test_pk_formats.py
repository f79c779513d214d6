import asyncio
import struct

import pytest

from block_errors import DecodeConsistency, OutOfBounds, RegistryFailure
from pk_formats import (
    PK6_LAYOUT, PK7_LAYOUT, STORED_SIZE, decode_record, enrich, field_map, layout_for,
    parse_block, parse_tree
)
from poke_types import NO_MOVE, OriginTrainer, Pokemon, RawPokemon, Stats
from save_blocks import BlockArena, BlockKind, ByteSource
from trainer_registry import RequestQueue, TrainerRegistry


def record_block(data: bytes, kind: BlockKind = BlockKind.PK6, offset: int = 0):
    return BlockArena(ByteSource(data)).new_block(offset, kind)


def raw_pokemon(move_ids=(1, 2, 3, 4)) -> RawPokemon:
    zero = Stats(0, 0, 0, 0, 0, 0)
    return RawPokemon(
        kind=BlockKind.PK6, species_id=1, nickname="BULBASAUR", evs=zero, ivs=zero,
        gender=0, move_ids=tuple(move_ids), origin_trainer=OriginTrainer("ASH", 1, 2)
    )


def test_parse_pk6_end_to_end(make_record, registry):
    block = record_block(make_record(game_id=0x18, ot_local_id=0x2A))

    pokemon = asyncio.run(parse_block(block, registry))

    assert pokemon.species_id == 25
    assert pokemon.nickname == "PIKACHU"
    assert pokemon.move_ids == [1, NO_MOVE, NO_MOVE, NO_MOVE]
    assert pokemon.evs.total == 0
    assert pokemon.ivs.total == 0
    assert pokemon.ot_id == registry.ref_id
    assert pokemon.kind is BlockKind.PK6
    assert registry.calls == [("RED", 0x18, 0x2A)]
    assert block.parsed == [pokemon]


def test_pk7_decodes_like_pk6(make_record):
    data = make_record(species=722, nickname="Rowlet", evs=bytes([1, 2, 3, 4, 5, 6]),
                       iv_word=0x3FFFFFFF, moves=(33, 45, 0, 0))
    pk6 = decode_record(record_block(data, BlockKind.PK6))
    pk7 = decode_record(record_block(data, BlockKind.PK7))

    assert pk7.kind is BlockKind.PK7
    assert pk7.species_id == pk6.species_id == 722
    assert pk7.nickname == "Rowlet"
    assert pk7.evs == Stats(1, 2, 3, 4, 5, 6)
    assert pk7.ivs == Stats(31, 31, 31, 31, 31, 31)
    assert pk7.move_ids == (33, 45, 0, 0)
    assert pk7.origin_trainer == pk6.origin_trainer
    assert PK6_LAYOUT == PK7_LAYOUT


def test_decode_is_synchronous_and_needs_no_registry(make_record):
    raw = decode_record(record_block(make_record(iv_word=0x40000000 | 31)))
    assert raw.ivs.hp == 31
    assert raw.gender == 1
    assert raw.origin_trainer == OriginTrainer("RED", 0x18, 0x2A)


def test_container_blocks_parse_to_nothing(registry):
    block = record_block(bytes(4), BlockKind.CONTAINER)
    assert decode_record(block) is None
    assert asyncio.run(parse_block(block, registry)) is None
    assert registry.calls == []
    with pytest.raises(ValueError):
        layout_for(BlockKind.CONTAINER)


def test_missing_move_slot_is_a_decode_error(registry):
    with pytest.raises(DecodeConsistency):
        asyncio.run(enrich(raw_pokemon(move_ids=(1, 2, 3)), registry))
    assert registry.calls == []


def test_empty_move_slot_is_a_decode_error(registry):
    with pytest.raises(DecodeConsistency):
        asyncio.run(enrich(raw_pokemon(move_ids=(1, None, 2, 3)), registry))
    assert registry.calls == []


def test_enrich_builds_pokemon(registry):
    pokemon = asyncio.run(enrich(raw_pokemon(), registry))
    assert isinstance(pokemon, Pokemon)
    assert (pokemon.move1_id, pokemon.move2_id, pokemon.move3_id, pokemon.move4_id) == (1, 2, 3, 4)
    assert registry.calls == [("ASH", 1, 2)]


class FailingRegistry:
    async def add_or_get_trainer(self, name, game_id, local_id):
        raise ConnectionError("store offline")


class SlowRegistry:
    async def add_or_get_trainer(self, name, game_id, local_id):
        await asyncio.sleep(5)
        return 1


class NoneRegistry:
    async def add_or_get_trainer(self, name, game_id, local_id):
        return None


def test_registry_errors_are_wrapped():
    with pytest.raises(RegistryFailure) as excinfo:
        asyncio.run(enrich(raw_pokemon(), FailingRegistry()))
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_registry_timeout_is_a_registry_failure():
    with pytest.raises(RegistryFailure):
        asyncio.run(enrich(raw_pokemon(), SlowRegistry(), timeout=0.01))


def test_registry_without_id_is_a_registry_failure():
    with pytest.raises(RegistryFailure):
        asyncio.run(enrich(raw_pokemon(), NoneRegistry()))


def test_failed_parse_records_nothing(make_record):
    block = record_block(make_record())
    with pytest.raises(RegistryFailure):
        asyncio.run(parse_block(block, FailingRegistry()))
    assert block.parsed == []


def test_truncated_record_is_out_of_bounds(make_record, registry):
    block = record_block(make_record()[:0x80])
    with pytest.raises(OutOfBounds):
        asyncio.run(parse_block(block, registry))


def nested_save(make_record, records):
    header = b"\xEE" * 0x10
    box_header = b"\xDD" * 0x20
    data = header + box_header + b"".join(records)
    arena = BlockArena(ByteSource(data))
    root = arena.new_block(0x00)
    sector = arena.new_block(0x10, parent=root)
    box = arena.new_block(0x20, parent=sector)
    blocks = arena.add_records(box, BlockKind.PK6, len(records), STORED_SIZE)
    return root, blocks


def test_parse_tree_resolves_nested_records(make_record):
    records = [
        make_record(species=1, nickname="BULBA", ot_name="RED", ot_local_id=1),
        make_record(species=4, nickname="CHAR", ot_name="RED", ot_local_id=1),
        make_record(species=7, nickname="SQUIRT", ot_name="BLUE", ot_local_id=2),
    ]
    root, blocks = nested_save(make_record, records)
    registry = TrainerRegistry(RequestQueue(delay=0))

    results = asyncio.run(parse_tree(root, registry))

    assert [b.absolute_offset() for b in blocks] == [0x30, 0x30 + STORED_SIZE, 0x30 + 2 * STORED_SIZE]
    assert [p.species_id for p in results] == [1, 4, 7]
    assert [p.nickname for p in results] == ["BULBA", "CHAR", "SQUIRT"]
    assert results[0].ot_id == results[1].ot_id != results[2].ot_id
    assert len(registry) == 2


def test_parse_tree_isolates_failures(make_record, registry):
    records = [make_record(nickname="OK"), make_record()[:0x40]]
    root, blocks = nested_save(make_record, records)

    results = asyncio.run(parse_tree(root, registry, return_exceptions=True))

    assert results[0].nickname == "OK"
    assert isinstance(results[1], OutOfBounds)
    assert blocks[0].parsed and not blocks[1].parsed

    with pytest.raises(OutOfBounds):
        asyncio.run(parse_tree(root, registry))


@pytest.mark.parametrize("kind", [BlockKind.PK6, BlockKind.PK7])
def test_field_map_fits_stored_record(kind):
    fields = field_map(kind)
    offsets = [offset for _, offset, _ in fields]
    assert offsets == sorted(offsets)
    assert all(offset + size <= STORED_SIZE for _, offset, size in fields)
    assert ("moves", 0x5A, 8) in fields
    assert ("otGame", 0xDF, 1) in fields


def test_species_is_little_endian(make_record):
    data = bytearray(make_record())
    struct.pack_into("<H", data, 0x08, 0x0102)
    assert decode_record(record_block(bytes(data))).species_id == 258


def test_parse_tree_parses_reparented_record_once(make_record, registry):
    root, blocks = nested_save(make_record, [make_record(nickname="MOVED")])
    other_box = root.arena.new_block(0x30, parent=root)
    blocks[0].attach_to_parent(other_box)

    results = asyncio.run(parse_tree(root, registry))

    assert [p.nickname for p in results] == ["MOVED"]
    assert len(registry.calls) == 1
    assert len(blocks[0].parsed) == 1
