import struct

import pytest

from pk_formats import STORED_SIZE


def encode_name(name: str, length: int = 0x18) -> bytes:
    return name.encode("utf-16-le").ljust(length, b"\x00")


def build_record(species: int = 25, nickname: str = "PIKACHU", evs: bytes = bytes(6),
                 iv_word: int = 0, moves: tuple = (1, 0, 0, 0), ot_name: str = "RED",
                 game_id: int = 0x18, ot_local_id: int = 0x2A, size: int = STORED_SIZE) -> bytes:
    data = bytearray(size)
    data[0x0C] = ot_local_id
    struct.pack_into("<H", data, 0x08, species)
    data[0x1E:0x24] = evs
    data[0x40:0x58] = encode_name(nickname)
    struct.pack_into("<4H", data, 0x5A, *moves)
    struct.pack_into("<I", data, 0x74, iv_word)
    data[0xB0:0xC8] = encode_name(ot_name)
    data[0xDF] = game_id
    return bytes(data)


class RecordingRegistry:
    def __init__(self, ref_id: int = 7) -> None:
        self.ref_id = ref_id
        self.calls = []

    async def add_or_get_trainer(self, name, game_id, local_id):
        self.calls.append((name, game_id, local_id))
        return self.ref_id


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def name_bytes():
    return encode_name


@pytest.fixture
def registry():
    return RecordingRegistry()


@pytest.fixture
def box_file(tmp_path):
    path = tmp_path / "box.bin"
    path.write_bytes(
        b"\x00" * 0x10
        + build_record(species=25, nickname="PIKACHU", moves=(85, 0, 0, 0))
        + build_record(species=133, nickname="EEVEE", ot_name="BLUE", ot_local_id=2)
    )
    return path
