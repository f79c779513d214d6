from typing import TypedDict, Any, NamedTuple
from dataclasses import dataclass

from save_blocks import BlockKind

# Move id 0 marks an empty move slot in the source data
NO_MOVE = 0
MOVE_SLOTS = 4

# Type definitions for structured output
class StatsDictData(TypedDict):
    hp: int
    attack: int
    defense: int
    sp_attack: int
    sp_defense: int
    speed: int

class PokemonDictData(TypedDict):
    format: str
    otId: int
    speciesId: int
    nickname: str
    gender: int
    moves: list[int]
    evs: StatsDictData
    ivs: StatsDictData
    totalEvs: int
    totalIvs: int

class BlockDictData(TypedDict):
    handle: int
    kind: str
    offset: int
    absoluteOffset: int
    parsed: list[Any]
    children: list["BlockDictData"]

class FailureData(TypedDict):
    handle: int
    absoluteOffset: int
    error: str
    message: str

class SessionData(TypedDict):
    pokemon: list[Any]  # Pokemon records, in file order
    failures: list[FailureData]
    trainers: dict[int, Any]
    source_size: int

@dataclass(frozen=True)
class Stats:
    hp: int
    attack: int
    defense: int
    sp_attack: int
    sp_defense: int
    speed: int

    def to_list(self) -> list[int]:
        return [self.hp, self.attack, self.defense, self.sp_attack, self.sp_defense, self.speed]

    def to_dict(self) -> StatsDictData:
        return StatsDictData(
            hp=self.hp, attack=self.attack, defense=self.defense,
            sp_attack=self.sp_attack, sp_defense=self.sp_defense, speed=self.speed
        )

    @property
    def total(self) -> int:
        return sum(self.to_list())

class OriginTrainer(NamedTuple):
    name: str
    game_id: int
    local_id: int

@dataclass(frozen=True)
class Trainer:
    name: str
    game_id: int
    trainer_id: int

    @classmethod
    def from_origin(cls, origin: OriginTrainer) -> 'Trainer':
        return cls(name=origin.name, game_id=origin.game_id, trainer_id=origin.local_id)

@dataclass(frozen=True)
class RawPokemon:
    """Fields decoded from one record before any registry lookup."""
    kind: BlockKind
    species_id: int
    nickname: str
    evs: Stats
    ivs: Stats
    gender: int
    move_ids: tuple[int, ...]
    origin_trainer: OriginTrainer

@dataclass(frozen=True)
class Pokemon:
    ot_id: int
    species_id: int
    nickname: str
    evs: Stats
    ivs: Stats
    move1_id: int
    move2_id: int
    move3_id: int
    move4_id: int
    gender: int = 0
    kind: BlockKind = BlockKind.PK6

    @property
    def move_ids(self) -> list[int]:
        return [self.move1_id, self.move2_id, self.move3_id, self.move4_id]

    def to_dict(self) -> PokemonDictData:
        return PokemonDictData(
            format=self.kind.value,
            otId=self.ot_id,
            speciesId=self.species_id,
            nickname=self.nickname,
            gender=self.gender,
            moves=self.move_ids,
            evs=self.evs.to_dict(),
            ivs=self.ivs.to_dict(),
            totalEvs=self.evs.total,
            totalIvs=self.ivs.total
        )
