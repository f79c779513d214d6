import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from poke_types import NO_MOVE
from trainer_registry import RequestQueue

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "PKBLOCKS_DATA_DIR"

TABLE_FILES = {
    "pokemon_moves.json": "moves",
    "pokemon_species.json": "species",
}


def default_data_dir() -> Path:
    return Path(os.environ.get(DATA_DIR_ENV, "."))


def load_tables(data_dir: Union[str, Path]) -> dict[str, dict[int, str]]:
    tables: dict[str, dict[int, str]] = {}
    for filename, key in TABLE_FILES.items():
        path = Path(data_dir) / filename
        try:
            with open(path, 'r', encoding='utf-8') as f:
                tables[key] = {int(k): v for k, v in json.load(f).items()}
        except FileNotFoundError:
            logger.debug("No %s table at %s", key, path)
            tables[key] = {}
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring unreadable %s table %s: %s", key, path, e)
            tables[key] = {}
    return tables


class LookupStore:
    """Species and move names, served one request at a time."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None,
                 queue: Optional[RequestQueue] = None,
                 tables: Optional[dict[str, dict[int, str]]] = None) -> None:
        self.queue = queue if queue is not None else RequestQueue()
        if tables is None:
            tables = load_tables(data_dir if data_dir is not None else default_data_dir())
        self._tables = tables

    async def species_name(self, species_id: int) -> str:
        return await self.queue.submit(lambda: self._species_name(species_id))

    async def _species_name(self, species_id: int) -> str:
        return self._tables.get("species", {}).get(species_id, f"Species {species_id}")

    async def move_name(self, move_id: int) -> Optional[str]:
        return await self.queue.submit(lambda: self._move_name(move_id))

    async def _move_name(self, move_id: int) -> Optional[str]:
        if move_id == NO_MOVE:
            return None
        return self._tables.get("moves", {}).get(move_id, f"Move {move_id}")

    async def move_names(self, move_ids: list[int]) -> list[Optional[str]]:
        names = []
        for move_id in move_ids:
            names.append(await self.move_name(move_id))
        return names
