#!/usr/bin/env python3

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Any, Union
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.panel import Panel
from rich.columns import Columns
from rich import box

from block_errors import BlockError
from lookup_store import LookupStore
from pk_formats import STORED_SIZE, PARTY_SIZE, parse_tree
from poke_types import (
    BlockDictData, FailureData, NO_MOVE, Pokemon, SessionData
)
from save_blocks import Block, BlockArena, BlockKind, ByteSource
from trainer_registry import DEFAULT_REQUEST_DELAY, RequestQueue, TrainerRegistry

logger = logging.getLogger("pkblocks")

DEFAULT_SAVE_PATH = "./save/pokemon.pk6"
GENDER_LABELS = {0: "♂", 1: "♀", 2: "-"}


class RecordFileParser:
    """Builds a block tree over a file of fixed-stride records and parses it.

    The tree is: file root -> box container at `base_offset` -> one record
    block every `stride` bytes.
    """

    def __init__(self, save_path: Union[str, Path], kind: BlockKind = BlockKind.PK6,
                 base_offset: int = 0x00, count: Optional[int] = None,
                 stride: int = STORED_SIZE, request_delay: float = DEFAULT_REQUEST_DELAY,
                 timeout: Optional[float] = None) -> None:
        self.save_path = Path(save_path)
        self.kind = kind
        self.base_offset = base_offset
        self.count = count
        self.stride = stride
        self.timeout = timeout
        self.queue = RequestQueue(request_delay)
        self.registry = TrainerRegistry(self.queue)
        self.source: Optional[ByteSource] = None
        self.arena: Optional[BlockArena] = None
        self.root: Optional[Block] = None

    def load_save_file(self) -> ByteSource:
        self.source = ByteSource.from_path(self.save_path)
        return self.source

    def record_count(self) -> int:
        if not self.source:
            raise ValueError("Save data not loaded")
        if self.count is not None:
            return self.count
        available = len(self.source) - self.base_offset
        return max(1, available // self.stride)

    def build_tree(self) -> Block:
        if not self.source:
            raise ValueError("Save data not loaded")
        self.arena = BlockArena(self.source)
        self.root = self.arena.new_block(0x00)
        box_block = self.arena.new_block(self.base_offset, parent=self.root)
        self.arena.add_records(box_block, self.kind, self.record_count(), self.stride)
        logger.debug("Built %d blocks over %d bytes", len(self.arena), len(self.source))
        return self.root

    async def parse_records(self) -> SessionData:
        if self.root is None:
            self.build_tree()
        if self.root is None or self.source is None:
            raise ValueError("Save data not loaded")
        records = list(dict.fromkeys(b for b in self.root.walk() if b.kind is not BlockKind.CONTAINER))
        results = await parse_tree(self.root, self.registry, self.timeout, return_exceptions=True)

        pokemon: list[Pokemon] = []
        failures: list[FailureData] = []
        for block, result in zip(records, results):
            if isinstance(result, BlockError):
                logger.warning("Skipping record at 0x%X: %s", block.absolute_offset(), result)
                failures.append(FailureData(
                    handle=block.handle,
                    absoluteOffset=block.absolute_offset(),
                    error=type(result).__name__,
                    message=str(result)
                ))
            elif isinstance(result, BaseException):
                raise result
            else:
                pokemon.append(result)
        return SessionData(
            pokemon=pokemon,
            failures=failures,
            trainers=self.registry.trainers(),
            source_size=len(self.source)
        )

    def parse_save_file(self) -> SessionData:
        self.load_save_file()
        self.build_tree()
        return asyncio.run(self.parse_records())

    @staticmethod
    def block_to_dict(block: Block) -> BlockDictData:
        return BlockDictData(
            handle=block.handle,
            kind=block.kind.value,
            offset=block.offset,
            absoluteOffset=block.absolute_offset(),
            parsed=[p.to_dict() if hasattr(p, "to_dict") else p for p in block.parsed],
            children=[RecordFileParser.block_to_dict(c) for c in block.children]
        )

    @staticmethod
    def gender_label(gender: int) -> str:
        return GENDER_LABELS.get(gender, f"?{gender}")

    @staticmethod
    def display_pokemon(session: SessionData) -> None:
        print("\n--- Pokémon Summary ---")
        party_pokemon = session['pokemon']
        if not party_pokemon:
            print("No Pokémon decoded.")
            return

        header = f"{'Slot':<5}{'Dex ID':<8}{'Nickname':<14}{'Sex':<5}{'EVs':<6}{'IVs':<6}{'Moves':<26}{'OT':<14}"
        print(header)
        print("-" * len(header))

        for slot, pokemon in enumerate(party_pokemon, 1):
            trainer = session['trainers'].get(pokemon.ot_id)
            ot_name = trainer.name if trainer else str(pokemon.ot_id)
            moves = " ".join(f"{m:<5}" if m != NO_MOVE else "---  " for m in pokemon.move_ids)
            print(f"{slot:<5}{pokemon.species_id:<8}{pokemon.nickname:<14}"
                  f"{RecordFileParser.gender_label(pokemon.gender):<5}{pokemon.evs.total:<6}"
                  f"{pokemon.ivs.total:<6}{moves:<26}{ot_name:<14}")

    @staticmethod
    def display_failures(session: SessionData) -> None:
        if not session['failures']:
            return
        print(f"\n{len(session['failures'])} record(s) could not be decoded:")
        for failure in session['failures']:
            print(f"  0x{failure['absoluteOffset']:06X}: {failure['error']}: {failure['message']}")

    @staticmethod
    def display_save_info(session: SessionData) -> None:
        print(f"File size: {session['source_size']} bytes")
        print(f"Distinct trainers: {len(session['trainers'])}")
        RecordFileParser.display_pokemon(session)
        RecordFileParser.display_failures(session)

    def display_records_raw(self) -> None:
        print("\n--- Record Raw Bytes ---")
        if self.root is None:
            print("No records.")
            return
        for block in self.root.walk():
            if block.kind is BlockKind.CONTAINER:
                continue
            print(f"\n--- Block {block.handle} @ 0x{block.absolute_offset():06X} ---")
            try:
                raw = block.byte_range(0x00, self.stride)
            except BlockError as e:
                print(f"  {e}")
                continue
            print(' '.join(f'{b:02x}' for b in raw))

    def display_json_output(self, session: SessionData) -> None:
        output = {
            'source_size': session['source_size'],
            'pokemon': [p.to_dict() for p in session['pokemon']],
            'failures': session['failures'],
            'trainers': {
                ref_id: {'name': t.name, 'gameId': t.game_id, 'id': t.trainer_id}
                for ref_id, t in session['trainers'].items()
            },
            'tree': self.block_to_dict(self.root) if self.root is not None else None
        }
        print(json.dumps(output, ensure_ascii=False))

    @staticmethod
    async def fetch_names(store: LookupStore, party_pokemon: list[Pokemon]) -> list[dict[str, Any]]:
        names = []
        for pokemon in party_pokemon:
            names.append({
                'species': await store.species_name(pokemon.species_id),
                'moves': await store.move_names(pokemon.move_ids)
            })
        return names

    @staticmethod
    def _create_basic_info_table(pokemon: Pokemon, species_name: str, trainer: Any) -> Table:
        info_table = Table(show_header=False, box=box.SIMPLE, pad_edge=False)
        info_table.add_column("Field", style="cyan", width=12)
        info_table.add_column("Value", style="white")

        info_table.add_row("Species", f"[bold]{species_name}[/bold] (#{pokemon.species_id})")
        info_table.add_row("Nickname", f"[yellow]{pokemon.nickname}[/yellow]")
        info_table.add_row("Gender", RecordFileParser.gender_label(pokemon.gender))
        info_table.add_row("Format", pokemon.kind.value.upper())
        if trainer is not None:
            info_table.add_row("Trainer", f"{trainer.name} ([dim]{trainer.trainer_id:03}[/dim], game {trainer.game_id})")
        else:
            info_table.add_row("Trainer", f"[dim]#{pokemon.ot_id}[/dim]")
        return info_table

    @staticmethod
    def _create_stats_table(pokemon: Pokemon) -> Table:
        stats_table = Table(title="[cyan]Training[/cyan]", box=box.ROUNDED, width=30)
        stats_table.add_column("Stat", style="cyan", width=8)
        stats_table.add_column("EV", justify="right", style="green", width=4)
        stats_table.add_column("IV", justify="right", style="bright_blue", width=4)

        evs = pokemon.evs.to_list()
        ivs = pokemon.ivs.to_list()
        for label, ev, iv in zip(["HP", "Attack", "Defense", "Sp.Atk", "Sp.Def", "Speed"], evs, ivs):
            stats_table.add_row(label, f"{ev}", f"{iv}")
        return stats_table

    @staticmethod
    def _create_moves_table(pokemon: Pokemon, move_names: list[Optional[str]]) -> Table:
        moves_table = Table(title="[green]Moves[/green]", box=box.ROUNDED, width=40)
        moves_table.add_column("#", width=2)
        moves_table.add_column("Move", style="green")
        moves_table.add_column("ID", justify="right", style="yellow", width=5)

        for i, (move_id, move_name) in enumerate(zip(pokemon.move_ids, move_names), 1):
            if move_name is not None:
                moves_table.add_row(f"{i}", move_name, f"{move_id}")
            else:
                moves_table.add_row(f"{i}", "[dim]---[/dim]", "[dim]---[/dim]")
        return moves_table

    @staticmethod
    def _create_summary_table(pokemon: Pokemon) -> Table:
        ev_total = pokemon.evs.total
        iv_total = pokemon.ivs.total
        ev_color = "green" if ev_total <= 510 else "red"
        iv_color = "bright_green" if iv_total >= 155 else "yellow" if iv_total >= 93 else "red"

        summary_table = Table(show_header=False, box=box.SIMPLE, pad_edge=False)
        summary_table.add_column("Label", style="cyan", width=12)
        summary_table.add_column("Value", style="white")
        summary_table.add_row("Total EVs", f"[{ev_color}]{ev_total}[/{ev_color}]/510")
        summary_table.add_row("Total IVs", f"[{iv_color}]{iv_total}[/{iv_color}]/186")
        return summary_table

    def display_pokemon_detailed(self, session: SessionData, store: LookupStore) -> None:
        console = Console()
        party_pokemon = session['pokemon']

        if not party_pokemon:
            console.print(Panel("No Pokémon decoded.", title="Records", style="red"))
            return

        names = asyncio.run(self.fetch_names(store, party_pokemon))
        console.print(Panel.fit("POKÉMON RECORDS", style="bold magenta"))

        for slot, (pokemon, pokemon_names) in enumerate(zip(party_pokemon, names), 1):
            trainer = session['trainers'].get(pokemon.ot_id)
            info_table = self._create_basic_info_table(pokemon, pokemon_names['species'], trainer)
            stats_table = self._create_stats_table(pokemon)
            moves_table = self._create_moves_table(pokemon, pokemon_names['moves'])
            summary_table = self._create_summary_table(pokemon)

            left_panel = Panel(info_table, title="[bold]Basic Info[/bold]", border_style="blue")
            right_content = Table.grid()
            right_content.add_row(stats_table)
            right_content.add_row("")
            right_content.add_row(moves_table)
            right_content.add_row("")
            right_content.add_row(summary_table)

            layout = Columns([left_panel, right_content], equal=False, expand=True)
            console.print(Panel(
                layout,
                title=f"[bold]Slot {slot}: {pokemon.nickname.upper()}[/bold]",
                border_style="bright_blue",
                padding=(1, 2)
            ))
            console.print()


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)]
    )


def parse_int(value: str) -> int:
    return int(value, 0)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Gen 6/7 Pokémon record parser')
    parser.add_argument('save_file', nargs='?', default=DEFAULT_SAVE_PATH, help='Path to record or save file')
    parser.add_argument('--format', choices=[k.value for k in BlockKind if k is not BlockKind.CONTAINER],
                        default=BlockKind.PK6.value, help='Record format')
    parser.add_argument('--offset', type=parse_int, default=0, help='Offset of the first record (hex ok)')
    parser.add_argument('--count', type=int, default=None, help='Number of records (default: as many as fit)')
    parser.add_argument('--stride', type=parse_int, default=None,
                        help=f'Bytes per record (default: 0x{STORED_SIZE:X}, 0x{PARTY_SIZE:X} with --party)')
    parser.add_argument('--party', action='store_true', help='Records use the party size')
    parser.add_argument('--timeout', type=float, default=None, help='Trainer lookup timeout in seconds')
    parser.add_argument('--request-delay', type=float, default=DEFAULT_REQUEST_DELAY,
                        help='Pause between queued lookups in seconds')
    parser.add_argument('--data-dir', default=None, help='Directory with species/move name tables')
    parser.add_argument('--debug-bytes', action='store_true', help='Show raw record bytes')
    parser.add_argument('--detailed', action='store_true', help='Show detailed Pokémon info')
    parser.add_argument('--json', action='store_true', help='Output as JSON')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    if hasattr(sys.stdout, 'reconfigure'):
        sys.stdout.reconfigure(encoding='utf-8')  # type: ignore

    args = build_arg_parser().parse_args(argv)
    setup_logging(args.verbose)

    stride = args.stride if args.stride is not None else (PARTY_SIZE if args.party else STORED_SIZE)

    try:
        save_parser = RecordFileParser(
            args.save_file, BlockKind(args.format), args.offset, args.count, stride,
            request_delay=args.request_delay, timeout=args.timeout
        )
        session = save_parser.parse_save_file()

        if args.json:
            save_parser.display_json_output(session)
        elif args.debug_bytes:
            save_parser.display_records_raw()
        elif args.detailed:
            store = LookupStore(args.data_dir, RequestQueue(args.request_delay))
            save_parser.display_pokemon_detailed(session, store)
            RecordFileParser.display_failures(session)
        else:
            RecordFileParser.display_save_info(session)

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if session['failures'] and not session['pokemon']:
        sys.exit(1)


if __name__ == "__main__":
    main()
