"""World Engine — command-line entry point.

    python main.py validate world.json        print authoring warnings
    python main.py import card.json -o w.json convert a character card / legacy world
    python main.py play world.json "I open the door" [--state s.json] [--echo]

`play` runs a single turn against the configured LLM backend (see
world_engine.config) and writes the new state back to --state if given.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from world_engine.config import ROOT, EngineSettings
from world_engine.importer import WorldImportError, load_world
from world_engine.llm import EchoLLM, LLMError
from world_engine.pipeline import run_turn
from world_engine.state import GameStateManager
from world_engine.validation import validate_world


def _load(path: Path):
    try:
        return load_world(path.read_text(encoding="utf-8"))
    except (OSError, WorldImportError) as e:
        sys.exit(f"error: {e}")


def cmd_validate(args: argparse.Namespace) -> int:
    world = _load(args.world)
    warnings = validate_world(world)
    for w in warnings:
        print(f"[{w.severity}] {w.type}: {w.message}")
    print(f"{world.name}: {len(warnings)} warning(s)")
    return 1 if any(w.severity == "warning" for w in warnings) else 0


def cmd_import(args: argparse.Namespace) -> int:
    world = _load(args.source)
    text = world.model_dump_json(by_alias=True, indent=2)
    if args.output:
        args.output.write_text(text, encoding="utf-8")
        print(f"Wrote {world.name} to {args.output}")
    else:
        print(text)
    return 0


def cmd_play(args: argparse.Namespace) -> int:
    world = _load(args.world)
    settings = EngineSettings.from_env(ROOT / ".env")
    manager = GameStateManager(world)
    if args.state and args.state.is_file():
        state = manager.migrate(json.loads(args.state.read_text(encoding="utf-8")))
    else:
        state = manager.create()

    llm = EchoLLM() if args.echo else settings.make_llm()
    try:
        result = asyncio.run(run_turn(
            world, state, [], args.message, llm,
            semantic=settings.make_semantic_ranker(),
            token_budget=settings.token_budget,
        ))
    except LLMError as e:
        sys.exit(f"error: {e}")

    print(result.display_text)
    for choice in result.choices:
        print(f"  > {choice}")
    for change in result.changes:
        print(f"  {change.variable_id}: {change.old_value!r} -> {change.new_value!r}")
    if args.state:
        args.state.write_text(result.state.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="World Engine command line")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("validate", help="Check a world for authoring problems")
    p.add_argument("world", type=Path)
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("import", help="Convert a character card or legacy world to the native format")
    p.add_argument("source", type=Path)
    p.add_argument("-o", "--output", type=Path, default=None)
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("play", help="Run one turn")
    p.add_argument("world", type=Path)
    p.add_argument("message")
    p.add_argument("--state", type=Path, default=None,
                   help="State JSON to read and update (default: fresh state, not saved)")
    p.add_argument("--echo", action="store_true",
                   help="Use the echo backend instead of the configured LLM")
    p.set_defaults(func=cmd_play)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
