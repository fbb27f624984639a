"""Seed the default moderation rules into the database.

Loads rule definitions from default_rules.json (or a custom path), validates
each one as a ModerationRule and saves it through the store.

Usage:
    DATABASE_URL="postgresql+asyncpg://..." python -m fixtures.seed_rules

    # Overwrite rules that already exist:
    python -m fixtures.seed_rules --replace

The script is idempotent: existing rules are skipped unless --replace is given.
Statistics of replaced rules are preserved.
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from modcore.config import settings
from modcore.database import build_engine, build_session_factory
from modcore.schemas.rule import ModerationRule
from modcore.store import ModerationStore

DEFAULT_RULES_FILE = Path(__file__).parent / "default_rules.json"


def load_rules(path: Path) -> list[ModerationRule]:
    """Parse and validate every rule in a JSON file. Exits on the first invalid rule."""
    with open(path, "r") as f:
        payload = json.load(f)
    rules = []
    for entry in payload:
        try:
            rules.append(ModerationRule.model_validate(entry))
        except ValidationError as exc:
            print(f"Error: rule {entry.get('id', '?')!r} is invalid:\n{exc}", file=sys.stderr)
            sys.exit(1)
    return rules


async def seed(path: Path, replace: bool) -> None:
    if not path.exists():
        print(f"Error: rules file not found at {path}", file=sys.stderr)
        sys.exit(1)
    rules = load_rules(path)
    print(f"Loading {len(rules)} rules...")

    engine = build_engine(settings)
    store = ModerationStore(build_session_factory(engine))
    created = replaced = skipped = 0
    try:
        for rule in rules:
            existing = await store.find_rule(rule.id)
            if existing is not None and not replace:
                skipped += 1
                continue
            await store.save_rule(rule)
            if existing is None:
                created += 1
            else:
                replaced += 1
    finally:
        await engine.dispose()

    print("Seeding complete!")
    print(f"  Created: {created}")
    print(f"  Replaced: {replaced}")
    print(f"  Skipped (already present): {skipped}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed default moderation rules")
    parser.add_argument("--rules-path", type=Path, default=DEFAULT_RULES_FILE)
    parser.add_argument("--replace", action="store_true", help="overwrite existing rules")
    args = parser.parse_args()
    asyncio.run(seed(args.rules_path, args.replace))


if __name__ == "__main__":
    main()
