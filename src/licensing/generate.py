from __future__ import annotations

import argparse
import sys
from typing import List, Optional, Sequence

from . import codec


KEYS_PER_CELL = 3


def build_table(tiers: Sequence[str], durations: Sequence[str], *, per_cell: int = KEYS_PER_CELL) -> List[str]:
    """Markdown table with `per_cell` fresh keys for every tier x duration."""
    header = "| Tier | Duration | " + " | ".join(f"Key {i + 1}" for i in range(per_cell)) + " |"
    rule = "|---|---|" + "---|" * per_cell
    lines = [header, rule]
    for tier in tiers:
        for duration in durations:
            keys = [codec.generate(tier, duration) for _ in range(per_cell)]
            lines.append(f"| {tier.upper()} | {duration} | " + " | ".join(keys) + " |")
    return lines


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pocketwall-keygen",
        description="Generate or check offline PocketWall license keys.",
    )
    p.add_argument("--tier", choices=sorted(codec.REVERSE_TIERS_MAP), default="elite")
    p.add_argument(
        "--duration",
        default=codec.DEFAULT_DURATION,
        help=f"<n>M or <n>Y, e.g. {', '.join(codec.DURATIONS)} or {codec.LIFETIME_DURATION} (lifetime)",
    )
    p.add_argument("--count", type=int, default=1, help="number of keys to print")
    p.add_argument("--table", action="store_true", help="print a table for every tier and standard duration")
    p.add_argument("--validate", metavar="KEY", help="check a key instead of generating")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)

    if args.validate:
        result = codec.validate(args.validate)
        if result.is_valid:
            print(f"valid tier={result.tier} duration={result.duration}")
            return 0
        print(f"invalid ({result.error.value if result.error else 'unknown'})")
        return 1

    if args.table:
        for line in build_table(list(codec.REVERSE_TIERS_MAP), codec.DURATIONS):
            print(line)
        return 0

    if args.count <= 0:
        print("--count must be > 0", file=sys.stderr)
        return 2
    try:
        for _ in range(args.count):
            print(codec.generate(args.tier, args.duration))
    except codec.LicenseError as ex:
        print(str(ex), file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
