from __future__ import annotations

import argparse
import logging
import re
from pathlib import Path
from typing import List, Sequence, Tuple

import sprite


logger = logging.getLogger(__name__)


def rename_files_with_prefix(
    folder: Path,
    pattern: str,
    template: str,
    dry_run: bool = False,
) -> List[Tuple[Path, Path]]:
    """Rename the PNG files in *folder* whose stem matches *pattern*.

    ``{}`` in *template* is replaced by the old stem, so ``icon-{}`` turns
    ``play.png`` into ``icon-play.png``. Only the top level of *folder* is
    touched.
    """
    try:
        rx = re.compile(pattern)
    except re.error as e:
        raise ValueError(f"invalid pattern {pattern!r}: {e}") from e

    if not folder.is_dir():
        raise FileNotFoundError(f"folder not found: {folder}")

    plan: List[Tuple[Path, Path]] = []
    for path in sorted(folder.iterdir(), key=lambda p: sprite.natural_key(p.name)):
        if not path.is_file():
            continue
        if path.suffix.lower() != ".png" or not rx.search(path.stem):
            logger.debug("Skipped: %s", path.name)
            continue

        new_path = path.with_name(template.replace("{}", path.stem) + path.suffix)
        if new_path != path:
            plan.append((path, new_path))

    # check the whole batch before touching anything
    targets: set[Path] = set()
    for path, new_path in plan:
        if new_path.exists():
            raise FileExistsError(f"refusing to overwrite {new_path}")
        if new_path in targets:
            raise FileExistsError(f"more than one file would be renamed to {new_path}")
        targets.add(new_path)

    for path, new_path in plan:
        if not dry_run:
            path.rename(new_path)
        logger.debug("Renamed: %s -> %s", path.name, new_path.name)

    return plan


def main(argv: Sequence[str] | None = None) -> int:
    ap = argparse.ArgumentParser("Rename PNG frames before building a sprite")
    ap.add_argument("folder", type=str)
    ap.add_argument("--pattern", type=str, default=".*", help="Regex matched against the file stem")
    ap.add_argument("--template", type=str, required=True, help="New stem; {} is replaced by the old stem")
    ap.add_argument("--dry-run", action="store_true", help="Only print what would be renamed")
    ap.add_argument("-v", "--verbose", action="count", default=0)
    args = ap.parse_args(argv)

    sprite.setup_logging(args.verbose)

    try:
        renamed = rename_files_with_prefix(Path(args.folder), args.pattern, args.template, dry_run=args.dry_run)
    except (ValueError, FileNotFoundError, FileExistsError) as e:
        raise SystemExit(f"error: {e}")

    for old, new in renamed:
        print(f"{old.name} -> {new.name}")
    print(f"{'Would rename' if args.dry_run else 'Renamed'} {len(renamed)} files")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
