"""Backup/restore the local store and sync the question catalog (JSON rows, Supabase)."""
import json
import argparse
import logging
from pathlib import Path

from cbt.models import Question
from cbt.storage import Stores, export_data, import_data, question_from_any

logger = logging.getLogger(__name__)


def parse_row(raw) -> Question | None:
    """Parse one catalog entry (sheet row or saved dict). Returns None if invalid/skip."""
    if not isinstance(raw, dict):
        return None
    try:
        return question_from_any(raw)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Skipping row {raw.get('id')!r}: {e}")
        return None


def load_rows(path: Path) -> list[Question]:
    """Read a JSON array of question rows; invalid rows are skipped."""
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array of questions")
    return [q for q in (parse_row(row) for row in data) if q]


def run_load_catalog(stores: Stores, path: Path, dry_run: bool = False, replace: bool = False) -> int:
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    rows = load_rows(path)
    if dry_run:
        print(f"Dry run: would load {len(rows)} questions from {path}")
        if rows:
            print("Sample row:", rows[0].to_row())
        return len(rows)
    if replace:
        merged = rows
    else:
        by_id = {q.id: q for q in stores.questions.get_all()}
        by_id.update({q.id: q for q in rows})
        merged = list(by_id.values())
    if not stores.questions.save_all(merged):
        raise RuntimeError("Could not save the catalog (see log)")
    print(f"Loaded {len(rows)} questions from {path} (catalog now {len(merged)})")
    return len(rows)


def run_export(stores: Stores, out_path: Path) -> None:
    out_path.write_text(export_data(stores), encoding="utf-8")
    print(f"Exported backup to {out_path}")


def run_import(stores: Stores, in_path: Path) -> None:
    counts = import_data(stores, in_path.read_text(encoding="utf-8"))
    print(f"Imported {counts['questions']} questions, {counts['wrong_answers']} wrong answers, "
          f"{counts['exam_results']} results from {in_path}")


def run_sync(stores: Stores, direction: str) -> int:
    from db import get_supabase_uncached
    from cbt.database import SupabaseQuestionStore, pull_catalog, push_catalog

    remote = SupabaseQuestionStore(get_supabase_uncached())
    if direction == "pull":
        count = pull_catalog(remote, stores.questions)
        print(f"Pulled {count} questions from Supabase")
    else:
        count = push_catalog(stores.questions, remote)
        print(f"Pushed {count} questions to Supabase")
    return count


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage the electrical CBT local store.")
    parser.add_argument("--data-dir", default=None, help="Local store directory (default: $CBT_DATA_DIR or ~/.electrical_cbt)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("export", help="Write a full JSON backup")
    p.add_argument("path", help="Backup file to write")

    p = sub.add_parser("import", help="Restore a JSON backup")
    p.add_argument("path", help="Backup file to read")

    p = sub.add_parser("load-catalog", help="Load a JSON array of question rows into the catalog")
    p.add_argument("path", help="JSON file with question rows")
    p.add_argument("--dry-run", action="store_true", help="Parse only, do not save")
    p.add_argument("--replace", action="store_true", help="Replace the catalog instead of merging by id")

    sub.add_parser("pull", help="Replace the local catalog with the Supabase one")
    sub.add_parser("push", help="Upsert the local catalog into Supabase")
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)
    stores = Stores.open(Path(args.data_dir) if args.data_dir else None)
    if args.command == "export":
        run_export(stores, Path(args.path))
    elif args.command == "import":
        run_import(stores, Path(args.path))
    elif args.command == "load-catalog":
        run_load_catalog(stores, Path(args.path), dry_run=args.dry_run, replace=args.replace)
    else:
        run_sync(stores, args.command)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    main()
