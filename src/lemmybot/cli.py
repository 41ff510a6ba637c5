import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict

from .lemmy_client import LemmyAuthError
from .runtime.categories import CATEGORY_SPECS, ResourceCategory, get_spec
from .runtime.config import load_config
from .runtime.dispatcher import HandlerContext
from .runtime.runner import run_bot
from .runtime.storage import DedupStore


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _log_item(ctx: HandlerContext) -> None:
    spec = get_spec(ctx.category)
    logging.getLogger("lemmybot.runtime").info(
        "Received category=%s id=%s actor=%s", ctx.category.value, spec.item_id(ctx.item), spec.actor_id(ctx.item)
    )


def cmd_run(args: argparse.Namespace) -> None:
    """Connect and log every new item in the chosen categories.

    Examples:

        LEMMY_INSTANCE=lemmy.ml python -m lemmybot.cli run --category post --category comment
    """
    categories = args.category or [ResourceCategory.POST.value, ResourceCategory.COMMENT.value]
    handlers: Dict[str, Any] = {category: _log_item for category in categories}
    run_bot(handlers)


def _store(args: argparse.Namespace) -> DedupStore:
    path = Path(args.db_path) if args.db_path else load_config().db_path
    if path is None:
        raise SystemExit("No database file configured. Pass --db-path or set LEMMY_DB_PATH.")
    return DedupStore(path)


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the dedup database file and every category table."""
    store = _store(args)
    store.setup()
    print_json({"path": str(store.path), "tables": sorted(spec.table for spec in CATEGORY_SPECS.values())})


def cmd_storage_info(args: argparse.Namespace) -> None:
    """Show whether an item has been handled and when it may be handled again."""
    store = _store(args)
    store.setup()
    info = store.get_storage_info(ResourceCategory(args.category), args.id)
    print_json(
        {
            "category": args.category,
            "id": args.id,
            "exists": info.exists,
            "reprocess_time": info.reprocess_time.isoformat() if info.reprocess_time else None,
        }
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lemmy bot runtime: poll an instance and dispatch new items to handlers.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    category_choices = [c.value for c in ResourceCategory]

    # run
    p_run = subparsers.add_parser("run", help="Connect and log new items")
    p_run.add_argument(
        "--category",
        action="append",
        choices=category_choices,
        help="Category to poll; repeatable (default: post and comment)",
    )
    p_run.set_defaults(func=cmd_run)

    # init-db
    p_init = subparsers.add_parser("init-db", help="Create the dedup database")
    p_init.add_argument("--db-path", help="SQLite file (default: LEMMY_DB_PATH)")
    p_init.set_defaults(func=cmd_init_db)

    # storage-info
    p_info = subparsers.add_parser("storage-info", help="Show dedup state for one item")
    p_info.add_argument("category", choices=category_choices)
    p_info.add_argument("id", type=int)
    p_info.add_argument("--db-path", help="SQLite file (default: LEMMY_DB_PATH)")
    p_info.set_defaults(func=cmd_storage_info)

    return parser


def main() -> None:
    try:
        parser = build_parser()
        args = parser.parse_args()
        args.func(args)
    except LemmyAuthError as e:
        raise SystemExit(str(e))
    except KeyboardInterrupt:
        raise SystemExit(0)
    except Exception as e:
        # Catch-all to avoid noisy tracebacks for common runtime issues
        raise SystemExit(f"Error: {e}")


if __name__ == "__main__":
    main()
