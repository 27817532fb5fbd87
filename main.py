import argparse, asyncio, json, logging, sys, os

os.environ.setdefault("PYTHONUTF8", "1")

from config.config_loader import load_config, IndexSettings
from data.backend import InMemoryBackend
from data.prompt_index import PromptIndex

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")


def _row(index: PromptIndex, p) -> dict:
    d = p.model_dump(mode="json")
    d["folder"] = index.folder_name(p)
    d["tag_colors"] = {t: index.tag_color(t) for t in p.tags}
    return d


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Query a prompt snapshot")
    ap.add_argument("--snapshot", help="JSON snapshot (default: PROMPT_SNAPSHOT_PATH)")
    ap.add_argument("--env", help="path to .env")
    sub = ap.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("search", help="filter prompts")
    s.add_argument("query", nargs="?", default="")
    s.add_argument("--tag")
    s.add_argument("--folder")

    t = sub.add_parser("tags", help="unique tags, first seen first")
    t.add_argument("--limit", type=int)

    sub.add_parser("counts", help="prompt count per folder")

    p = sub.add_parser("page", help="newest-first listing")
    p.add_argument("--limit", type=int)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--folder")
    p.add_argument("--tags", nargs="*", default=[])
    return ap


async def run(args: argparse.Namespace) -> object:
    settings = IndexSettings.from_env()
    snapshot = args.snapshot or settings.snapshot_path
    backend = InMemoryBackend.from_snapshot(snapshot) if snapshot else InMemoryBackend()
    index = PromptIndex(backend, settings)
    await index.refresh()

    if args.cmd == "search":
        return [_row(index, p) for p in index.filter(args.query, tag=args.tag, folder=args.folder)]
    if args.cmd == "tags":
        return [{"tag": t, "color": index.tag_color(t)} for t in index.unique_tags(args.limit)]
    if args.cmd == "counts":
        return index.counts_by_folder()
    if args.cmd == "page":
        rows = index.list_page(args.limit, args.offset, folder=args.folder, tags=args.tags)
        return [_row(index, p) for p in rows]
    raise ValueError(f"unknown command: {args.cmd}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        load_config(args.env)
        out = asyncio.run(run(args))
    except Exception:
        logging.exception("prompt-index failed")
        return 1
    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
