from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from doujin_api.logging_conf import setup_logging
from doujin_api.settings import Settings
from doujin_api.db.repo import Repo
from doujin_api.errors import DoujinApiError
from doujin_api.jobs.pipeline import DoujinPipeline, FetchResult
from doujin_api.sources.exhentai import ExhentaiSource
from doujin_api.telegraph.client import TelegraphAPI

def _apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    data = {}

    if getattr(args, "db_url", None):
        data["db_url"] = args.db_url
    if getattr(args, "data_dir", None):
        data["data_dir"] = Path(args.data_dir)
        data["work_dir"] = Path(args.data_dir) / "work"
    if getattr(args, "page_size", None):
        data["telegraph_page_size"] = max(1, int(args.page_size))

    return replace(settings, **data) if data else settings

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="doujin-api")
    p.add_argument("--env-file", default=".env", help="Path to .env file (default: .env)")
    p.add_argument("--log-level", default=None, help="Logging level (INFO, DEBUG, ...)")
    p.add_argument("--db-url", default=None, help="Override DB_URL (e.g., sqlite:///data/doujins.db)")
    p.add_argument("--data-dir", default=None, help="Override DATA_DIR (e.g., data)")
    p.add_argument("--page-size", type=int, default=None, help="Override TELEGRAPH_PAGE_SIZE")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="Create DB schema")

    sub_fetch = sub.add_parser("fetch", help="Fetch a gallery by URL and publish it to Telegraph")
    sub_fetch.add_argument("url", help="Gallery URL")

    sub_random = sub.add_parser("random", help="Publish a random gallery, optionally filtered by tags")
    sub_random.add_argument("--tags", default="", help='Tag filter, e.g. "tag:fox -tag:group"')

    sub_zip = sub.add_parser("zip", help="Download a stored gallery as a zip archive")
    sub_zip.add_argument("record_id", help="Record id (24 chars)")
    sub_zip.add_argument("--out", default=".", help="Directory to write <doujin_id>.zip into")

    sub_views = sub.add_parser("views", help="Show the view count of a Telegraph page")
    sub_views.add_argument("url", help="telegra.ph URL")

    sub.add_parser("stats", help="Print usage stats as JSON")
    sub.add_parser("count", help="Print the number of stored doujins")

    return p

def _print_result(result: FetchResult) -> None:
    d = result.doujin
    state = "created" if result.created else "already published"
    print(f"[{state}] {d.title}")
    print(f"  id={d.id} doujin_id={d.doujin_id} images={len(d.images)}")
    print(f"  {d.telegraph_url}")

async def _run(args: argparse.Namespace, settings: Settings, repo: Repo) -> None:
    pipeline = DoujinPipeline(
        repo=repo,
        source=ExhentaiSource(settings),
        telegraph=TelegraphAPI(
            api_url=settings.telegraph_api_url,
            access_token=settings.telegraph_access_token,
            timeout=settings.request_timeout,
        ),
        settings=settings,
    )

    if args.cmd == "fetch":
        _print_result(await pipeline.fetch_or_reuse(args.url))
        return

    if args.cmd == "random":
        _print_result(await pipeline.random_or_reuse(args.tags))
        return

    if args.cmd == "zip":
        archive = await pipeline.build_archive(args.record_id)
        out_dir = Path(args.out)
        out_dir.mkdir(parents=True, exist_ok=True)
        dst = out_dir / archive.filename
        dst.write_bytes(archive.data)
        print(f"Wrote {dst} ({len(archive.data)} bytes)")
        return

    if args.cmd == "views":
        print(await pipeline.get_view_count(args.url))
        return

    raise SystemExit(f"Unknown command: {args.cmd}")

def main(argv: list[str] | None = None) -> None:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)
    setup_logging(args.log_level)

    settings = Settings.from_env()
    settings = _apply_cli_overrides(settings, args)

    repo = Repo(settings=settings)
    repo.ensure_schema()
    try:
        if args.cmd == "init-db":
            print("DB schema is ready.")
            return

        if args.cmd == "stats":
            print(json.dumps(repo.load_stats().to_dict(), ensure_ascii=False, indent=2))
            return

        if args.cmd == "count":
            print(repo.count())
            return

        try:
            asyncio.run(_run(args, settings, repo))
        except DoujinApiError as e:
            raise SystemExit(f"{type(e).__name__}: {e}")
    finally:
        repo.close()
