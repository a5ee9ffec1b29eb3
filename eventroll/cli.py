from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from .config import ConfigError, build_store, load_config
from .doctor import format_results, run_doctor
from .gallery import GalleryHtmlWriter
from .logging_utils import setup_logging
from .media import is_image
from .session import EventSession
from .status import SnapshotWriter


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--store", default=None, choices=["local", "s3"], help="Store backend (default: local)")
    p.add_argument("--bucket", default=None, help="S3 bucket name (default: event-photos)")
    p.add_argument(
        "--local-store-dir",
        default=None,
        help="Directory used by the local store (default: ~/eventroll/store)",
    )
    p.add_argument("--public-base-url", default=None, help="Base URL photos are served from")
    p.add_argument("--quiet", action="store_true", help="Reduce log verbosity (INFO level only, no DEBUG)")


def _load(args: argparse.Namespace):
    return load_config(
        store_backend=args.store,
        s3_bucket=args.bucket,
        local_store_dir=args.local_store_dir,
        public_base_url=args.public_base_url,
    )


def _expand_inputs(inputs: list[str]) -> list[Path]:
    """Files are taken as given; directories contribute their image files."""
    paths: list[Path] = []
    for raw in inputs:
        p = Path(raw).expanduser()
        if p.is_dir():
            paths.extend(sorted(c for c in p.iterdir() if c.is_file() and is_image(c)))
        else:
            paths.append(p)
    return paths


def cmd_upload(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2
    logger = setup_logging(log_dir=cfg.log_dir, verbose=not args.quiet)

    paths = _expand_inputs(args.files)
    missing = [p for p in paths if not p.is_file()]
    if missing:
        for p in missing:
            logger.error(f"Not a file: {p}")
        return 2
    if not paths:
        logger.info("No files to upload.")
        return 0

    try:
        session = EventSession(
            build_store(cfg),
            args.event,
            preview_root=cfg.preview_dir,
            logger=logger,
            store_max_object_bytes=cfg.store_max_object_bytes or None,
        )
    except ValueError as e:
        logger.error(str(e))
        return 2

    with session:
        if args.status_json:
            session.uploader.subscribe(SnapshotWriter(json_path=Path(args.status_json), event_id=args.event))
        if args.gallery_html:
            session.gallery.subscribe(GalleryHtmlWriter(event_id=args.event, out_path=Path(args.gallery_html)))
        try:
            report = asyncio.run(session.upload_paths(paths))
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error ({type(e).__name__}): {e}")
            logger.error("  Tip: Run 'eventroll doctor' to check your configuration.")
            return 2

    for url in report.urls:
        print(url)
    for r in report.rejected:
        logger.error(f"Rejected: {r.reason}")
    for t in report.failed:
        logger.error(f"Failed: {t.source.name}: {t.error_message}")
    logger.info(
        f"{len(report.urls)} uploaded, {len(report.failed)} failed, {len(report.rejected)} rejected"
    )
    return 0 if report.ok else 1


def cmd_gallery(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2
    logger = setup_logging(log_dir=cfg.log_dir, verbose=not args.quiet)

    try:
        session = EventSession(build_store(cfg), args.event, preview_root=cfg.preview_dir, logger=logger)
    except ValueError as e:
        logger.error(str(e))
        return 2

    with session:
        if args.out:
            session.gallery.subscribe(GalleryHtmlWriter(event_id=args.event, out_path=Path(args.out)))
        asyncio.run(session.gallery.refresh())
        photos = session.gallery.photos

    if args.out:
        logger.info(f"Gallery written: {args.out} ({len(photos)} photos)")
    else:
        for p in photos:
            print(p.public_url)
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    rc, results = run_doctor(
        store_backend=args.store,
        s3_bucket=args.bucket,
        local_store_dir=args.local_store_dir,
        public_base_url=args.public_base_url,
        skip_store=args.skip_store,
    )
    print(format_results(results))
    return rc


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="eventroll", description="EventRoll shared event photo uploads")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_up = sub.add_parser("upload", help="Upload photos to an event")
    _add_common_args(p_up)
    p_up.add_argument("--event", required=True, help="Event id (no path separators)")
    p_up.add_argument("--status-json", default=None, help="Write upload task snapshots to this JSON file")
    p_up.add_argument("--gallery-html", default=None, help="Render the refreshed gallery to this HTML file")
    p_up.add_argument("files", nargs="+", help="Photo files or directories of photos")
    p_up.set_defaults(func=cmd_upload)

    p_gal = sub.add_parser("gallery", help="List an event's photos, newest first")
    _add_common_args(p_gal)
    p_gal.add_argument("--event", required=True, help="Event id (no path separators)")
    p_gal.add_argument("--out", default=None, help="Write a static HTML gallery instead of printing URLs")
    p_gal.set_defaults(func=cmd_gallery)

    p_doc = sub.add_parser("doctor", help="Run environment checks (config, codecs, store access)")
    _add_common_args(p_doc)
    p_doc.add_argument("--skip-store", action="store_true", help="Skip the store access check")
    p_doc.set_defaults(func=cmd_doctor)

    return p


def main(argv: list[str] | None = None) -> None:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    rc = args.func(args)
    raise SystemExit(rc)
