from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from PIL import features

from .config import Config, ConfigError, build_store, load_config
from .media import format_size
from .store import StoreError


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    message: str
    is_fatal: bool = False


def _check_codecs() -> CheckResult:
    missing: list[str] = []
    if not features.check_codec("jpg"):
        missing.append("jpg")
    if not features.check_module("webp"):
        missing.append("webp")
    if "jpg" in missing:
        return CheckResult(
            "image_codecs",
            False,
            "Pillow was built without JPEG support; oversized photos cannot be compressed.",
            is_fatal=True,
        )
    if missing:
        return CheckResult("image_codecs", True, f"Pillow codecs OK (missing optional: {', '.join(missing)})")
    return CheckResult("image_codecs", True, "Pillow JPEG and WEBP codecs available")


def _check_preview_dir(cfg: Config) -> CheckResult:
    root = cfg.preview_dir or Path(tempfile.gettempdir())
    try:
        root.mkdir(parents=True, exist_ok=True)
        probe = root / ".eventroll_probe.tmp"
        probe.write_bytes(b"ok")
        probe.unlink()
        free = shutil.disk_usage(root).free
        return CheckResult("preview_dir", True, f"Writable: {root} ({format_size(free)} free)")
    except OSError as e:
        return CheckResult("preview_dir", False, f"Preview directory not writable: {root}: {e}", is_fatal=True)


def _check_store_listing(cfg: Config) -> CheckResult:
    # Listing a prefix that should not exist is enough to prove credentials and reachability.
    target = f"s3://{cfg.s3_bucket}" if cfg.is_s3 else str(cfg.local_store_dir)
    try:
        store = build_store(cfg)
        asyncio.run(store.list("eventroll-doctor/", limit=1))
    except StoreError as e:
        return CheckResult(
            "store_access",
            False,
            f"Could not list {target} ({e.kind.value}): {str(e).splitlines()[0]}",
            is_fatal=True,
        )
    except Exception as e:  # noqa: BLE001
        return CheckResult("store_access", False, f"Could not reach {target}: {e}", is_fatal=True)
    return CheckResult("store_access", True, f"Store reachable: {target}")


def run_doctor(
    *,
    store_backend: str | None = None,
    s3_bucket: str | None = None,
    local_store_dir: str | None = None,
    public_base_url: str | None = None,
    skip_store: bool = False,
) -> tuple[int, list[CheckResult]]:
    results: list[CheckResult] = []
    try:
        cfg = load_config(
            store_backend=store_backend,
            s3_bucket=s3_bucket,
            local_store_dir=local_store_dir,
            public_base_url=public_base_url,
        )
    except ConfigError as e:
        results.append(CheckResult("config", False, str(e).splitlines()[0], is_fatal=True))
        return 2, results

    where = f"s3://{cfg.s3_bucket}" if cfg.is_s3 else str(cfg.local_store_dir)
    results.append(CheckResult("config", True, f"Store: {cfg.store_backend} ({where})"))
    results.append(_check_codecs())
    results.append(_check_preview_dir(cfg))
    if not skip_store:
        results.append(_check_store_listing(cfg))

    fatal = any((not r.ok) and r.is_fatal for r in results)
    rc = 2 if fatal else 0
    return rc, results


def format_results(results: list[CheckResult]) -> str:
    lines: list[str] = []
    for r in results:
        status = "OK" if r.ok else ("FAIL" if r.is_fatal else "WARN")
        lines.append(f"[{status}] {r.name}: {r.message}")
    return os.linesep.join(lines)
