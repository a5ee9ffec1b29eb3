from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

STORE_BACKENDS = ("local", "s3")


class ConfigError(RuntimeError):
    pass


def _expand(p: str) -> Path:
    return Path(os.path.expanduser(p)).resolve()


def _optional(s: str | None) -> str | None:
    if s is None:
        return None
    s = s.strip()
    return s or None


def _parse_int(name: str, value: str | int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid {name} '{value}' (expected a whole number)") from e
    if n < 0:
        raise ConfigError(f"Invalid {name} '{value}' (must not be negative)")
    return n


@dataclass(frozen=True)
class Config:
    store_backend: str
    local_store_dir: Path

    s3_bucket: str
    s3_region: str | None
    s3_endpoint_url: str | None

    public_base_url: str | None
    presign_expiry_seconds: int
    store_max_object_bytes: int

    preview_dir: Path | None
    log_dir: Path | None

    @property
    def is_s3(self) -> bool:
        return self.store_backend == "s3"


def load_config(
    *,
    store_backend: str | None = None,
    local_store_dir: str | None = None,
    s3_bucket: str | None = None,
    s3_region: str | None = None,
    s3_endpoint_url: str | None = None,
    public_base_url: str | None = None,
    presign_expiry_seconds: int | None = None,
    store_max_object_bytes: int | None = None,
    preview_dir: str | None = None,
    log_dir: str | None = None,
) -> Config:
    env = os.environ

    store_backend = (store_backend or env.get("EVENTROLL_STORE", "local")).strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise ConfigError(
            f"Unknown store backend '{store_backend}'.\n"
            f"  Try: EVENTROLL_STORE=local or EVENTROLL_STORE=s3"
        )

    local_store_dir = local_store_dir or env.get("EVENTROLL_LOCAL_STORE_DIR", "~/eventroll/store")

    s3_bucket = s3_bucket or env.get("EVENTROLL_S3_BUCKET", "event-photos")
    s3_bucket = s3_bucket.strip()
    if store_backend == "s3" and not s3_bucket:
        raise ConfigError(
            "S3 store selected but no bucket configured.\n"
            "  Try: set EVENTROLL_S3_BUCKET or pass --bucket"
        )
    s3_region = _optional(s3_region or env.get("EVENTROLL_S3_REGION"))
    s3_endpoint_url = _optional(s3_endpoint_url or env.get("EVENTROLL_S3_ENDPOINT_URL"))

    public_base_url = _optional(public_base_url or env.get("EVENTROLL_PUBLIC_BASE_URL"))
    if public_base_url is not None:
        public_base_url = public_base_url.rstrip("/")

    presign_expiry_seconds = _parse_int(
        "presign expiry",
        presign_expiry_seconds
        if presign_expiry_seconds is not None
        else env.get("EVENTROLL_PRESIGN_EXPIRY_SECONDS", "0"),
    )
    store_max_object_bytes = _parse_int(
        "store object size limit",
        store_max_object_bytes
        if store_max_object_bytes is not None
        else env.get("EVENTROLL_STORE_MAX_OBJECT_BYTES", "0"),
    )

    preview_dir = _optional(preview_dir or env.get("EVENTROLL_PREVIEW_DIR"))
    log_dir = _optional(log_dir or env.get("EVENTROLL_LOG_DIR"))

    cfg = Config(
        store_backend=store_backend,
        local_store_dir=_expand(local_store_dir),
        s3_bucket=s3_bucket,
        s3_region=s3_region,
        s3_endpoint_url=s3_endpoint_url,
        public_base_url=public_base_url,
        presign_expiry_seconds=presign_expiry_seconds,
        store_max_object_bytes=store_max_object_bytes,
        preview_dir=_expand(preview_dir) if preview_dir else None,
        log_dir=_expand(log_dir) if log_dir else None,
    )

    if cfg.store_backend == "local":
        cfg.local_store_dir.mkdir(parents=True, exist_ok=True)
    if cfg.log_dir is not None:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
    return cfg


def build_store(cfg: Config):
    """Construct the store adapter selected by ``cfg.store_backend``."""
    max_bytes = cfg.store_max_object_bytes or None
    if cfg.is_s3:
        from .aws_boto3 import S3Store

        return S3Store(
            bucket=cfg.s3_bucket,
            region=cfg.s3_region,
            endpoint_url=cfg.s3_endpoint_url,
            public_base_url=cfg.public_base_url,
            presign_expiry_seconds=cfg.presign_expiry_seconds or None,
            max_object_bytes=max_bytes,
        )

    from .store import LocalStore

    return LocalStore(
        cfg.local_store_dir,
        public_base_url=cfg.public_base_url,
        max_object_bytes=max_bytes,
    )
