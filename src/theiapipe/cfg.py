from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional


THEIA_AUTH_URL = "https://theia.cnes.fr/atdistrib/services/authenticate/"


@dataclass(frozen=True)
class HttpConfig:
    # (connect, read) timeouts for a single request.
    connect_timeout_s: float = 30.0
    read_timeout_s: float = 120.0

    # Upper bound for streaming one archive body (archives are hundreds of MB).
    total_timeout_s: Optional[float] = 4 * 3600.0

    max_retries: int = 3
    max_auth_refresh: int = 1
    chunk_size_bytes: int = 8 * 1024 * 1024

    # Appended to the tile URL once any cart token has been removed.
    issuer_id: str = "theia"

    progress: bool = True


@dataclass(frozen=True)
class AuthConfig:
    credentials_file: Optional[Path] = None
    auth_url: str = THEIA_AUTH_URL


@dataclass(frozen=True)
class ReadConfig:
    # FRE: flat reflectance (slope corrected), SRE: surface reflectance.
    product: Literal["FRE", "SRE"] = "FRE"


@dataclass(frozen=True)
class CollectionConfig:
    out_dir: Path
    verify: bool = True
    overwrite: bool = False

    # 1 => sequential. Tiles are large, keep the pool small.
    max_workers: int = 1


@dataclass(frozen=True)
class AppConfig:
    collection: CollectionConfig = field(
        default_factory=lambda: CollectionConfig(out_dir=Path("./theia"))
    )
    http: HttpConfig = field(default_factory=HttpConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    read: ReadConfig = field(default_factory=ReadConfig)


def validate(cfg: AppConfig) -> None:
    if cfg.collection.max_workers < 1:
        raise ValueError(
            f"collection.max_workers must be >= 1, got {cfg.collection.max_workers}"
        )
    if cfg.http.max_retries < 0:
        raise ValueError(f"http.max_retries must be >= 0, got {cfg.http.max_retries}")
    if cfg.http.connect_timeout_s <= 0 or cfg.http.read_timeout_s <= 0:
        raise ValueError("http timeouts must be > 0")
    if cfg.http.total_timeout_s is not None and cfg.http.total_timeout_s <= 0:
        raise ValueError("http.total_timeout_s must be > 0 (or null to disable)")
    if cfg.http.chunk_size_bytes <= 0:
        raise ValueError("http.chunk_size_bytes must be > 0")
    if cfg.read.product not in ("FRE", "SRE"):
        raise ValueError(f"read.product must be FRE or SRE, got {cfg.read.product!r}")
