from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import MISSING
from pathlib import Path
from typing import Any, Optional, Sequence

import yaml

from theiapipe.cfg import (
    AppConfig,
    AuthConfig,
    CollectionConfig,
    HttpConfig,
    ReadConfig,
    validate,
)
from theiapipe.collection import TileCollection
from theiapipe.download.auth import TokenManager, auth_from_config
from theiapipe.download.http import TheiaHttpClient
from theiapipe.errors import CollectionError


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _field_default_or_missing(cls: type, field_name: str) -> Any:
    """Dataclass field default (or default_factory result), else MISSING."""
    f = cls.__dataclass_fields__[field_name]  # type: ignore[attr-defined]
    if f.default is not MISSING:
        return f.default
    if f.default_factory is not MISSING:  # type: ignore[comparison-overlap]
        return f.default_factory()
    return MISSING


def _get(mapping: dict[str, Any], cls: type, key: str) -> Any:
    default = _field_default_or_missing(cls, key)
    if default is MISSING:
        return mapping[key]  # raises KeyError if missing
    return mapping.get(key, default)


def _section(d: dict[str, Any], key: str) -> dict[str, Any]:
    sec = d.get(key, {}) or {}
    if not isinstance(sec, dict):
        raise TypeError(f'Config section "{key}" must be a mapping.')
    return sec


def _opt_float(v: Any) -> Optional[float]:
    return float(v) if v is not None else None


def app_cfg_from_dict(
    d: dict[str, Any],
    *,
    out_dir_override: Optional[str] = None,
    overwrite_override: Optional[bool] = None,
    verify_override: Optional[bool] = None,
) -> AppConfig:
    """
    YAML shape (every key optional except collection.out_dir):

      collection: {out_dir, verify, overwrite, max_workers}
      http: {connect_timeout_s, read_timeout_s, total_timeout_s, max_retries, ...}
      auth: {credentials_file, auth_url}
      read: {product}
    """
    col = _section(d, "collection")
    http = _section(d, "http")
    auth = _section(d, "auth")
    rd = _section(d, "read")

    if out_dir_override is not None:
        out_dir = Path(out_dir_override)
    else:
        if "out_dir" not in col:
            raise KeyError('Missing required key "collection.out_dir" in YAML config.')
        out_dir = Path(str(col["out_dir"])).expanduser()

    collection = CollectionConfig(
        out_dir=out_dir,
        verify=bool(
            verify_override
            if verify_override is not None
            else _get(col, CollectionConfig, "verify")
        ),
        overwrite=bool(
            overwrite_override
            if overwrite_override is not None
            else _get(col, CollectionConfig, "overwrite")
        ),
        max_workers=int(_get(col, CollectionConfig, "max_workers")),
    )

    http_cfg = HttpConfig(
        connect_timeout_s=float(_get(http, HttpConfig, "connect_timeout_s")),
        read_timeout_s=float(_get(http, HttpConfig, "read_timeout_s")),
        total_timeout_s=_opt_float(_get(http, HttpConfig, "total_timeout_s")),
        max_retries=int(_get(http, HttpConfig, "max_retries")),
        max_auth_refresh=int(_get(http, HttpConfig, "max_auth_refresh")),
        chunk_size_bytes=int(_get(http, HttpConfig, "chunk_size_bytes")),
        issuer_id=str(_get(http, HttpConfig, "issuer_id")),
        progress=bool(_get(http, HttpConfig, "progress")),
    )

    cred = _get(auth, AuthConfig, "credentials_file")
    auth_cfg = AuthConfig(
        credentials_file=Path(str(cred)).expanduser() if cred is not None else None,
        auth_url=str(_get(auth, AuthConfig, "auth_url")),
    )

    read_cfg = ReadConfig(product=str(_get(rd, ReadConfig, "product")).upper())  # type: ignore[arg-type]

    cfg = AppConfig(collection=collection, http=http_cfg, auth=auth_cfg, read=read_cfg)
    validate(cfg)
    return cfg


def _build_collection(cfg: AppConfig, cart: Path) -> TileCollection:
    return TileCollection.from_cart(
        cart,
        cfg.collection.out_dir,
        verify=cfg.collection.verify,
        read_cfg=cfg.read,
    )


def _print_status(coll: TileCollection) -> None:
    for name, st in coll.status():
        print(
            f"{name}: exists={st.exists} checked={st.checked} "
            f"correct={st.correct} extracted={st.extracted}"
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="theiapipe")
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress (INFO).")
    sub = p.add_subparsers(dest="cmd", required=True)

    def _common(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--config", type=str, required=True, help="Path to YAML config.")
        sp.add_argument("--cart", type=str, required=True, help="Theia cart (.meta4).")
        sp.add_argument("--out", type=str, default=None, help="Override output directory.")

    d = sub.add_parser("download", help="Download (and verify) the tiles of a cart.")
    _common(d)
    d.add_argument("--overwrite", action="store_true", default=None, help="Re-download correct tiles.")
    d.add_argument(
        "--no-verify",
        dest="verify",
        action="store_false",
        default=None,
        help="Trust downloaded files without checking their MD5.",
    )

    s = sub.add_parser("status", help="Show the local status of the tiles of a cart.")
    _common(s)
    s.add_argument("--csv", type=str, default=None, help="Also write the status table to CSV.")

    e = sub.add_parser("extract", help="Extract the downloaded archives of a cart.")
    _common(e)
    e.add_argument("--overwrite", action="store_true", default=None, help="Extract again.")

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = app_cfg_from_dict(
        _load_yaml(Path(args.config)),
        out_dir_override=args.out,
        overwrite_override=getattr(args, "overwrite", None),
        verify_override=getattr(args, "verify", None),
    )
    coll = _build_collection(cfg, Path(args.cart))

    try:
        if args.cmd == "download":
            auth = TokenManager(auth=auth_from_config(cfg.auth))
            coll.download(
                auth,
                overwrite=cfg.collection.overwrite,
                verify=cfg.collection.verify,
                client=TheiaHttpClient(cfg.http),
                max_workers=cfg.collection.max_workers,
            )
            _print_status(coll)

        elif args.cmd == "status":
            _print_status(coll)
            if args.csv:
                print(f"Status CSV: {coll.export_status(Path(args.csv))}")

        elif args.cmd == "extract":
            paths = coll.extract(
                overwrite=cfg.collection.overwrite,
                max_workers=cfg.collection.max_workers,
            )
            for path in paths:
                print(f"Extracted: {path}")

    except CollectionError as err:
        _print_status(coll)
        print(str(err), file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
