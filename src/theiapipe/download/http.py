from __future__ import annotations

import logging
import random
import re
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

import requests
from tqdm.auto import tqdm

from ..cfg import HttpConfig
from ..errors import TransferError, UnexpectedContentError
from .auth import Authenticator

log = logging.getLogger(__name__)

_CART_TOKEN_RE = re.compile(r"\?_tk=.*$")


def _is_auth_error(status_code: int) -> bool:
    return status_code in (401, 403)


def _is_retryable(status_code: int) -> bool:
    return status_code in (429, 500, 502, 503, 504)


def _is_text_payload(content_type: str) -> bool:
    ct = content_type.lower()
    return ct.startswith("text/") or "html" in ct or "json" in ct


def _backoff(attempt: int) -> float:
    delay = min(0.75 * (2**attempt), 20.0)
    return max(0.0, delay * (1.0 + random.uniform(-0.25, 0.25)))


def build_download_url(url: str, issuer_id: str = "theia") -> str:
    """Drop the cart access token, then add the issuer parameter."""
    base = _CART_TOKEN_RE.sub("", url).rstrip("/")
    return f"{base}/?issuerId={issuer_id}"


class TheiaHttpClient:
    """Authenticated GET + streamed download against the Theia distribution server.

    An injected session is used as is. Otherwise each thread gets its own
    requests.Session, so one client can serve a download thread pool.
    """

    def __init__(
        self,
        cfg: Optional[HttpConfig] = None,
        *,
        session: Any = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cfg = cfg or HttpConfig()
        self._session = session
        self._local = threading.local()
        self._sleep = sleep

    @property
    def session(self) -> Any:
        if self._session is not None:
            return self._session
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            self._local.session = s
        return s

    def request(self, url: str, *, auth: Authenticator) -> requests.Response:
        """GET with bearer auth, one token refresh on 401/403, retries on 5xx/429."""
        auth_refreshes = 0
        timeout = (self.cfg.connect_timeout_s, self.cfg.read_timeout_s)

        attempt = 0
        while True:
            token = auth.get_token()
            try:
                r = self.session.request(
                    "GET",
                    url,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=timeout,
                    stream=True,
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                if attempt >= self.cfg.max_retries:
                    raise TransferError(url, reason=str(e)) from e
                log.warning("Request to %s failed (%s), retrying", url, e)
                self._sleep(_backoff(attempt))
                attempt += 1
                continue

            if (
                _is_auth_error(r.status_code)
                and auth_refreshes < self.cfg.max_auth_refresh
                and hasattr(auth, "refresh")
            ):
                r.close()
                auth_refreshes += 1
                auth.refresh(stale_token=token)  # type: ignore[attr-defined]
                continue

            if _is_retryable(r.status_code) and attempt < self.cfg.max_retries:
                r.close()
                delay = None
                retry_after = r.headers.get("Retry-After")
                if retry_after:
                    try:
                        delay = float(retry_after)
                    except ValueError:
                        delay = None
                self._sleep(delay if delay is not None else _backoff(attempt))
                attempt += 1
                continue

            if not (200 <= r.status_code < 300):
                r.close()
                raise TransferError(url, status_code=r.status_code, reason=str(r.reason or ""))
            return r

    def stream_download(self, url: str, dst: Path, *, auth: Authenticator) -> int:
        """Stream url into dst, replacing it. Returns the number of bytes written.

        The body goes to "<dst>.part" first and is moved onto dst only once
        complete; on any failure the partial file is removed.
        """
        dst = Path(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)

        r = self.request(url, auth=auth)
        try:
            content_type = r.headers.get("Content-Type", "") or ""
            if _is_text_payload(content_type):
                raise UnexpectedContentError(url, content_type, excerpt=r.text[:2000])

            total = r.headers.get("Content-Length")
            total_i = int(total) if total and total.isdigit() else None
            deadline = (
                time.monotonic() + self.cfg.total_timeout_s
                if self.cfg.total_timeout_s is not None
                else None
            )

            tmp = dst.with_name(dst.name + ".part")
            written = 0
            try:
                with (
                    open(tmp, "wb") as f,
                    tqdm(
                        total=total_i,
                        unit="B",
                        unit_scale=True,
                        unit_divisor=1024,
                        desc=dst.name,
                        leave=False,
                        disable=not self.cfg.progress,
                    ) as pbar,
                ):
                    for chunk in r.iter_content(chunk_size=self.cfg.chunk_size_bytes):
                        if deadline is not None and time.monotonic() > deadline:
                            raise TransferError(
                                url,
                                reason=f"download exceeded {self.cfg.total_timeout_s}s",
                            )
                        if not chunk:
                            continue
                        f.write(chunk)
                        written += len(chunk)
                        pbar.update(len(chunk))
            except requests.RequestException as e:
                tmp.unlink(missing_ok=True)
                raise TransferError(url, reason=str(e)) from e
            except BaseException:
                tmp.unlink(missing_ok=True)
                raise

            tmp.replace(dst)
            log.info("Downloaded %s (%d bytes)", dst, written)
            return written
        finally:
            r.close()
