from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from getpass import getpass
from pathlib import Path
from typing import Optional, Protocol

import requests

from ..cfg import THEIA_AUTH_URL, AuthConfig

log = logging.getLogger(__name__)


class Authenticator(Protocol):
    def get_token(self) -> str: ...


class RefreshableAuthenticator(Authenticator, Protocol):
    def refresh(self, stale_token: Optional[str] = None) -> str: ...


@dataclass(frozen=True)
class TheiaAuth:
    username: str
    password: str
    auth_url: str = THEIA_AUTH_URL


def prompt_auth(auth_url: str = THEIA_AUTH_URL) -> TheiaAuth:
    username = getpass("Theia username (email): ")
    password = getpass("Theia password: ")
    return TheiaAuth(username=username, password=password, auth_url=auth_url)


def load_auth_file(path: Path, auth_url: str = THEIA_AUTH_URL) -> TheiaAuth:
    """Read credentials from a two-line file: username, then password."""
    lines = [ln.strip() for ln in Path(path).read_text(encoding="utf-8").splitlines()]
    lines = [ln for ln in lines if ln]
    if len(lines) < 2:
        raise ValueError(
            f"Credentials file {path} must contain the username and the password on two lines."
        )
    return TheiaAuth(username=lines[0], password=lines[1], auth_url=auth_url)


def auth_from_config(cfg: AuthConfig) -> TheiaAuth:
    if cfg.credentials_file is not None and Path(cfg.credentials_file).exists():
        return load_auth_file(Path(cfg.credentials_file), auth_url=cfg.auth_url)
    return prompt_auth(auth_url=cfg.auth_url)


def get_access_token(auth: TheiaAuth, timeout_s: int = 60) -> str:
    r = requests.post(
        auth.auth_url,
        data={"ident": auth.username, "pass": auth.password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=timeout_s,
    )
    r.raise_for_status()
    token = r.text.strip()
    if not token or "<" in token:
        raise RuntimeError("Authentication response does not contain a token.")
    return token


@dataclass
class TokenManager:
    """Authenticator backed by Theia credentials; the token is fetched lazily.

    Safe to share between download threads: concurrent callers holding the
    same expired token trigger a single re-authentication.
    """

    auth: TheiaAuth
    access_token: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def get_token(self) -> str:
        with self._lock:
            if self.access_token is not None:
                return self.access_token
            return self._fetch()

    def refresh(self, stale_token: Optional[str] = None) -> str:
        """Fetch a new token, unless another thread already replaced stale_token."""
        with self._lock:
            if (
                stale_token is not None
                and self.access_token is not None
                and self.access_token != stale_token
            ):
                return self.access_token
            return self._fetch()

    def _fetch(self) -> str:
        log.info("Requesting Theia access token for %s", self.auth.username)
        token = get_access_token(self.auth)
        self.access_token = token
        return token
