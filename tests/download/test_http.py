from __future__ import annotations

import itertools
import threading
from pathlib import Path

import pytest
import requests

from theiapipe.cfg import HttpConfig
from theiapipe.download.http import TheiaHttpClient, build_download_url
from theiapipe.errors import TransferError


def _client(session, **kw) -> TheiaHttpClient:
    cfg = HttpConfig(progress=False, chunk_size_bytes=4, **kw)
    return TheiaHttpClient(cfg, session=session, sleep=lambda s: None)


def test_build_download_url_strips_cart_token():
    assert (
        build_download_url("https://h/c/S2/id/download/?_tk=abc.def")
        == "https://h/c/S2/id/download/?issuerId=theia"
    )
    assert build_download_url("https://h/c/S2/id/download") == "https://h/c/S2/id/download/?issuerId=theia"
    assert build_download_url("https://h/x", "other") == "https://h/x/?issuerId=other"


def test_retries_on_server_errors_then_succeeds(tmp_path: Path, fake_auth, fake_session, fake_response):
    session = fake_session(
        [
            fake_response(status_code=503, headers={"Retry-After": "0"}),
            fake_response(status_code=502),
            fake_response(body=b"payload"),
        ]
    )
    n = _client(session, max_retries=3).stream_download("https://h/x", tmp_path / "a.zip", auth=fake_auth)

    assert n == len(b"payload")
    assert len(session.calls) == 3
    assert (tmp_path / "a.zip").read_bytes() == b"payload"


def test_gives_up_after_max_retries(tmp_path: Path, fake_auth, fake_session, fake_response):
    session = fake_session([fake_response(status_code=503) for _ in range(3)])
    with pytest.raises(TransferError) as ei:
        _client(session, max_retries=2).stream_download("https://h/x", tmp_path / "a.zip", auth=fake_auth)
    assert ei.value.status_code == 503
    assert len(session.calls) == 3


def test_refreshes_token_once_on_401(tmp_path: Path, fake_auth, fake_session, fake_response):
    session = fake_session([fake_response(status_code=401), fake_response(body=b"ok")])
    _client(session, max_retries=0).stream_download("https://h/x", tmp_path / "a.zip", auth=fake_auth)

    assert fake_auth.refreshed == 1
    assert fake_auth.stale_tokens == ["tok-1"]
    assert session.calls[0]["headers"]["Authorization"] == "Bearer tok-1"
    assert session.calls[1]["headers"]["Authorization"] == "Bearer tok-2"


def test_connection_error_is_wrapped(tmp_path: Path, fake_auth, fake_session):
    def _raise(url):
        raise requests.ConnectionError("down")

    with pytest.raises(TransferError):
        _client(fake_session(_raise), max_retries=1).stream_download(
            "https://h/x", tmp_path / "a.zip", auth=fake_auth
        )


def test_existing_file_replaced_only_on_success(tmp_path: Path, fake_auth, fake_session, fake_response):
    dst = tmp_path / "a.zip"
    dst.write_bytes(b"old")

    session = fake_session([fake_response(body=b"0123456789", fail_after=4)])
    with pytest.raises(TransferError):
        _client(session, max_retries=0).stream_download("https://h/x", dst, auth=fake_auth)
    assert dst.read_bytes() == b"old"
    assert not (tmp_path / "a.zip.part").exists()


def test_total_timeout_aborts_stream(tmp_path: Path, fake_auth, fake_session, fake_response, monkeypatch):
    clock = itertools.count(0.0, 100.0)
    monkeypatch.setattr("theiapipe.download.http.time.monotonic", lambda: next(clock))

    session = fake_session([fake_response(body=b"0123456789")])
    with pytest.raises(TransferError):
        _client(session, max_retries=0, total_timeout_s=10.0).stream_download(
            "https://h/x", tmp_path / "a.zip", auth=fake_auth
        )
    assert not (tmp_path / "a.zip").exists()
    assert not (tmp_path / "a.zip.part").exists()


def test_each_thread_gets_its_own_session():
    client = TheiaHttpClient(HttpConfig(progress=False))
    sessions = {}

    def _grab(key: str) -> None:
        sessions[key] = client.session

    workers = [threading.Thread(target=_grab, args=(k,)) for k in ("a", "b")]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    assert isinstance(sessions["a"], requests.Session)
    assert sessions["a"] is not sessions["b"]
    assert client.session is client.session


def test_injected_session_is_shared(fake_session):
    session = fake_session([])
    client = TheiaHttpClient(HttpConfig(progress=False), session=session)
    seen = []

    w = threading.Thread(target=lambda: seen.append(client.session))
    w.start()
    w.join()

    assert seen == [session]
    assert client.session is session
