import os

import pytest

from ciphercast import run_relay


@pytest.fixture
def served(monkeypatch):
    calls = []
    monkeypatch.setattr(run_relay.uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
    return calls


def test_short_key_refuses_to_start(tmp_path, served):
    path = tmp_path / "secret.key"
    path.write_bytes(os.urandom(16))
    with pytest.raises(SystemExit) as info:
        run_relay.main(["--key", str(path)])
    assert info.value.code != 0
    assert "32 bytes" in str(info.value.code)
    assert served == []


def test_missing_key_refuses_to_start(tmp_path, served):
    with pytest.raises(SystemExit):
        run_relay.main(["--key", str(tmp_path / "nope.key")])
    assert served == []


def test_starts_with_valid_key(tmp_path, served):
    path = tmp_path / "secret.key"
    path.write_bytes(os.urandom(32))
    run_relay.main(["--key", str(path), "--port", "4321", "--overflow", "disconnect", "--max-queue", "7"])

    (app, kw), = served
    assert kw["port"] == 4321
    assert kw["host"] == "127.0.0.1"
    assert app.state.registry.overflow == "disconnect"
    assert app.state.registry.max_queue == 7


def test_environment_defaults(monkeypatch):
    monkeypatch.setenv("PORT", "8088")
    monkeypatch.setenv("CIPHERCAST_KEY_PATH", "/tmp/k.key")
    monkeypatch.setenv("CIPHERCAST_OVERFLOW", "disconnect")
    args = run_relay.parse_args([])
    assert args.port == 8088
    assert args.key_path == "/tmp/k.key"
    assert args.overflow == "disconnect"
    assert args.max_upload_mb == 200
