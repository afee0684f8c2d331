"""
Tests for scripts/send_test_notification.py (the dev replay helper).
"""

import importlib.util
import json
import sys
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from sns_fixtures import make_notification_envelope

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "send_test_notification.py"


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("send_test_notification", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture()
def envelope_file(tmp_path):
    path = tmp_path / "envelope.json"
    path.write_text(json.dumps(make_notification_envelope()))
    return path


def _run(script, monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["send_test_notification.py", *args])
    return script.main()


def test_dry_run_does_not_send(script, monkeypatch, envelope_file, capsys):
    with patch.object(script.httpx, "post") as mock_post:
        code = _run(script, monkeypatch, "--file", str(envelope_file), "--dry-run")

    assert code == 0
    mock_post.assert_not_called()
    assert "[DRY RUN]" in capsys.readouterr().out


def test_posts_raw_envelope_like_sns(script, monkeypatch, envelope_file):
    request = httpx.Request("POST", "http://localhost:8000/inbound-notifications")
    with patch.object(
        script.httpx, "post", return_value=httpx.Response(204, request=request)
    ) as mock_post:
        code = _run(script, monkeypatch, "--file", str(envelope_file))

    assert code == 0
    args, kwargs = mock_post.call_args
    assert args[0] == "http://localhost:8000/inbound-notifications"
    assert kwargs["content"] == envelope_file.read_bytes()
    assert kwargs["headers"]["Content-Type"].startswith("text/plain")
    assert kwargs["headers"]["x-amz-sns-message-type"] == "Notification"


def test_error_status_returns_nonzero(script, monkeypatch, envelope_file):
    request = httpx.Request("POST", "http://localhost:8000/inbound-notifications")
    response = httpx.Response(401, json={"detail": "bad signature"}, request=request)
    with patch.object(script.httpx, "post", return_value=response):
        code = _run(script, monkeypatch, "--file", str(envelope_file))

    assert code == 1


def test_missing_file_returns_nonzero(script, monkeypatch, tmp_path):
    code = _run(script, monkeypatch, "--file", str(tmp_path / "missing.json"))
    assert code == 1
