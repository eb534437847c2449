import subprocess
import sys


def _help(*args):
    proc = subprocess.run(
        [sys.executable, "-m", "virtual_queue.app", *args],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    return proc.stdout + proc.stderr


def test_app_help_runs():
    out = _help("-h")
    assert "main entrypoint" in out
    assert "serve" in out
    assert "client" in out


def test_serve_help_runs():
    out = _help("serve", "-h")
    assert "--mqtt-host" in out
    assert "--pending-ttl-minutes" in out
    assert "--sms-backend" in out


def test_client_help_runs():
    out = _help("client", "-h")
    assert "join" in out
    assert "watch" in out
