import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pocket_chat.cli.main import app

runner = CliRunner()


@pytest.fixture()
def mock_env(tmp_path, monkeypatch):
    monkeypatch.setenv("POCKET_CHAT_RUNTIME_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("POCKET_CHAT_ENV", "mock")
    return tmp_path / "runtime-data"


def test_ask_prints_reply_and_logs(mock_env):
    result = runner.invoke(app, ["ask", "hello there"])
    assert result.exit_code == 0, result.output
    assert "Mock reply to: hello there" in result.output
    log_path = mock_env / "logs" / "pocket_chat.log"
    assert log_path.exists(), "Expected runtime log file"


def test_ask_without_streaming(mock_env):
    result = runner.invoke(app, ["ask", "hi", "--no-stream", "--shape", "completion"])
    assert result.exit_code == 0, result.output
    assert result.output.strip().endswith("Mock reply to: hi")


def test_ask_rejects_unknown_shape(mock_env):
    result = runner.invoke(app, ["ask", "hi", "--shape", "rpc"])
    assert result.exit_code == 1
    assert "Unknown API shape" in result.output


def test_ask_blank_message(mock_env):
    result = runner.invoke(app, ["ask", "   "])
    assert result.exit_code == 1
    assert "Nothing to send" in result.output


def test_unknown_backend(mock_env):
    result = runner.invoke(app, ["check", "--backend", "nowhere"])
    assert result.exit_code == 1
    assert "Unknown backend: nowhere" in result.output


def test_missing_api_key(tmp_path, monkeypatch):
    monkeypatch.setenv("POCKET_CHAT_RUNTIME_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.delenv("POCKET_CHAT_ENV", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    result = runner.invoke(app, ["ask", "hi", "--backend", "gemini"])
    assert result.exit_code == 1
    assert "GOOGLE_API_KEY not found" in result.output


def test_check_models_info_and_backends(mock_env):
    result = runner.invoke(app, ["check"])
    assert result.exit_code == 0
    assert "Connected to mock backend" in result.output

    result = runner.invoke(app, ["models", "--backend", "ollama"])
    assert result.exit_code == 0
    assert "phi" in result.output

    result = runner.invoke(app, ["info", "--backend", "gemini"])
    assert result.exit_code == 0
    assert "Model: gemini-1.5-flash" in result.output

    result = runner.invoke(app, ["backends"])
    assert result.exit_code == 0
    assert "ollama (default)" in result.output
    assert "gemini" in result.output


def test_chat_repl(mock_env):
    result = runner.invoke(app, ["chat"], input="hello\n/help\n/clear\n/check\n/quit\n")
    assert result.exit_code == 0, result.output
    assert "How can I help you today?" in result.output
    assert "AI> Mock reply to: hello" in result.output
    assert "/models" in result.output
    assert "Conversation cleared" in result.output

