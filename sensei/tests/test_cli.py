"""Tests for the sensei CLI."""

import json

import pytest
import yaml
from typer.testing import CliRunner

from sensei.analysis import JsonConfigStore, Phase, SessionKey
from sensei.cli import TranscriptFollower, app, visible_tail
from sensei.tests.conftest import enable


@pytest.fixture
def cli_config(tmp_path):
    store = tmp_path / "sessions.json"
    config_path = tmp_path / "sensei.yaml"
    config_path.write_text(yaml.dump({'store': {'path': str(store)}}))
    return config_path, store


def test_config_set_then_show(cli_config):
    config_path, store = cli_config
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(config_path), "config", "set", "srv:sess",
                                 "enabled=true", "confidence_threshold=0.7", "model=gpt-4o"])
    assert result.exit_code == 0, result.output

    saved = JsonConfigStore(store).load()[SessionKey("srv", "sess")]
    assert saved["enabled"] is True
    assert saved["confidence_threshold"] == 0.7
    assert saved["model"] == "gpt-4o"

    result = runner.invoke(app, ["--config", str(config_path), "config", "show"])
    assert result.exit_code == 0, result.output
    assert "srv:sess" in result.output
    assert "gpt-4o" in result.output


def test_config_set_rejects_invalid_values(cli_config):
    config_path, store = cli_config
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(config_path), "config", "set", "srv:sess", "debounce_ms=100"])
    assert result.exit_code == 1
    result = runner.invoke(app, ["--config", str(config_path), "config", "set", "srv:sess", "colour=blue"])
    assert result.exit_code == 1
    result = runner.invoke(app, ["--config", str(config_path), "config", "set", "no-colon", "enabled=true"])
    assert result.exit_code == 1
    assert JsonConfigStore(store).load() == {}


def test_config_show_empty(cli_config):
    config_path, _ = cli_config
    result = CliRunner().invoke(app, ["--config", str(config_path), "config", "show"])
    assert result.exit_code == 0
    assert "No stored session configs" in result.output


def test_analyze_file_with_mock_model(cli_config, tmp_path):
    config_path, _ = cli_config
    output = tmp_path / "out.log"
    output.write_text("FAIL tests/test_parser.py::test_empty\n1 failed, 3 passed\n")

    result = CliRunner().invoke(app, ["--config", str(config_path), "analyze", str(output),
                                      "--model", "mock", "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["recommendation"] == "Mock response for testing"
    assert data["confidence"] == 0.5
    assert data["executed"] is False


def test_analyze_empty_input(cli_config):
    config_path, _ = cli_config
    result = CliRunner().invoke(app, ["--config", str(config_path), "analyze", "--model", "mock"], input="")
    assert result.exit_code == 1


def write_lines(path, lines):
    path.write_text("\n".join(lines) + "\n")


def test_visible_tail_skips_blank_lines():
    assert visible_tail(["a", "Working...", "", "  "], 1) == ["Working..."]
    assert visible_tail(["a", "b", "", "c"], 2) == ["b", "c"]
    assert visible_tail([], 3) == []


@pytest.mark.asyncio
async def test_follower_finishes_each_episode_of_a_growing_transcript(monitor, key, manual_sleep, mock_provider, tmp_path):
    enable(monitor, key, auto_approve=False)
    transcript = tmp_path / "session.log"
    follower = TranscriptFollower(monitor, key, transcript)

    log = ["$ opencode", "> add a login form", "Working..."]
    write_lines(transcript, log)
    assert await follower.poll() == Phase.GENERATING

    log += ["Added LoginForm component.", "Wired it into the router.", "Tests pass."]
    write_lines(transcript, log)
    assert await follower.poll() == Phase.DEBOUNCING
    await manual_sleep.fire_all()
    assert mock_provider.call_count == 1
    assert mock_provider.requests[0].text == "Added LoginForm component.\nWired it into the router.\nTests pass."

    log += ["> now validate the email field", "Working..."]
    write_lines(transcript, log)
    assert await follower.poll() == Phase.GENERATING
    log += ["Added email validation."]
    write_lines(transcript, log)
    assert await follower.poll() == Phase.DEBOUNCING
    await manual_sleep.fire_all()

    assert mock_provider.call_count == 2
    assert mock_provider.requests[1].text == "Added email validation."


@pytest.mark.asyncio
async def test_follower_resets_episode_when_transcript_is_truncated(monitor, key, manual_sleep, mock_provider, tmp_path):
    enable(monitor, key, auto_approve=False)
    transcript = tmp_path / "session.log"
    follower = TranscriptFollower(monitor, key, transcript)

    write_lines(transcript, ["Working..."])
    assert await follower.poll() == Phase.GENERATING
    write_lines(transcript, ["Working...", "Half of an answer."])
    assert await follower.poll() == Phase.DEBOUNCING
    transcript.write_text("")
    assert await follower.poll() == Phase.IDLE
    await manual_sleep.fire_all()

    assert mock_provider.call_count == 0
    assert follower.seen == 0


@pytest.mark.asyncio
async def test_follower_missing_file_is_idle(monitor, key, tmp_path):
    enable(monitor, key)
    follower = TranscriptFollower(monitor, key, tmp_path / "not-yet.log")
    assert await follower.poll() == Phase.IDLE
