"""Tests for settings and environment overrides."""

import pytest

from robot_remote.config import GestureThresholds, RobotSettings


def test_defaults_and_urls():
    settings = RobotSettings()
    assert settings.websocket_url == "ws://192.168.1.219:8765"
    assert settings.video_stream_url == "http://192.168.1.219:8080/"


def test_from_env(monkeypatch):
    monkeypatch.setenv("ROBOT_HOST", "10.0.0.7")
    monkeypatch.setenv("ROBOT_COMMAND_PORT", "9001")
    monkeypatch.setenv("ROBOT_VIDEO_PORT", "9002")
    monkeypatch.setenv("ROBOT_TOKEN", "t0k3n")

    settings = RobotSettings.from_env()

    assert settings == RobotSettings("10.0.0.7", 9001, 9002, "t0k3n")


def test_from_env_rejects_bad_port(monkeypatch):
    monkeypatch.setenv("ROBOT_COMMAND_PORT", "eighty")
    with pytest.raises(ValueError):
        RobotSettings.from_env()


def test_overrides_skip_none():
    settings = RobotSettings(host="a").with_overrides(host=None, video_port=1234)
    assert settings.host == "a"
    assert settings.video_port == 1234
    assert settings.command_port == 8765


def test_gesture_threshold_defaults():
    t = GestureThresholds()
    assert (t.hold_ms, t.double_tap_ms, t.move_slop_px, t.swipe_px) == (400, 300, 20.0, 30.0)
