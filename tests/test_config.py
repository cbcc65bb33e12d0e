"""Tests for the configuration module."""

import pytest
from pydantic import ValidationError

from whisperlink.config import (
  ConfigStore,
  SessionDefaults,
  TransportConfig,
  WhisperLinkConfig,
  get_env_bool,
  get_env_int,
  load_config_from_file,
)


class TestTransportConfig:
  """Test TransportConfig validation."""

  def test_transport_config_defaults(self):
    config = TransportConfig()

    assert config.connect_timeout_ms == 30000
    assert config.poll_timeout_ms == 5
    assert config.final_timeout_ms == 60000
    assert config.max_frame_size == 1 << 20

  def test_transport_config_positive_values(self):
    """Test that timeouts must be positive."""
    with pytest.raises(ValueError):
      TransportConfig(poll_timeout_ms=0)

    with pytest.raises(ValueError):
      TransportConfig(final_timeout_ms=-1)


class TestSessionDefaults:
  """Test SessionDefaults validation."""

  def test_session_defaults(self):
    defaults = SessionDefaults()

    assert defaults.thresh == 400
    assert defaults.silence_ms == 700
    assert defaults.voice_ms == 60
    assert defaults.vad_mode == -1
    assert defaults.start_input_timers is True
    assert defaults.no_input_timeout_ms == 5000
    assert defaults.speech_timeout_ms == 10000
    assert defaults.partial_count == 3
    assert defaults.default_confidence == 87.3
    assert defaults.audio_block_size == 3200
    assert defaults.max_sample_rate == 16000
    assert defaults.codec == "L16"

  def test_codec_must_be_linear_pcm(self):
    with pytest.raises(ValueError, match="codec must be L16"):
      SessionDefaults(codec="PCMU")

  def test_negative_no_input_timeout_allowed(self):
    """A negative no-input timeout disables the timer rather than being rejected."""
    assert SessionDefaults(no_input_timeout_ms=-1).no_input_timeout_ms == -1


class TestWhisperLinkConfig:
  """Test the top-level configuration."""

  def test_defaults(self):
    config = WhisperLinkConfig()

    assert config.server_url == "ws://127.0.0.1:2700"
    assert config.return_json is True
    assert config.auto_reload is True
    assert isinstance(config.transport, TransportConfig)
    assert isinstance(config.session, SessionDefaults)

  def test_server_url_must_be_websocket(self):
    with pytest.raises(ValueError, match="ws:// or wss://"):
      WhisperLinkConfig(server_url="http://127.0.0.1:2700")

    assert WhisperLinkConfig(server_url="wss://asr.example").server_url == "wss://asr.example"

  def test_nested_dict_validation(self):
    config = WhisperLinkConfig.model_validate(
      {"transport": {"final_timeout_ms": 5000}, "session": {"thresh": 250}}
    )

    assert config.transport.final_timeout_ms == 5000
    assert config.session.thresh == 250


class TestLoadConfigFromFile:
  """Test YAML configuration loading."""

  def test_load_valid_config(self, tmp_path):
    path = tmp_path / "whisperlink.yaml"
    path.write_text(
      """
server_url: ws://asr.internal:2700
return_json: false
transport:
  poll_timeout_ms: 10
session:
  speech_timeout_ms: 8000
  partial_count: 1
"""
    )

    config = load_config_from_file(path)

    assert config.server_url == "ws://asr.internal:2700"
    assert config.return_json is False
    assert config.transport.poll_timeout_ms == 10
    assert config.session.speech_timeout_ms == 8000
    assert config.session.partial_count == 1

  def test_empty_file(self, tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    with pytest.raises(ValueError, match="Configuration file is empty"):
      load_config_from_file(path)

  def test_non_dict_yaml(self, tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- one\n- two\n")

    with pytest.raises(ValueError, match="must contain a YAML dictionary"):
      load_config_from_file(path)

  def test_invalid_yaml(self, tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("server_url: [unclosed\n")

    with pytest.raises(ValueError, match="Invalid YAML"):
      load_config_from_file(path)

  def test_missing_file(self, tmp_path):
    with pytest.raises(ValidationError):
      load_config_from_file(tmp_path / "missing.yaml")

  def test_invalid_values(self, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("server_url: http://nope\n")

    with pytest.raises(ValidationError):
      load_config_from_file(path)


class TestConfigStore:
  """Test configuration reloading."""

  def test_defaults_without_path(self):
    store = ConfigStore()

    assert store.reload() == WhisperLinkConfig()

  def test_reload_picks_up_changes(self, tmp_path):
    path = tmp_path / "whisperlink.yaml"
    path.write_text("server_url: ws://first:1\n")
    store = ConfigStore(path)
    store.reload()
    first = store.current

    path.write_text("server_url: ws://second:2\n")
    store.reload()

    assert first.server_url == "ws://first:1"
    assert store.current.server_url == "ws://second:2"

  def test_broken_file_falls_back_to_defaults(self, tmp_path):
    path = tmp_path / "whisperlink.yaml"
    path.write_text("- not a mapping\n")

    config = ConfigStore(path).reload()

    assert config.server_url == "ws://127.0.0.1:2700"

  def test_missing_file_falls_back_to_defaults(self, tmp_path):
    store = ConfigStore(tmp_path / "missing.yaml")

    assert store.reload() == WhisperLinkConfig()


class TestEnvironment:
  """Test environment helpers."""

  def test_get_env_int(self, monkeypatch):
    monkeypatch.setenv("WHISPERLINK_TEST_INT", "42")
    assert get_env_int("WHISPERLINK_TEST_INT", 1) == 42

    monkeypatch.setenv("WHISPERLINK_TEST_INT", "many")
    assert get_env_int("WHISPERLINK_TEST_INT", 1) == 1

  def test_get_env_bool(self, monkeypatch):
    monkeypatch.setenv("WHISPERLINK_TEST_BOOL", "yes")
    assert get_env_bool("WHISPERLINK_TEST_BOOL", False) is True

    monkeypatch.delenv("WHISPERLINK_TEST_BOOL")
    assert get_env_bool("WHISPERLINK_TEST_BOOL", False) is False
