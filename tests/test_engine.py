"""Tests for the ASR interface and the command-line streaming helpers."""

import json

import numpy as np
import pytest
import soundfile as sf

from whisperlink.__main__ import read_pcm, stream_file
from whisperlink.config import ConfigStore
from whisperlink.engine import WhisperAsr
from whisperlink.interfaces import VadState


def make_engine(store, transport, vad, clock, urls=None):
  def connect(url, timeout):
    if urls is not None:
      urls.append(url)
    return transport

  return WhisperAsr(
    store, transport_factory=connect, vad_factory=lambda rate: vad, clock=clock
  )


class TestWhisperAsr:
  """Test session creation and configuration reloads."""

  def test_open_session_applies_parameters(self, transport, vad, clock):
    engine = make_engine(ConfigStore(), transport, vad, clock)
    engine.load()

    session = engine.open_session(
      "PCMU", 8000, parameters={"speech-timeout": "2500", "vad-thresh": "300"}
    )

    assert session.params.speech_timeout_ms == 2500
    assert vad.params["thresh"] == 300

  def test_destination_defaults_to_configured_url(self, tmp_path, transport, vad, clock):
    path = tmp_path / "whisperlink.yaml"
    path.write_text("server_url: ws://asr.internal:2700\n")
    urls = []
    engine = make_engine(ConfigStore(path), transport, vad, clock, urls)
    engine.load()

    engine.open_session("L16", 8000)
    engine.open_session("L16", 8000, "ws://override:1")

    assert urls == ["ws://asr.internal:2700", "ws://override:1"]

  def test_reload_keeps_open_sessions_on_their_snapshot(self, tmp_path, transport, vad, clock):
    path = tmp_path / "whisperlink.yaml"
    path.write_text("session:\n  speech_timeout_ms: 1000\n")
    engine = make_engine(ConfigStore(path), transport, vad, clock)
    engine.load()
    session = engine.open_session("L16", 8000)

    path.write_text("session:\n  speech_timeout_ms: 2000\n")
    assert engine.reload() is True

    assert session.config.session.speech_timeout_ms == 1000
    assert engine.store.current.session.speech_timeout_ms == 2000

  def test_reload_ignored_without_auto_reload(self, tmp_path, transport, vad, clock):
    path = tmp_path / "whisperlink.yaml"
    path.write_text("auto_reload: false\nserver_url: ws://first:1\n")
    engine = make_engine(ConfigStore(path), transport, vad, clock)
    engine.load()

    path.write_text("server_url: ws://second:2\n")

    assert engine.reload() is False
    assert engine.store.current.server_url == "ws://first:1"


class TestStreamFile:
  """Test feeding a recording through a session."""

  def test_prints_results_until_final(self, capsys, transport, vad, clock):
    engine = make_engine(ConfigStore(), transport, vad, clock)
    session = engine.open_session("L16", 8000)
    vad.push(VadState.START_TALKING, VadState.STOP_TALKING)
    transport.queue_text("from file")

    assert stream_file(session, bytes(320 * 4), 20, 0, realtime=False) is True

    out = capsys.readouterr().out
    results = [line for line in out.splitlines() if line.startswith("final: ")]
    assert len(results) == 1
    payload = results[0].removeprefix("final: ")
    assert json.loads(payload)["text"] == "from file"

  def test_no_final_result(self, transport, vad, clock):
    engine = make_engine(ConfigStore(), transport, vad, clock)
    session = engine.open_session("L16", 8000)

    assert stream_file(session, bytes(320 * 4), 20, 100, realtime=False) is False
    assert len(vad.frames) == 9


class TestReadPcm:
  """Test loading recordings for the command line."""

  def test_mono_samples_kept(self, tmp_path):
    path = tmp_path / "mono.wav"
    samples = np.array([0, 1, -1, 32767, -32768], dtype=np.int16)
    sf.write(path, samples, 8000, subtype="PCM_16")

    rate, pcm = read_pcm(path)

    assert rate == 8000
    assert pcm == samples.astype("<i2").tobytes()

  def test_stereo_mixed_down(self, tmp_path):
    path = tmp_path / "stereo.wav"
    samples = np.array([[100, 300], [-100, -300], [0, 0]], dtype=np.int16)
    sf.write(path, samples, 16000, subtype="PCM_16")

    rate, pcm = read_pcm(path)

    assert rate == 16000
    assert np.frombuffer(pcm, dtype="<i2").tolist() == [200, -200, 0]

  def test_unreadable_file(self, tmp_path):
    path = tmp_path / "notes.wav"
    path.write_text("not audio")

    with pytest.raises(RuntimeError):
      read_pcm(path)
