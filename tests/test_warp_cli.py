"""Tests for scripts/warp_cli.py — argparse runner over raw PCM files."""

from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import numpy as np
import pytest

SR = 44100

_CLI_PATH = Path(__file__).resolve().parent.parent / "scripts" / "warp_cli.py"
_spec = importlib.util.spec_from_file_location("warp_cli", _CLI_PATH)
warp_cli = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(warp_cli)


@pytest.fixture()
def pcm_file(tmp_path: Path) -> Path:
    """One second of mono float32 440 Hz."""
    t = np.arange(SR) / SR
    path = tmp_path / "take.raw"
    path.write_bytes((0.5 * np.sin(2.0 * np.pi * 440.0 * t)).astype("<f4").tobytes())
    return path


def _run(argv: list[str], capsys: pytest.CaptureFixture[str]) -> tuple[int, str, str]:
    code = warp_cli.main(argv)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestWarpCli:
    def test_analyze(self, pcm_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        code, out, _ = _run(["analyze", str(pcm_file), "--channels", "1"], capsys)
        assert code == 0
        data = json.loads(out)
        assert data["peak_db"] == pytest.approx(-6.02, abs=0.05)
        assert data["stereo_image"] is None

    def test_render_preview_range(
        self, pcm_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        markers = tmp_path / "markers.json"
        markers.write_text(json.dumps([{"source_time": 1.0, "target_time": 2.0}]))
        output = tmp_path / "out.raw"
        argv = [
            "render", str(pcm_file), str(output), "--channels", "1",
            "--markers", str(markers), "--start", "0.5", "--end", "1.5",
        ]
        code, out, _ = _run(argv, capsys)
        assert code == 0
        assert json.loads(out)["n_frames"] == SR
        assert output.stat().st_size == SR * 4

    def test_render_whole_clip_with_preset(
        self, pcm_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        output = tmp_path / "out.raw"
        argv = [
            "render", str(pcm_file), str(output), "--channels", "1",
            "--pitch", "-3", "--preset", "vinyl-master",
        ]
        code, out, _ = _run(argv, capsys)
        assert code == 0
        data = json.loads(out)
        assert data["replace_original"] is False
        assert data["n_frames"] == SR

    def test_engine_error_exit_code(
        self, pcm_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        markers = tmp_path / "markers.json"
        markers.write_text(json.dumps([{"source_time": 1.0, "target_time": -2.0}]))
        argv = [
            "render", str(pcm_file), str(tmp_path / "out.raw"), "--channels", "1",
            "--markers", str(markers),
        ]
        code, _, err = _run(argv, capsys)
        assert code == 2
        assert json.loads(err.strip().splitlines()[-1])["error"]["kind"] == "validation"
