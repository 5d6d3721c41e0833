"""Tests for CLI commands."""

import pytest
from click.testing import CliRunner
from rich.console import Console

from adsb_relay import protocol
from adsb_relay.cli import cli
from adsb_relay.categories import TargetType
from adsb_relay.projection import Projector
from adsb_relay.tracker import Track, TrackStatus, TrackTable, Vector3


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep Rich from squeezing table cells in the 80-column test terminal."""
    monkeypatch.setattr("adsb_relay.cli.console", Console(width=200))


@pytest.fixture
def track_file(tmp_path):
    """A binary output file with two batches."""
    t1 = Track(
        id=0x4B1234, number=1,
        position=Vector3(-160.0, -166.0, 155.0), velocity=Vector3(0.0, 128.6, 0.0),
        bar_height=155.0, target_type=TargetType.AIRPLANE,
        forming_time=1000.0, capture_time=1000.0,
    )
    t2 = Track(id=0x4B1234, number=1, status=TrackStatus.RESET, forming_time=1000.0)
    f = tmp_path / "tracks.bin"
    f.write_bytes(protocol.encode_batch([t1], 1.0) + protocol.encode_batch([t2], 2.0))
    return str(f)


class TestDumpCommand:
    def test_dump_file(self, runner, track_file):
        result = runner.invoke(cli, ["dump", track_file])
        assert result.exit_code == 0
        assert "4b1234" in result.output
        assert "2 batches" in result.output
        assert "RESET" in result.output

    def test_dump_limit(self, runner, track_file):
        result = runner.invoke(cli, ["dump", track_file, "--limit", "1"])
        assert result.exit_code == 0
        assert "tracking" not in result.output

    def test_dump_corrupt_tail(self, runner, track_file):
        with open(track_file, "ab") as f:
            f.write(b"garbage")
        result = runner.invoke(cli, ["dump", track_file])
        assert result.exit_code == 0
        assert "corrupt" in result.output

    def test_dump_nonexistent_file(self, runner):
        result = runner.invoke(cli, ["dump", "/nonexistent/tracks.bin"])
        assert result.exit_code != 0


class TestConfigCommand:
    def test_show(self, runner, tmp_path):
        result = runner.invoke(cli, ["config", "--config", str(tmp_path / "relay.yaml")])
        assert result.exit_code == 0
        assert "radar.latitude" in result.output
        assert "56.881443" in result.output

    def test_save(self, runner, tmp_path):
        path = tmp_path / "relay.yaml"
        result = runner.invoke(cli, ["config", "--config", str(path), "--save"])
        assert result.exit_code == 0
        assert path.exists()
        assert "radar:" in path.read_text()


class TestServeCommand:
    def test_help(self, runner):
        result = runner.invoke(cli, ["serve", "--help"])
        assert result.exit_code == 0
        assert "--output-file" in result.output

    def test_overrides_reach_service(self, runner, tmp_path, monkeypatch):
        seen = {}

        class FakeService:
            def __init__(self, cfg):
                seen.update(cfg)
                self.table = TrackTable(Projector(52.0, 4.0))

            async def run(self):
                raise KeyboardInterrupt

            def status(self):
                return {"snapshots": 0, "duplicates": 0, "live_tracks": 0, "resets": 0, "messages": 0}

        monkeypatch.setattr("adsb_relay.cli.RelayService", FakeService)
        result = runner.invoke(cli, [
            "serve", "--config", str(tmp_path / "relay.yaml"),
            "--lat", "52.0", "--lon", "4.0", "--tcp-port", "0", "--udp-port", "40000",
            "-o", str(tmp_path / "out.bin"),
        ])
        assert result.exit_code == 0, result.output
        assert seen["radar"]["latitude"] == 52.0
        assert seen["radar"]["longitude"] == 4.0
        assert seen["output"]["tcp_port"] == 0
        assert seen["output"]["file"] == str(tmp_path / "out.bin")
        assert "Summary" in result.output
