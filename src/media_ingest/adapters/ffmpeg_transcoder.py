"""ffmpeg/ffprobe implementation of the transcoder."""

import json
import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from media_ingest.services.segmentation import Transcoder, TranscoderError

logger = logging.getLogger(__name__)


@dataclass
class FfmpegTranscoder(Transcoder):
    """Stream-copy splitter built on the ffmpeg segment muxer."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    timeout_seconds: float | None = 3600
    poll_interval_seconds: float = 0.5
    terminate_grace_seconds: float = 5.0

    def probe_duration(
        self, source: Path, stop: threading.Event | None = None
    ) -> float:
        """Read the container duration with ffprobe."""
        stdout = self._run(
            [
                self.ffprobe_path,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "json",
                str(source),
            ],
            stop,
        )
        try:
            return float(json.loads(stdout)["format"]["duration"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise TranscoderError(f"ffprobe returned no duration for {source}") from exc

    def split(
        self,
        source: Path,
        max_segment_seconds: float,
        output_dir: Path,
        stop: threading.Event | None = None,
    ) -> list[Path]:
        """Split at keyframes without re-encoding.

        ``-reset_timestamps`` makes every segment start at zero so each one
        plays on its own.
        """
        suffix = source.suffix or ".mp4"
        pattern = output_dir / f"segment_%04d{suffix}"
        self._run(
            [
                self.ffmpeg_path,
                "-hide_banner",
                "-loglevel",
                "error",
                "-i",
                str(source),
                "-map",
                "0",
                "-c",
                "copy",
                "-f",
                "segment",
                "-segment_time",
                f"{max_segment_seconds:g}",
                "-reset_timestamps",
                "1",
                "-y",
                str(pattern),
            ],
            stop,
        )
        produced = [
            path
            for path in output_dir.glob(f"segment_*{suffix}")
            if path.stat().st_size > 0
        ]
        if not produced:
            raise TranscoderError("ffmpeg finished without writing any segments")
        return produced

    def _run(self, cmd: list[str], stop: threading.Event | None) -> str:
        try:
            process = subprocess.Popen(  # noqa: S603
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as exc:
            raise TranscoderError(f"{cmd[0]} is not installed") from exc

        deadline = (
            time.monotonic() + self.timeout_seconds
            if self.timeout_seconds is not None
            else None
        )
        while True:
            try:
                stdout, stderr = process.communicate(
                    timeout=self.poll_interval_seconds
                )
                break
            except subprocess.TimeoutExpired:
                if stop is not None and stop.is_set():
                    self._terminate(process)
                    raise TranscoderError(f"{cmd[0]} was cancelled") from None
                if deadline is not None and time.monotonic() >= deadline:
                    self._terminate(process)
                    raise TranscoderError(f"{cmd[0]} timed out") from None

        if process.returncode != 0:
            logger.error("%s failed: %s", cmd[0], stderr[-500:])
            raise TranscoderError(
                f"{cmd[0]} exited with {process.returncode}: {stderr[-200:]}"
            )
        return stdout

    def _terminate(self, process: subprocess.Popen[str]) -> None:
        process.terminate()
        try:
            process.communicate(timeout=self.terminate_grace_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
