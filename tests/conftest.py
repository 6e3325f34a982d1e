"""Shared test fixtures."""

from pathlib import Path

import pytest
from PIL import Image

from overlayforge.errors import SourceUnavailable

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeVideoSource:
    """Stands in for VideoSource: solid frames whose red channel encodes t."""

    def __init__(self, duration=10.0, width=64, height=36, path=Path("primary.mp4"),
                 fail_at=None, color=None):
        self.duration = duration
        self.width = width
        self.height = height
        self.path = path
        self.fail_at = fail_at
        self.color = color
        self.seeks: list[float] = []
        self.released = False

    def seek_to(self, t: float) -> Image.Image:
        if self.fail_at is not None and t >= self.fail_at:
            raise SourceUnavailable(f"no frame at {t}")
        self.seeks.append(t)
        return self.frame_at(t)

    def frame_at(self, t: float) -> Image.Image:
        if self.fail_at is not None and t >= self.fail_at:
            raise SourceUnavailable(f"no frame at {t}")
        color = self.color or (int(t * 10) % 256, 0, 0)
        return Image.new("RGB", (self.width, self.height), color)

    def release(self) -> None:
        self.released = True


class RecordingSink:
    """Capture sink that counts frames instead of encoding them."""

    def __init__(self, output_path: Path, width: int, height: int, frame_rate: int):
        self.output_path = output_path
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self.frames = 0
        self.opened = False
        self.stopped = False
        self.closed = False

    def open(self):
        self.opened = True
        return self

    def push(self, frame: Image.Image) -> None:
        assert frame.size == (self.width, self.height)
        self.frames += 1

    def stop(self) -> Path:
        self.stopped = True
        self.output_path.write_bytes(b"captured")
        return self.output_path

    def close(self) -> None:
        self.closed = True


class SinkFactory:
    def __init__(self):
        self.sinks: list[RecordingSink] = []

    def __call__(self, output_path, width, height, frame_rate) -> RecordingSink:
        sink = RecordingSink(output_path, width, height, frame_rate)
        self.sinks.append(sink)
        return sink


class FakeEncoder:
    def __init__(self, fail_with: Exception | None = None):
        self.fail_with = fail_with
        self.calls: list[dict] = []

    def mux(self, video_path, audio_source, output_path, duration, on_progress=None):
        self.calls.append({
            "video_path": video_path,
            "audio_source": audio_source,
            "output_path": output_path,
            "duration": duration,
            "captured": video_path.read_bytes(),
        })
        output_path.write_bytes(b"partial")
        if on_progress:
            on_progress(0.5)
        if self.fail_with is not None:
            raise self.fail_with
        if on_progress:
            on_progress(1.0)
        return output_path


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def sink_factory() -> SinkFactory:
    return SinkFactory()


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()
