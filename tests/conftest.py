"""Shared fixtures and in-memory stand-ins for the provider, exiftool and thumbnails."""

import os
import re
import asyncio

import pytest
from PIL import Image

from src.utils.file_utils import MediaClass
from src.utils.settings import Settings

_FILENAME_IN_PROMPT = re.compile(r'filename "([^"]+)"')


def make_image(path, size=(64, 48), color=(200, 120, 40), fmt="JPEG"):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    Image.new("RGB", size, color).save(path, fmt)
    return path


class FakeAnalysisClient:
    """
    Stands in for AnalysisClient. `behaviours` maps a filename to a list of
    outcomes consumed one per call (an exception instance is raised, a dict is
    returned); the last outcome repeats. Unlisted files get a default answer.
    """

    def __init__(self, behaviours=None, delay=0.0):
        self.behaviours = {k: list(v) for k, v in (behaviours or {}).items()}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def call_count(self):
        return len(self.calls)

    def calls_for(self, filename):
        return [c for c in self.calls if c["filename"] == filename]

    async def analyze(self, platform, model, credential, prompt, image_bytes=None):
        match = _FILENAME_IN_PROMPT.search(prompt)
        filename = match.group(1) if match else None
        self.calls.append({
            "filename": filename,
            "platform": platform,
            "model": model,
            "credential": credential,
            "prompt": prompt,
            "image_bytes": image_bytes,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            outcomes = self.behaviours.get(filename)
            if outcomes:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
            stem = os.path.splitext(filename or "file")[0]
            return {
                "title": f"Title for {stem}",
                "description": f"Description of {stem}, perfect for testing.",
                "keywords": ["alpha", "beta gamma", "Alpha", "delta"],
            }
        finally:
            self.in_flight -= 1


class InMemorySink:
    """exiftool replacement keyed by filename, so metadata follows a file into success/."""

    available = True

    def __init__(self, write_status="ok", write_error=None):
        self.write_status = write_status
        self.write_error = write_error
        self.store = {}
        self.writes = []

    def supports_embedding(self, media_class):
        return media_class == MediaClass.IMAGE

    async def write(self, path, metadata):
        self.writes.append(path)
        if self.write_error is not None:
            raise self.write_error
        if hasattr(metadata, "as_metadata"):
            metadata = metadata.as_metadata()
        self.store[os.path.basename(path)] = dict(metadata)
        return self.write_status

    async def read(self, path):
        return self.store.get(os.path.basename(path), {"title": "", "description": "", "keywords": []})


class FakeThumbnails:
    def __init__(self):
        self.generated = []

    async def generate(self, path, media_class=None):
        self.generated.append(path)
        return b"thumb"


class RecordingSleep:
    """Records retry delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    return Settings(api_keys=["key-aaaaa"], platform="openai", model="gpt-4o-mini", max_concurrent=2)


@pytest.fixture
def fake_client():
    return FakeAnalysisClient()


@pytest.fixture
def sink():
    return InMemorySink()


@pytest.fixture
def thumbnails():
    return FakeThumbnails()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def media_dir(tmp_path):
    folder = tmp_path / "media"
    folder.mkdir()
    return folder


@pytest.fixture
def image_factory(media_dir):
    def _make(name, **kwargs):
        return make_image(str(media_dir / name), **kwargs)
    return _make
