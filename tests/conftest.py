"""
Shared test fixtures: fake providers and a fake metadata client.
"""

from __future__ import annotations

import os
from typing import List

import pytest

from spotiflac_api.errors import ProviderError
from spotiflac_api.metadata import TrackMetadata

TRACK_ID = "4uLU6hMCjMI75M1A2tKUQC"


class RecordingProvider:
    """Provider double that records calls and writes (or fails to write) a file."""

    def __init__(self, name: str, *, content: bytes = b"fLaC-data", fail: str = "", report=None):
        self.name = name
        self.content = content
        self.fail = fail
        self.report = report
        self.calls: List[str] = []

    def __call__(self, spotify_id, output_dir, metadata):
        self.calls.append(output_dir)
        if self.fail:
            raise ProviderError(self.fail)
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, f"{metadata.name} - {metadata.artists}.flac")
        with open(path, "wb") as f:
            f.write(self.content)
        if self.report is not None:
            return self.report(path)
        return path


class FakeMetadataClient:
    def __init__(self, metadata: TrackMetadata = None, error: Exception = None):
        self.metadata = metadata or TrackMetadata(spotify_id=TRACK_ID, name="Never Gonna", artists="Rick")
        self.error = error
        self.urls: List[str] = []

    def fetch(self, spotify_url):
        self.urls.append(spotify_url)
        if self.error:
            raise self.error
        return self.metadata


@pytest.fixture
def metadata():
    return TrackMetadata(spotify_id=TRACK_ID, name="Never Gonna", artists="Rick")


@pytest.fixture
def metadata_client():
    return FakeMetadataClient()


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "spotiflac-rest-test"
    path.mkdir()
    return str(path)
