"""Tests for spotiflac_api.files.fallback."""

import os

import pytest

from spotiflac_api.errors import AllProvidersFailedError, InvalidTrackError, MetadataError, ProviderError
from spotiflac_api.files import fallback
from spotiflac_api.files.fallback import Attempt, acquire, resolve_with_fallback

from conftest import TRACK_ID, FakeMetadataClient, RecordingProvider


class TestAttempt:
    def test_success_omits_error(self):
        assert Attempt("tidal").to_dict() == {"service": "tidal"}
        assert Attempt("tidal").ok

    def test_failure_keeps_error(self):
        attempt = Attempt("qobuz", "HTTP 404")
        assert attempt.to_dict() == {"service": "qobuz", "error": "HTTP 404"}
        assert not attempt.ok


class TestResolveWithFallback:
    def test_first_success_short_circuits(self, metadata, work_dir):
        a = RecordingProvider("tidal", fail="tidal down")
        b = RecordingProvider("qobuz")
        c = RecordingProvider("amazon")

        result = resolve_with_fallback(
            TRACK_ID, [("tidal", a), ("qobuz", b), ("amazon", c)], metadata, work_dir
        )

        assert result.service == "qobuz"
        assert result.attempts == [Attempt("tidal", "tidal down"), Attempt("qobuz")]
        assert c.calls == []
        assert os.path.getsize(result.path) > 0

    def test_first_provider_wins(self, metadata, work_dir):
        a = RecordingProvider("tidal")
        b = RecordingProvider("qobuz")

        result = resolve_with_fallback(TRACK_ID, [("tidal", a), ("qobuz", b)], metadata, work_dir)

        assert result.service == "tidal"
        assert result.attempts == [Attempt("tidal")]
        assert b.calls == []

    def test_all_fail(self, metadata, work_dir):
        a = RecordingProvider("tidal", fail="HTTP 503")
        b = RecordingProvider("qobuz", fail="Timeout after 120.0s")

        with pytest.raises(AllProvidersFailedError) as exc_info:
            resolve_with_fallback(TRACK_ID, [("tidal", a), ("qobuz", b)], metadata, work_dir)

        err = exc_info.value
        assert [a.service for a in err.attempts] == ["tidal", "qobuz"]
        assert all(a.error for a in err.attempts)
        assert str(err) == "failed in all services: tidal -> qobuz"

    def test_empty_file_is_failure(self, metadata, work_dir):
        a = RecordingProvider("tidal", content=b"")
        b = RecordingProvider("qobuz")

        result = resolve_with_fallback(TRACK_ID, [("tidal", a), ("qobuz", b)], metadata, work_dir)

        assert result.service == "qobuz"
        assert result.attempts[0] == Attempt("tidal", "downloaded file is empty")

    def test_missing_file_is_failure(self, metadata, work_dir):
        a = RecordingProvider("tidal", report=lambda path: path + ".missing")
        b = RecordingProvider("qobuz")

        result = resolve_with_fallback(TRACK_ID, [("tidal", a), ("qobuz", b)], metadata, work_dir)

        assert result.service == "qobuz"
        assert result.attempts[0].error.startswith("downloaded file missing:")

    def test_empty_path_is_failure(self, metadata, work_dir):
        a = RecordingProvider("tidal", report=lambda path: "")

        with pytest.raises(AllProvidersFailedError) as exc_info:
            resolve_with_fallback(TRACK_ID, [("tidal", a)], metadata, work_dir)
        assert exc_info.value.attempts == [Attempt("tidal", "empty file path returned")]

    def test_exists_prefix_stripped(self, metadata, work_dir):
        a = RecordingProvider("tidal", report=lambda path: "EXISTS:" + path)

        result = resolve_with_fallback(TRACK_ID, [("tidal", a)], metadata, work_dir)

        assert not result.path.startswith("EXISTS:")
        assert os.path.isfile(result.path)

    def test_isolated_output_dirs(self, metadata, work_dir):
        a = RecordingProvider("tidal", fail="nope")
        b = RecordingProvider("qobuz")

        resolve_with_fallback(TRACK_ID, [("tidal", a), ("qobuz", b)], metadata, work_dir)

        assert a.calls == [os.path.join(work_dir, "tidal")]
        assert b.calls == [os.path.join(work_dir, "qobuz")]

    def test_failed_provider_dirs_removed(self, metadata, work_dir):
        a = RecordingProvider("tidal", content=b"")

        def partial(spotify_id, output_dir, metadata):
            os.makedirs(output_dir)
            with open(os.path.join(output_dir, "part.flac"), "wb") as f:
                f.write(b"fLa")
            raise ProviderError("Connection Error: reset")

        c = RecordingProvider("amazon")

        result = resolve_with_fallback(
            TRACK_ID, [("tidal", a), ("qobuz", partial), ("amazon", c)], metadata, work_dir
        )

        assert result.service == "amazon"
        assert os.listdir(work_dir) == ["amazon"]

    def test_unexpected_exception_is_recorded(self, metadata, work_dir):
        def exploding(spotify_id, output_dir, metadata):
            raise ValueError("malformed identifier")

        b = RecordingProvider("qobuz")
        result = resolve_with_fallback(
            TRACK_ID, [("tidal", exploding), ("qobuz", b)], metadata, work_dir
        )
        assert result.attempts[0] == Attempt("tidal", "malformed identifier")

    def test_empty_provider_list(self, metadata, work_dir):
        with pytest.raises(AllProvidersFailedError) as exc_info:
            resolve_with_fallback(TRACK_ID, [], metadata, work_dir)
        assert exc_info.value.attempts == []


class TestAcquire:
    def test_success(self, tmp_path):
        client = FakeMetadataClient()
        provider = RecordingProvider("tidal")

        result = acquire(
            f"https://open.spotify.com/track/{TRACK_ID}?si=x",
            [("tidal", provider)],
            client,
            temp_root=str(tmp_path),
        )

        assert result.spotify_id == TRACK_ID
        assert result.service == "tidal"
        assert result.filename == "Never Gonna - Rick.flac"
        assert client.urls == [f"https://open.spotify.com/track/{TRACK_ID}"]
        assert os.path.basename(os.path.dirname(os.path.dirname(result.path))).startswith(
            fallback.WORK_DIR_PREFIX
        )

    def test_total_failure_removes_work_dir(self, tmp_path):
        provider = RecordingProvider("tidal", fail="down")

        with pytest.raises(AllProvidersFailedError):
            acquire(TRACK_ID, [("tidal", provider)], FakeMetadataClient(), temp_root=str(tmp_path))

        assert list(tmp_path.iterdir()) == []

    def test_each_run_gets_own_work_dir(self, tmp_path):
        first = acquire(TRACK_ID, [("tidal", RecordingProvider("tidal"))], FakeMetadataClient(), str(tmp_path))
        second = acquire(TRACK_ID, [("tidal", RecordingProvider("tidal"))], FakeMetadataClient(), str(tmp_path))
        assert first.path != second.path

    def test_invalid_input(self, tmp_path):
        provider = RecordingProvider("tidal")
        with pytest.raises(InvalidTrackError):
            acquire("https://example.com/song", [("tidal", provider)], FakeMetadataClient(), str(tmp_path))
        assert provider.calls == []

    def test_metadata_error_propagates(self, tmp_path):
        client = FakeMetadataClient(error=MetadataError("failed to fetch Spotify metadata: boom"))
        provider = RecordingProvider("tidal")
        with pytest.raises(MetadataError):
            acquire(TRACK_ID, [("tidal", provider)], client, str(tmp_path))
        assert provider.calls == []
        assert list(tmp_path.iterdir()) == []
