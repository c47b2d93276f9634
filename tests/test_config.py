import json

import pytest
from pydantic import ValidationError

from src.core.config import (
    Settings,
    ThumbnailOptions,
    TranscodePreset,
    parse_presets,
    parse_thumbnail_options,
)


class TestPresets:
    def test_default_preset(self):
        presets = parse_presets(None)

        assert list(presets) == ["720p"]
        assert presets["720p"].ffmpeg_args() == [
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", "23",
            "-vf", "scale=1280:-2",
            "-c:a", "aac",
            "-b:a", "128k",
            "-movflags", "+faststart",
        ]

    def test_custom_presets_are_lower_cased(self):
        raw = json.dumps({"480P": {"crf": 28, "scale": "854:-2", "faststart": False}})

        presets = parse_presets(raw)

        assert list(presets) == ["480p"]
        args = presets["480p"].ffmpeg_args()
        assert "28" in args and "scale=854:-2" in args
        assert "+faststart" not in args

    def test_malformed_json_falls_back(self):
        assert list(parse_presets("{not json")) == ["720p"]

    def test_unknown_preset_key_fails_fast(self):
        with pytest.raises(ValidationError):
            parse_presets(json.dumps({"720p": {"bitrate": "5M"}}))

    def test_crf_bounds(self):
        with pytest.raises(ValidationError):
            TranscodePreset(crf=99)


class TestThumbnailOptions:
    def test_defaults(self):
        options = ThumbnailOptions()
        assert options.timestamps == [2.0]
        assert options.scale_filter() == "scale=640:-2"

    def test_partial_override_merges_defaults(self):
        options = parse_thumbnail_options(json.dumps({"timestamps": [5, 1]}))
        assert options.timestamps == [5.0, 1.0]
        assert options.size == "640x?"

    def test_invalid_size_falls_back(self):
        assert parse_thumbnail_options(json.dumps({"size": "?x?"})) == ThumbnailOptions()

    def test_fixed_height(self):
        assert ThumbnailOptions(size="?x360").scale_filter() == "scale=-2:360"


class TestSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("PRESIGNED_TTL_SECONDS", "120")
        monkeypatch.setenv("LIMIT_FILE_SIZE_MB", "not-a-number")
        monkeypatch.setenv("S3_RAW_PREFIX", "uploads")
        monkeypatch.setenv("CLIENT_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("THUMBNAIL_REQUIRED", "true")

        settings = Settings()

        assert settings.PRESIGNED_TTL_SECONDS == 120
        assert settings.LIMIT_FILE_SIZE_MB == 512
        assert settings.max_upload_bytes == 512 * 1024 * 1024
        assert settings.S3_RAW_PREFIX == "uploads/"
        assert settings.CLIENT_ORIGINS == ["https://a.example", "https://b.example"]
        assert settings.THUMBNAIL_REQUIRED is True

    def test_overrides(self):
        settings = Settings(AWS_S3_BUCKET="bucket", CACHE_TTL_SECONDS=5)
        assert settings.AWS_S3_BUCKET == "bucket"
        assert settings.CACHE_TTL_SECONDS == 5

    def test_unknown_override(self):
        with pytest.raises(AttributeError):
            Settings(NOT_A_SETTING=1)

    def test_validate_requires_bucket(self):
        with pytest.raises(RuntimeError):
            Settings(AWS_S3_BUCKET="").validate()
        Settings(AWS_S3_BUCKET="bucket").validate()
