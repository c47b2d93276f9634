import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # go up to project root
env_path = BASE_DIR / ".env.development"

if env_path.exists():
    load_dotenv(env_path)
load_dotenv()


class TranscodePreset(BaseModel):
    """Encoder parameters recognised for a named preset."""
    model_config = ConfigDict(extra="forbid")

    codec: str = "libx264"
    speed: str = "fast"
    crf: int = Field(default=23, ge=0, le=51)
    scale: Optional[str] = "1280:-2"
    audio_codec: str = "aac"
    audio_bitrate: Optional[str] = "128k"
    faststart: bool = True

    def ffmpeg_args(self) -> List[str]:
        args = ["-c:v", self.codec, "-preset", self.speed, "-crf", str(self.crf)]
        if self.scale:
            args += ["-vf", f"scale={self.scale}"]
        args += ["-c:a", self.audio_codec]
        if self.audio_bitrate:
            args += ["-b:a", self.audio_bitrate]
        if self.faststart:
            args += ["-movflags", "+faststart"]
        return args


SIZE_PATTERN = re.compile(r"^(\d+|\?)x(\d+|\?)$")


class ThumbnailOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timestamps: List[float] = Field(default_factory=lambda: [2.0])
    size: str = "640x?"

    @field_validator("size")
    @classmethod
    def _check_size(cls, value: str) -> str:
        match = SIZE_PATTERN.match(value)
        if not match or match.groups() == ("?", "?"):
            raise ValueError(f"Invalid thumbnail size: {value!r}")
        return value

    def scale_filter(self) -> str:
        """ffmpeg scale filter; a "?" side keeps the aspect ratio."""
        width, height = SIZE_PATTERN.match(self.size).groups()
        width = "-2" if width == "?" else width
        height = "-2" if height == "?" else height
        return f"scale={width}:{height}"


DEFAULT_FFMPEG_PRESETS = {"720p": TranscodePreset()}


def _parse_int(value, fallback: int) -> int:
    if value is None:
        return fallback
    try:
        return int(str(value).strip())
    except ValueError:
        return fallback


def _parse_bool(value, fallback: bool = False) -> bool:
    raw = (value or "").strip().lower()
    if not raw:
        return fallback
    return raw in {"1", "true", "yes", "y", "on"}


def _parse_origins(value: Optional[str]) -> List[str]:
    origins = [o.strip() for o in (value or "").split(",") if o.strip()]
    return origins or ["http://localhost:5173"]


def _ensure_prefix(value: str) -> str:
    return value if value.endswith("/") else f"{value}/"


def parse_presets(raw: Optional[str]) -> Dict[str, TranscodePreset]:
    """Parse FFMPEG_PRESETS JSON into typed presets keyed by lower-case name."""
    if not raw:
        return dict(DEFAULT_FFMPEG_PRESETS)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("FFMPEG_PRESETS is not valid JSON, using default presets")
        return dict(DEFAULT_FFMPEG_PRESETS)
    if not isinstance(data, dict) or not data:
        logger.warning("FFMPEG_PRESETS must be a non-empty object, using default presets")
        return dict(DEFAULT_FFMPEG_PRESETS)
    # An invalid preset body is a deployment error; fail at startup.
    return {name.lower(): TranscodePreset.model_validate(body) for name, body in data.items()}


def parse_thumbnail_options(raw: Optional[str]) -> ThumbnailOptions:
    if not raw:
        return ThumbnailOptions()
    try:
        data = json.loads(raw)
        return ThumbnailOptions.model_validate({**ThumbnailOptions().model_dump(), **data})
    except (json.JSONDecodeError, TypeError, ValidationError):
        logger.warning("THUMBNAIL_PRESET is invalid, using default thumbnail options")
        return ThumbnailOptions()


class Settings:
    def __init__(self, **overrides):
        self.MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
        self.MONGO_DB: str = os.getenv("MONGO_DB", "video_pipeline")
        self.MONGO_COLLECTION: str = os.getenv("MONGO_COLLECTION", "videos")

        self.AWS_REGION: str = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "ap-southeast-2"
        self.AWS_ACCESS_KEY_ID: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
        self.AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
        self.AWS_S3_BUCKET: str = os.getenv("AWS_S3_BUCKET", "")
        self.AWS_S3_ENDPOINT_URL: Optional[str] = os.getenv("AWS_S3_ENDPOINT_URL") or None

        self.S3_RAW_PREFIX: str = _ensure_prefix(os.getenv("S3_RAW_PREFIX", "raw-videos/"))
        self.S3_TRANSCODED_PREFIX: str = _ensure_prefix(os.getenv("S3_TRANSCODED_PREFIX", "transcoded-videos/"))
        self.S3_THUMBNAIL_PREFIX: str = _ensure_prefix(os.getenv("S3_THUMBNAIL_PREFIX", "thumbnails/"))

        self.PRESIGNED_TTL_SECONDS: int = _parse_int(os.getenv("PRESIGNED_TTL_SECONDS"), 900)
        self.LIMIT_FILE_SIZE_MB: int = _parse_int(os.getenv("LIMIT_FILE_SIZE_MB"), 512)

        self.FFMPEG_PRESETS: Dict[str, TranscodePreset] = parse_presets(os.getenv("FFMPEG_PRESETS"))
        self.THUMBNAIL_PRESET: ThumbnailOptions = parse_thumbnail_options(os.getenv("THUMBNAIL_PRESET"))
        self.THUMBNAIL_REQUIRED: bool = _parse_bool(os.getenv("THUMBNAIL_REQUIRED"), False)
        self.TRANSCODE_TIMEOUT_SECONDS: int = _parse_int(os.getenv("TRANSCODE_TIMEOUT_SECONDS"), 1800)

        self.REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.CACHE_URL: Optional[str] = os.getenv("CACHE_URL") or None
        self.CACHE_TTL_SECONDS: int = _parse_int(os.getenv("CACHE_TTL_SECONDS"), 30)

        self.CLIENT_ORIGINS: List[str] = _parse_origins(os.getenv("CLIENT_ORIGINS"))
        self.PORT: int = _parse_int(os.getenv("PORT"), 8000)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def max_upload_bytes(self) -> int:
        return self.LIMIT_FILE_SIZE_MB * 1024 * 1024

    # Worker limits: the soft limit raises inside the task so the record can be
    # marked failed; the hard limit kills the process.
    @property
    def transcode_soft_time_limit(self) -> int:
        return self.TRANSCODE_TIMEOUT_SECONDS + 240

    @property
    def transcode_time_limit(self) -> int:
        return self.TRANSCODE_TIMEOUT_SECONDS + 300

    @property
    def stale_claim_seconds(self) -> int:
        """Age after which a ``transcoding`` claim no longer has a live task."""
        return max(2 * self.TRANSCODE_TIMEOUT_SECONDS, self.transcode_time_limit)

    def validate(self) -> None:
        """Checks what the service cannot start without."""
        if not self.AWS_S3_BUCKET:
            raise RuntimeError("AWS_S3_BUCKET is not set in environment variables.")
        if not self.FFMPEG_PRESETS:
            raise RuntimeError("At least one transcode preset must be configured.")


settings = Settings()
