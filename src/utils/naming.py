import os
import re

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]+")
_EXTENSION = re.compile(r"^\.[a-zA-Z0-9]{1,10}$|^$")


def sanitize_name(name: str, fallback: str) -> str:
    """Storage-safe filename: unsafe runs in the stem become "-", extension kept.

    >>> sanitize_name("My clip (final).mov", "video.mp4")
    'My-clip-final.mov'
    """
    if not name:
        return fallback
    base, ext = os.path.splitext(os.path.basename(name))
    if not _EXTENSION.match(ext):
        ext = ""
    safe_base = re.sub(r"-+", "-", _UNSAFE.sub("-", base)).strip("-")
    if not safe_base:
        return fallback
    return f"{safe_base}{ext}"


def join_key(*segments: str) -> str:
    """Joins key segments with single slashes, dropping empty ones."""
    parts = [str(segment).strip("/") for segment in segments if segment]
    return "/".join(part for part in parts if part)


def original_filename_for(original_name: str, video_id: str) -> str:
    ext = os.path.splitext(original_name or "")[1]
    if not ext or not _EXTENSION.match(ext):
        ext = ".mp4"
    return sanitize_name(original_name, f"video-{video_id}{ext}")


def transcoded_filename_for(original_name: str, video_id: str, preset: str) -> str:
    stem = os.path.splitext(os.path.basename(original_name or ""))[0] or "video"
    return sanitize_name(f"{stem}-{preset}.mp4", f"{video_id}-{preset}.mp4")
