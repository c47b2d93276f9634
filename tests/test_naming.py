import pytest

from src.utils.naming import join_key, original_filename_for, sanitize_name, transcoded_filename_for


@pytest.mark.parametrize(
    "name, expected",
    [
        ("clip.mov", "clip.mov"),
        ("My clip (final).mov", "My-clip-final.mov"),
        ("../../etc/passwd", "passwd"),
        ("archive.tar.gz", "archive-tar.gz"),
        ("video.notanextension1", "video"),
        ("--weird__name--.MP4", "weird__name.MP4"),
    ],
)
def test_sanitize_name(name, expected):
    assert sanitize_name(name, "fallback.mp4") == expected


@pytest.mark.parametrize("name", ["", "???.mp4", "   "])
def test_sanitize_name_falls_back(name):
    assert sanitize_name(name, "fallback.mp4") == "fallback.mp4"


def test_join_key_collapses_slashes():
    assert join_key("raw-videos/", "abc", "clip.mov") == "raw-videos/abc/clip.mov"
    assert join_key("/thumbnails//", "", "abc.jpg") == "thumbnails/abc.jpg"


def test_original_filename_fallback_keeps_extension():
    assert original_filename_for("???.webm", "abc") == "video-abc.webm"
    assert original_filename_for("", "abc") == "video-abc.mp4"


@pytest.mark.parametrize("name", ["(((.a b", "%%%.m p4", "***.toolongextension"])
def test_original_filename_fallback_drops_unsafe_extension(name):
    assert original_filename_for(name, "vid") == "video-vid.mp4"


def test_transcoded_filename():
    assert transcoded_filename_for("Holiday Clip.mov", "abc", "720p") == "Holiday-Clip-720p.mp4"
    assert transcoded_filename_for("", "abc", "720p") == "video-720p.mp4"
