"""Test configuration and fixtures"""

import pytest

from helpers import FakeTagReader, write_file


@pytest.fixture
def fake_reader():
    return FakeTagReader()


@pytest.fixture
def cache_path(tmp_path):
    return str(tmp_path / "cache" / "songs_cache.sqlite3")


@pytest.fixture
def music_tree(tmp_path):
    """
    music/
      intro.mp3
      cover.jpg
      A/one.mp3, A/one.lrc, A/two.FLAC
      B/deep/three.m4a, B/four.wav, B/five.ogg
    """
    root = tmp_path / "music"
    for rel in (
        "intro.mp3",
        "cover.jpg",
        "A/one.mp3",
        "A/two.FLAC",
        "B/deep/three.m4a",
        "B/four.wav",
        "B/five.ogg",
    ):
        write_file(root / rel)
    write_file(root / "A" / "one.lrc", "[00:01.00]Hello")
    return root
