"""Tests for local object storage and text statistics."""
import pytest

from app.core.errors import StorageFailureError
from app.services.storage import LocalObjectStorage
from app.services.text_stats import count_words, generate_slug, reading_time_minutes


def test_store_read_delete(tmp_path):
    storage = LocalObjectStorage(str(tmp_path), "https://cdn.example.com/media", thumbnail_size=150)

    stored = storage.store(b"\x89PNG", "image/png", folder="chapters/story-1", name="image_0.png")

    assert stored.key.startswith("chapters/story-1/")
    assert stored.key.endswith(".png")
    assert stored.url == f"https://cdn.example.com/media/{stored.key}"
    assert stored.thumbnail_url == f"{stored.url}?w=150&h=150&fit=fill"
    assert storage.read(stored.key) == b"\x89PNG"

    storage.delete(stored.key)
    with pytest.raises(StorageFailureError):
        storage.read(stored.key)


def test_non_images_have_no_thumbnail(tmp_path):
    stored = LocalObjectStorage(str(tmp_path), "").store(b"PK", "application/zip", folder="imports/batch", name="a.xlsx")

    assert stored.thumbnail_url is None
    assert stored.key.endswith(".xlsx")


def test_keys_cannot_escape_root(tmp_path):
    storage = LocalObjectStorage(str(tmp_path / "root"), "")

    with pytest.raises(StorageFailureError):
        storage.read("../outside.txt")
    stored = storage.store(b"x", "text/plain", folder="../../etc")
    assert stored.key.startswith("etc/")


def test_word_count_ignores_markup():
    assert count_words("<p>Hello <b>brave</b> new world.</p>") == 4
    assert count_words("<p>don't stop</p>") == 2
    assert count_words("") == 0


def test_word_count_counts_cjk_characters():
    assert count_words("<p>你好 world</p>") == 3


def test_reading_time_rounds_up():
    assert reading_time_minutes(1) == 1
    assert reading_time_minutes(500) == 1
    assert reading_time_minutes(501) == 2
    assert reading_time_minutes(0) == 0


def test_slug():
    assert generate_slug("Chapter 1: The Return!") == "chapter-1-the-return"
    assert generate_slug("  Many   spaces__here ") == "many-spaces-here"
