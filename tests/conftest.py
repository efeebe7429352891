"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PIL import Image  # noqa: E402

from app.config import CollectionConfig  # noqa: E402
from app.services.library_index import scan_library  # noqa: E402


ALPHA_NFO = """<?xml version="1.0" encoding="UTF-8"?>
<movie>
  <title>Alpha</title>
  <plot>An alpha plot.</plot>
  <tagline>First of all</tagline>
  <mpaa>PG-13</mpaa>
  <rating>7.56</rating>
  <genre>Sci-Fi</genre>
  <genre>Action &amp; Adventure</genre>
  <tag>favourite</tag>
  <studio>Studio A</studio>
  <year>2000</year>
  <premiered>2000-05-01</premiered>
  <actor><name>Jane Doe</name><role>Lead</role><thumb>https://img.example/jane.jpg</thumb></actor>
  <fileinfo>
    <streamdetails>
      <video>
        <codec>x264</codec><bitrate>4000000</bitrate>
        <width>1920</width><height>1080</height>
        <framerate>23.976</framerate><durationinseconds>5400</durationinseconds>
      </video>
      <audio>
        <codec>aac</codec><bitrate>192000</bitrate>
        <channels>2</channels><language>english</language>
      </audio>
    </streamdetails>
  </fileinfo>
</movie>
"""

SHOW_NFO = """<?xml version="1.0" encoding="UTF-8"?>
<tvshow>
  <title>The Show</title>
  <plot>Series plot.</plot>
  <mpaa>TV-MA</mpaa>
  <rating>8.4</rating>
  <genre>Drama</genre>
  <studio>HBO</studio>
  <actor><name>John Roe</name><role>Detective</role></actor>
  <premiered>2010-01-01</premiered>
</tvshow>
"""

PILOT_NFO = """<?xml version="1.0" encoding="UTF-8"?>
<episodedetails>
  <title>Pilot</title>
  <plot>It begins.</plot>
  <season>1</season>
  <episode>1</episode>
  <aired>2010-01-02</aired>
  <genre>Crime</genre>
</episodedetails>
"""


def write_image(path: Path, color: str = "red") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (8, 12), color).save(path, format="JPEG")
    return path


def write_file(path: Path, content: str | bytes = b"\x00" * 16) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_bytes(content)
    return path


def build_media_tree(root: Path) -> Path:
    """Create a small Kodi-style movie and show library below ``root``."""

    alpha = root / "movies" / "Alpha (2000)"
    write_file(alpha / "Alpha.mp4")
    write_file(alpha / "Alpha.nfo", ALPHA_NFO)
    write_image(alpha / "poster.jpg")
    write_image(alpha / "fanart.jpg", "blue")

    beta = root / "movies" / "Beta (1999)"
    write_file(beta / "Beta.mkv")

    write_file(root / "movies" / "Empty (2001)" / "readme.txt", "no video here")

    show = root / "shows" / "The Show (2010)"
    write_file(show / "tvshow.nfo", SHOW_NFO)
    write_image(show / "poster.jpg")
    write_image(show / "season01-poster.jpg", "green")
    write_file(show / "Season 1" / "The Show S01E01.mp4")
    write_file(show / "Season 1" / "The Show S01E01.nfo", PILOT_NFO)
    write_image(show / "Season 1" / "The Show S01E01-thumb.jpg")
    write_file(show / "Season 1" / "The Show S01E02.mp4")
    write_file(show / "Season 2" / "The Show S02E01.mkv")
    return root


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    return build_media_tree(tmp_path / "media")


@pytest.fixture
def collection_configs(media_root: Path) -> list[CollectionConfig]:
    return [
        CollectionConfig(name="Movies", kind="movies", source_id=1, directory=media_root / "movies"),
        CollectionConfig(name="Shows", kind="shows", source_id=2, directory=media_root / "shows"),
    ]


@pytest.fixture
def library(collection_configs):
    return scan_library(collection_configs)
