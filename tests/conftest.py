import os

import pytest
from PIL import Image

from variants.catalog import Catalog
from variants.classes import SourceImage, UpstreamSize
from variants.utils.image import CodecError, ImageCodec


class FakeCodec(ImageCodec):
    """Writes `payload_size` bytes per call instead of encoding anything."""

    def __init__(self, payload_size: int = 100, fail_on: tuple = ()):
        self.payload_size = payload_size
        self.fail_on = set(fail_on)
        self.calls = []

    def encode(self, source_path, target_path, target_mime, quality):
        self.calls.append((source_path, target_path, target_mime, quality))
        if os.path.basename(target_path) in self.fail_on:
            raise CodecError(f"cannot encode {target_path}")
        with open(target_path, "wb") as f:
            f.write(b"\0" * self.payload_size)


@pytest.fixture
def catalog(tmp_path):
    return Catalog(connection_string=f"sqlite:///{tmp_path / 'catalog.db'}")


@pytest.fixture
def fake_codec():
    return FakeCodec()


@pytest.fixture
def uploads_dir(tmp_path):
    directory = tmp_path / "uploads"
    (directory / "2024" / "05").mkdir(parents=True)
    return directory


def write_image(path, width, height, format="JPEG", mode="RGB"):
    image = Image.new(mode, (width, height))
    image.save(path, format=format)
    return str(path)


@pytest.fixture
def jpeg_source(uploads_dir):
    """A 1920x1280 JPEG with a thumbnail and a medium rendition next to it."""
    directory = uploads_dir / "2024" / "05"
    path = write_image(directory / "a.jpg", 1920, 1280)
    write_image(directory / "a-150x100.jpg", 150, 100)
    write_image(directory / "a-768x512.jpg", 768, 512)

    return SourceImage(
        id=42,
        path=path,
        width=1920,
        height=1280,
        mime_type="image/jpeg",
        file="2024/05/a.jpg",
        filesize=os.path.getsize(path),
        sizes={
            "thumbnail": UpstreamSize(file="a-150x100.jpg", width=150, height=100, filesize=500),
            "medium": UpstreamSize(file="a-768x512.jpg", width=768, height=512, filesize=5000),
        },
    )


@pytest.fixture
def image_writer():
    return write_image
