import os

import pytest
from PIL import Image, features

from variants.utils.image import CodecError, ImageProcessor, PillowCodec

testdata = [
    # original_width, original_height, new_width, new_height
    (2048, 1536, 512, 384),
    (1536, 2048, 384, 512),
    (512, 512, 256, 256),
    (10, 2, 5, 1),
    (2, 10, 1, 5),
]


@pytest.mark.parametrize("original_width, original_height, new_width, new_height", testdata)
def test_image_dimensions_should_be_scaled_correctly_with_width(original_width, original_height, new_width, new_height):
    width, height = ImageProcessor.calculate_scaled_size(
        original_width=original_width, original_height=original_height, width=new_width
    )
    assert width == new_width
    assert height == new_height


@pytest.mark.parametrize("original_width, original_height, new_width, new_height", testdata)
def test_image_dimensions_should_be_scaled_correctly_with_height(original_width, original_height, new_width, new_height):
    width, height = ImageProcessor.calculate_scaled_size(
        original_width=original_width,
        original_height=original_height,
        height=new_height,
    )
    assert width == new_width
    assert height == new_height


def test_image_dimensions_should_be_kept_without_target():
    assert ImageProcessor.calculate_scaled_size(640, 480) == (640, 480)


def test_probe_should_read_dimensions_and_mime_type(tmp_path, image_writer):
    path = image_writer(tmp_path / "a.png", 64, 32, format="PNG")
    assert ImageProcessor.probe(path) == (64, 32, "image/png")


def test_probe_should_reject_non_images(tmp_path):
    path = tmp_path / "a.jpg"
    path.write_text("not an image")

    with pytest.raises(ValueError):
        ImageProcessor.probe(str(path))


def test_scaled_copy_should_be_written_next_to_source(tmp_path, image_writer):
    path = image_writer(tmp_path / "a.jpg", 1000, 500)

    filename, width, height = ImageProcessor.write_scaled_copy_to_filesystem(
        source_filename=path, width=320
    )

    assert filename == str(tmp_path / "a-320x160.jpg")
    with Image.open(filename) as image:
        assert image.size == (320, 160)
        assert image.format == "JPEG"


@pytest.mark.parametrize(
    "target_mime, extension, pillow_format",
    [
        ("image/webp", "webp", "WEBP"),
        ("image/png", "png", "PNG"),
        ("image/jpeg", "jpg", "JPEG"),
    ],
)
def test_pillow_codec_should_write_target_format(tmp_path, image_writer, target_mime, extension, pillow_format):
    source = image_writer(tmp_path / "a.png", 40, 20, format="PNG", mode="RGBA")
    target = str(tmp_path / f"a.{extension}")

    PillowCodec().encode(source, target, target_mime, 80)

    with Image.open(target) as image:
        assert image.format == pillow_format
        assert image.size == (40, 20)


@pytest.mark.skipif(not features.check("avif"), reason="Pillow was built without AVIF")
def test_pillow_codec_should_write_avif(tmp_path, image_writer):
    source = image_writer(tmp_path / "a.jpg", 40, 20)
    target = str(tmp_path / "a.avif")

    PillowCodec().encode(source, target, "image/avif", 60)

    assert os.path.getsize(target) > 0
    assert "image/avif" in PillowCodec().supported_mime_types


def test_pillow_codec_should_raise_codec_error_for_missing_source(tmp_path):
    target = str(tmp_path / "a.webp")

    with pytest.raises(CodecError):
        PillowCodec().encode(str(tmp_path / "missing.jpg"), target, "image/webp", 80)

    assert not os.path.exists(target)


def test_pillow_codec_should_raise_codec_error_for_unknown_mime_type(tmp_path, image_writer):
    source = image_writer(tmp_path / "a.jpg", 4, 4)

    with pytest.raises(CodecError):
        PillowCodec().encode(source, str(tmp_path / "a.bmp"), "image/bmp", 80)


def test_pillow_codec_should_report_baseline_mime_types():
    supported = PillowCodec().supported_mime_types
    assert {"image/png", "image/jpeg"} <= supported


def test_pillow_codec_should_raise_codec_error_for_oversized_images(tmp_path, image_writer, monkeypatch):
    source = image_writer(tmp_path / "a.png", 40, 20, format="PNG")
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

    with pytest.raises(CodecError):
        PillowCodec().encode(source, str(tmp_path / "a.webp"), "image/webp", 80)

    with pytest.raises(ValueError):
        ImageProcessor.probe(source)
