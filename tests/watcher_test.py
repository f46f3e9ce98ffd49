import inotify.constants
import pytest

from variants.classes import CatalogRecord, FormatEntry, SizeVariant
from variants.context import AppContext
from variants.settings import Settings
from variants.utils.image import ImageProcessor
from variants.watcher import UploadWatcher

from conftest import FakeCodec


@pytest.fixture
def context(tmp_path, uploads_dir):
    context = AppContext.create(
        connection_string=f"sqlite:///{tmp_path / 'watcher.db'}",
        uploads_dir=str(uploads_dir),
        codec=FakeCodec(),
    )
    yield context
    context.shutdown()


@pytest.fixture
def watcher(context):
    return UploadWatcher(context)


@pytest.fixture
def submitted(context, monkeypatch):
    sources = []
    monkeypatch.setattr(context, "submit_upload", lambda source: sources.append(source))
    return sources


def store(context, source_id, file):
    context.catalog.upsert(
        source_id,
        CatalogRecord(
            source_id=source_id,
            file=file,
            sizes={
                "original": SizeVariant(
                    10, 10, {"jpeg": FormatEntry(file=file.split("/")[-1], mime_type="image/jpeg")}
                )
            },
        ),
    )


def test_new_file_should_trigger_upload(watcher, submitted, jpeg_source):
    assert watcher.handle_event(inotify.constants.IN_CLOSE_WRITE, jpeg_source.path)

    assert len(submitted) == 1
    assert submitted[0].id == "2024/05/a.jpg"
    assert submitted[0].mime_type == "image/jpeg"


def test_file_with_unknown_extension_should_be_ignored(watcher, submitted, uploads_dir):
    path = uploads_dir / "notes.txt"
    path.write_text("hello")

    assert not watcher.handle_event(inotify.constants.IN_CLOSE_WRITE, str(path))
    assert submitted == []


def test_unreadable_image_should_be_ignored(watcher, submitted, uploads_dir):
    path = uploads_dir / "broken.jpg"
    path.write_text("nope")

    assert not watcher.handle_event(inotify.constants.IN_CLOSE_WRITE, str(path))
    assert submitted == []


def test_generated_files_should_be_ignored(watcher, context, submitted, uploads_dir):
    store(context, "2024/05/a.jpg", "2024/05/a.jpg")

    for name in ("a.webp", "a.avif", "a-320x213.jpg", "a-320x213.webp"):
        path = uploads_dir / "2024" / "05" / name
        path.write_bytes(b"\0")
        assert not watcher.handle_event(inotify.constants.IN_CLOSE_WRITE, str(path))

    assert submitted == []


def test_is_derived_file(watcher, context):
    store(context, "1", "2024/05/a.jpg")
    store(context, "2", "2024/05/b-300x200.jpg")

    assert watcher.is_derived_file("2024/05/a.webp")
    assert watcher.is_derived_file("2024/05/a-150x100.jpg")
    assert watcher.is_derived_file("2024/05/b-300x200.avif")
    assert watcher.is_derived_file("2024/05/b-300x200-150x100.jpg")
    assert not watcher.is_derived_file("2024/05/a.jpg")
    assert not watcher.is_derived_file("2024/05/b-300x200.jpg")
    assert not watcher.is_derived_file("2024/05/c.jpg")
    assert not watcher.is_derived_file("2024/05/c-150x100.jpg")


def test_deleted_original_should_drop_record(watcher, context, uploads_dir):
    store(context, "2024/05/a.jpg", "2024/05/a.jpg")

    path = uploads_dir / "2024" / "05" / "a.jpg"
    assert watcher.handle_event(inotify.constants.IN_DELETE, str(path))

    assert context.catalog.get("2024/05/a.jpg") is None


def test_deleted_unknown_file_should_be_ignored(watcher, context, uploads_dir):
    store(context, "2024/05/a.jpg", "2024/05/a.jpg")

    path = uploads_dir / "2024" / "05" / "a.webp"
    assert not watcher.handle_event(inotify.constants.IN_DELETE, str(path))

    assert context.catalog.get("2024/05/a.jpg") is not None


def test_other_events_should_be_ignored(watcher, jpeg_source):
    assert not watcher.handle_event(inotify.constants.IN_OPEN, jpeg_source.path)


def test_relative_path(watcher, uploads_dir):
    assert watcher.relative_path(str(uploads_dir / "2024" / "05" / "a.jpg")) == "2024/05/a.jpg"


def test_breakpoint_renditions_should_not_trigger_uploads(tmp_path, uploads_dir, jpeg_source, monkeypatch):
    context = AppContext.create(
        Settings(generate_breakpoint_sizes=True, breakpoints=[320]),
        connection_string=f"sqlite:///{tmp_path / 'breakpoints.db'}",
        uploads_dir=str(uploads_dir),
        codec=FakeCodec(),
    )
    watcher = UploadWatcher(context)
    submitted = []
    monkeypatch.setattr(context, "submit_upload", lambda source: submitted.append(source))

    write_scaled_copy = ImageProcessor.write_scaled_copy_to_filesystem
    triggered = []

    def write_and_notify(**kwargs):
        # the watcher sees the rendition as soon as it is closed
        filename, width, height = write_scaled_copy(**kwargs)
        triggered.append(watcher.handle_event(inotify.constants.IN_CLOSE_WRITE, filename))
        return filename, width, height

    monkeypatch.setattr(ImageProcessor, "write_scaled_copy_to_filesystem", write_and_notify)

    context.handle_upload(context.source_image_from_file(jpeg_source.path))
    context.shutdown()

    assert triggered == [False]
    assert submitted == []
    assert context.catalog.get_ids() == ["2024/05/a.jpg"]
    assert "breakpoint-320" in context.catalog.get("2024/05/a.jpg").sizes
