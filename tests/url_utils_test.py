import pytest

from variants.utils.url import UploadsUrlResolver, UrlUtils

FILES = {"2024/05/a.jpg": "1", "2024/05/b-300x200.jpg": "2", "2024/05/c d.png": "3"}


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://example.com/uploads/a.jpg", True),
        ("/uploads/a.WEBP", True),
        ("/uploads/a.jpg?ver=2", True),
        ("/uploads/a.svg", False),
        ("/uploads/", False),
        ("", False),
    ],
)
def test_is_valid_image_url(url, expected):
    assert UrlUtils.is_valid_image_url(url) is expected


@pytest.mark.parametrize(
    "url, expected",
    [
        ("/uploads/2024/05/a.jpg", "1"),
        ("/uploads/2024/05/a-768x512.jpg", "1"),
        # an original with a size-like suffix of its own
        ("/uploads/2024/05/b-300x200.jpg", "2"),
        ("/uploads/2024/05/c%20d.png", "3"),
        ("/elsewhere/2024/05/a.jpg", None),
        ("/uploads/2024/05/missing.jpg", None),
        ("/uploads/2024/05/a.txt", None),
    ],
)
def test_path_base_url_should_resolve_relative_urls(url, expected):
    resolver = UploadsUrlResolver("/uploads/", FILES.get)
    assert resolver(url) == expected


def test_path_base_url_should_accept_absolute_urls():
    resolver = UploadsUrlResolver("/uploads", FILES.get)
    assert resolver("https://cdn.example.com/uploads/2024/05/a.jpg") == "1"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://example.com/uploads/2024/05/a.jpg", "1"),
        ("https://other.example.com/uploads/2024/05/a.jpg", None),
        ("/uploads/2024/05/a-150x100.jpg", "1"),
    ],
)
def test_absolute_base_url_should_check_the_host(url, expected):
    resolver = UploadsUrlResolver("https://example.com/uploads", FILES.get)
    assert resolver(url) == expected
