class Constants:
    ORIGINAL_SIZE_NAME = "original"

    FORMAT_AVIF = "avif"
    FORMAT_WEBP = "webp"
    FORMAT_PNG = "png"
    FORMAT_JPEG = "jpeg"

    # source mime types that get modern encodings
    STANDARD_MIME_TYPES = ["image/jpeg", "image/png"]
    # source mime types that only get a universally decodable fallback
    MODERN_MIME_TYPES = ["image/webp", "image/avif"]

    FORMAT_MIME_TYPES = {
        "avif": "image/avif",
        "webp": "image/webp",
        "png": "image/png",
        "jpeg": "image/jpeg",
        "gif": "image/gif",
    }

    # the extension written for each target format
    FORMAT_EXTENSIONS = {
        "avif": "avif",
        "webp": "webp",
        "png": "png",
        "jpeg": "jpg",
        "gif": "gif",
    }

    EXTENSION_ALIASES = {"jpg": "jpeg", "jpe": "jpeg"}

    # formats preferred by the rewriter, most efficient first
    FORMAT_PRIORITY = ["avif", "webp"]

    QUALITY_CAPS = {"avif": 85, "webp": 90}

    DEFAULT_IMAGE_QUALITY = 100
    DEFAULT_BREAKPOINTS = [320, 480, 768, 1024, 1280, 1440, 1920]

    ALLOWED_INPUT_FILE_EXTENSIONS = [".jpg", ".jpeg", ".png", ".webp", ".avif"]
    VALID_IMAGE_URL_EXTENSIONS = ["jpg", "jpeg", "png", "gif", "webp", "avif"]

    BREAKPOINT_SIZE_PREFIX = "breakpoint-"

    STANDARD_SIZES = (
        "(max-width: 320px) 320px, "
        "(max-width: 768px) 768px, "
        "(max-width: 1280px) 1280px, "
        "1920px"
    )

    @classmethod
    def format_from_extension(cls, extension: str) -> str:
        extension = extension.lower().lstrip(".")
        return cls.EXTENSION_ALIASES.get(extension, extension)

    @classmethod
    def mime_for_format(cls, format: str) -> str:
        return cls.FORMAT_MIME_TYPES.get(format, f"image/{format}")

    @classmethod
    def format_for_mime(cls, mime_type: str) -> str:
        for format, mime in cls.FORMAT_MIME_TYPES.items():
            if mime == mime_type:
                return format
        return mime_type.split("/")[-1]

    @classmethod
    def extension_for_format(cls, format: str) -> str:
        return cls.FORMAT_EXTENSIONS.get(format, format)

    @staticmethod
    def get_quality_override_key(format: str) -> str:
        return f"{format}_quality"
