from typing import Optional, Union

Number = Union[int, float]


class GeneralUtils:
    FILE_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]

    @staticmethod
    def clamp(value: Number, minimum: Number, maximum: Number) -> Number:
        return max(minimum, min(value, maximum))

    @classmethod
    def format_file_size(cls, size: int, precision: int = 2) -> str:
        value = max(size, 0)
        power = 0
        while value >= 1024 and power < len(cls.FILE_SIZE_UNITS) - 1:
            value /= 1024
            power += 1

        value = round(value, precision)
        if value == int(value):
            value = int(value)

        return f"{value} {cls.FILE_SIZE_UNITS[power]}"

    @staticmethod
    def savings_percentage(
        original_size: int, optimized_size: int, precision: int = 1
    ) -> Optional[str]:
        if not original_size or not optimized_size:
            return None

        savings = ((original_size - optimized_size) / original_size) * 100
        return f"{round(savings, precision)}%"
