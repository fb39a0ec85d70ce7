"""Tab 颜色解析

支持 "#RRGGBB" 与固定的颜色名集合；未知颜色名回退为中性灰。
返回值为 [0.0, 1.0] 范围的 (r, g, b)。
"""

import re

from . import config
from .errors import ValidationError

RGB = tuple[float, float, float]

_HEX_RE = re.compile(r"^#([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")


def parse_color(color: str) -> RGB:
    """解析颜色

    Args:
        color: "#FF0000" 或 "red"

    Returns:
        (r, g, b)

    Raises:
        ValidationError: 空字符串或格式错误的 hex
    """
    value = color.strip() if isinstance(color, str) else ""
    if not value:
        raise ValidationError("color must be a color name or #RRGGBB")

    if value.startswith("#"):
        match = _HEX_RE.match(value)
        if match is None:
            raise ValidationError(f"Invalid hex color: {color}")
        return tuple(int(channel, 16) / 255.0 for channel in match.groups())

    return config.NAMED_COLORS.get(value.lower(), config.FALLBACK_COLOR)
