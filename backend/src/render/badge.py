"""Timer badge rasterisation."""

import logging
from pathlib import Path

from PIL import Image, ImageColor, ImageDraw

from src.exceptions import BadgeGenerationError

logger = logging.getLogger(__name__)

# Draw at 4x and downscale for anti-aliased edges
SUPERSAMPLE = 4


def hex_to_rgba(color: str, opacity: float = 1.0) -> tuple[int, int, int, int]:
    """Parse ``#RRGGBB``/``#RRGGBBAA`` or a colour name to an RGBA tuple."""
    if color.startswith("#") and len(color) == 9:
        r, g, b, a = (int(color[i : i + 2], 16) for i in (1, 3, 5, 7))
        return (r, g, b, a)
    r, g, b = ImageColor.getrgb(color)[:3]
    return (r, g, b, int(round(max(0.0, min(1.0, opacity)) * 255)))


def create_badge(
    path: str | Path,
    size: int = 120,
    color: str = "#22c55e",
    opacity: float = 0.9,
) -> Path:
    """Write a filled semi-transparent circle on a transparent canvas.

    Args:
        path: Destination PNG path
        size: Edge length of the square canvas in pixels
        color: Fill colour
        opacity: Fill alpha in 0..1 (ignored when ``color`` carries alpha)

    Returns:
        Path to the written image

    Raises:
        BadgeGenerationError: If the image cannot be produced
    """
    output = Path(path)
    if size <= 0:
        raise BadgeGenerationError(f"Badge size must be positive, got {size}")

    try:
        fill = hex_to_rgba(color, opacity)
        big = size * SUPERSAMPLE
        img = Image.new("RGBA", (big, big), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        draw.ellipse([(0, 0), (big - 1, big - 1)], fill=fill)
        img = img.resize((size, size), Image.Resampling.LANCZOS)
        output.parent.mkdir(parents=True, exist_ok=True)
        img.save(output, "PNG")
    except (OSError, ValueError) as e:
        logger.error(f"[BADGE] Failed to generate badge at {output}: {e}")
        raise BadgeGenerationError(f"Failed to generate timer badge: {e}") from e

    logger.info(f"[BADGE] Generated badge: {output} ({size}x{size}, color={color})")
    return output
