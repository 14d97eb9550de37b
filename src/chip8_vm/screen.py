"""Text rendering of the framebuffer.

The engine only knows lit/unlit cells; this is the simplest display sink, a
character grid inside a border, used by the CLI and the web demo.
"""

from typing import Sequence

from .state import PIXEL_COUNT, SCREEN_WIDTH


def render_text(
    pixels: Sequence[bool],
    on: str = "#",
    off: str = " ",
    border: str = "@",
    width: int = SCREEN_WIDTH
) -> str:
    """Render a row-major framebuffer as a bordered text grid.

    Args:
        pixels: Framebuffer cells, row-major
        on: Character for lit cells
        off: Character for unlit cells
        border: Character for the frame; empty string for no frame
        width: Cells per row

    Returns:
        Multi-line string, one line per row plus the frame lines
    """
    if len(pixels) % width != 0:
        raise ValueError(f"Framebuffer of {len(pixels)} cells is not a multiple of width {width}")

    lines = []
    if border:
        lines.append(border * (width + 2))
    for start in range(0, len(pixels), width):
        row = "".join(on if cell else off for cell in pixels[start:start + width])
        lines.append(f"{border}{row}{border}")
    if border:
        lines.append(border * (width + 2))
    return "\n".join(lines)


def lit_count(pixels: Sequence[bool]) -> int:
    """Number of lit cells."""
    return sum(1 for cell in pixels[:PIXEL_COUNT] if cell)
