"""Front-end settings: display scale, emulation speed and colour."""

from dataclasses import dataclass
from typing import Tuple

Color = Tuple[int, int, int]

GREEN: Color = (0, 228, 48)
RED: Color = (230, 41, 55)
WHITE: Color = (255, 255, 255)
BLUE: Color = (0, 121, 241)
YELLOW: Color = (253, 249, 0)
BLACK: Color = (0, 0, 0)

PALETTE: Tuple[Color, ...] = (GREEN, RED, WHITE, BLUE, YELLOW)

DEFAULT_PIXEL_SIZE = 20
DEFAULT_SPEED = 1
MAX_SPEED = 20
TICK_HZ = 60
RAINBOW_PERIOD = 10


@dataclass
class FrontendSettings:
    """Mutable settings adjusted from the keyboard while a ROM runs.

    Attributes:
        pixel_size: Screen pixels per CHIP-8 pixel
        speed: Steps executed per 60 Hz tick (0 pauses)
        color: Index into PALETTE
        rainbow: Advance the colour every RAINBOW_PERIOD frames
    """
    pixel_size: int = DEFAULT_PIXEL_SIZE
    speed: int = DEFAULT_SPEED
    color: int = 0
    rainbow: bool = False

    def faster(self) -> None:
        self.speed = min(self.speed + 1, MAX_SPEED)

    def slower(self) -> None:
        self.speed = max(self.speed - 1, 0)

    def next_color(self) -> None:
        self.color = (self.color + 1) % len(PALETTE)

    def color_for_frame(self, frame: int) -> Color:
        """Colour to draw this frame with, advancing it in rainbow mode."""
        if self.rainbow and frame % RAINBOW_PERIOD == 0:
            self.next_color()
        return PALETTE[self.color]


def sound_cue_index(timer: int, count: int) -> int:
    """Pick which of ``count`` audio cues to play for a sound timer value.

    Short beeps (under 4 ticks) use the first cue, medium ones (4-9) the
    second, and long ones (10+) the third. Missing cues fall back to the
    last one loaded.
    """
    if timer >= 10:
        choice = 2
    elif timer >= 4:
        choice = 1
    else:
        choice = 0
    return min(choice, count - 1)
