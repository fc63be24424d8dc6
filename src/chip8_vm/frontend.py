"""Window front-end for the CHIP-8 virtual machine.

Runs a VirtualMachine at 60 ticks per second, drawing lit pixels as filled
squares and feeding the keyboard into the keypad before every step.

Controls:
    9 / 8   Raise / lower steps per tick (0 pauses)
    0       Next colour
    Esc     Quit

Requires pygame (``pip install chip8-vm[display]``).
"""

import logging
from typing import List, Optional, Sequence

import pygame

from .config import BLACK, TICK_HZ, FrontendSettings, sound_cue_index
from .cpu import VirtualMachine
from .keymap import KEYMAP
from .state import DISPLAY_HEIGHT, DISPLAY_WIDTH, NUM_KEYS

logger = logging.getLogger(__name__)


class Frontend:
    """pygame window driving one VirtualMachine.

    Attributes:
        vm: The machine being run
        settings: Scale, speed and colour
        sounds: Up to three audio cues, picked by sound timer length
    """

    def __init__(
        self,
        vm: VirtualMachine,
        settings: Optional[FrontendSettings] = None,
        sound_files: Sequence[str] = (),
    ):
        self.vm = vm
        self.settings = settings or FrontendSettings()
        self.sound_files = list(sound_files)[:3]
        self.sounds: List["pygame.mixer.Sound"] = []
        self.frame_counter = 0
        self._keycodes = {}
        self._screen = None

    def _poll_keys(self) -> List[bool]:
        pressed = pygame.key.get_pressed()
        keys = [False] * NUM_KEYS
        for keycode, index in self._keycodes.items():
            if pressed[keycode]:
                keys[index] = True
        return keys

    def _on_sound(self, active: bool) -> None:
        if not active or not self.sounds:
            return
        index = sound_cue_index(self.vm.sound_timer, len(self.sounds))
        self.sounds[index].play()

    def _load_sounds(self) -> None:
        if not self.sound_files:
            return
        try:
            pygame.mixer.init()
        except pygame.error as e:
            logger.warning("Audio unavailable, running silent: %s", e)
            return
        self.sounds = [pygame.mixer.Sound(path) for path in self.sound_files]

    def _handle_events(self) -> bool:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                return False
            if event.type != pygame.KEYDOWN:
                continue
            if event.key == pygame.K_ESCAPE:
                return False
            if event.key == pygame.K_9:
                self.settings.faster()
                logger.info("Speed: %d steps per tick", self.settings.speed)
            elif event.key == pygame.K_8:
                self.settings.slower()
                logger.info("Speed: %d steps per tick", self.settings.speed)
            elif event.key == pygame.K_0:
                self.settings.next_color()
        return True

    def _draw(self) -> None:
        size = self.settings.pixel_size
        color = self.settings.color_for_frame(self.frame_counter)
        self._screen.fill(BLACK)
        for y, row in enumerate(self.vm.framebuffer()):
            for x, lit in enumerate(row):
                if lit:
                    self._screen.fill(color, pygame.Rect(x * size, y * size, size, size))
        pygame.display.flip()

    def run(self) -> None:
        """Open the window and run until it is closed or Esc is pressed.

        Errors raised by the machine propagate after the window is closed.
        """
        pygame.init()
        try:
            self._keycodes = {
                pygame.key.key_code(name): index for name, index in KEYMAP.items()
            }
            size = self.settings.pixel_size
            self._screen = pygame.display.set_mode(
                (DISPLAY_WIDTH * size, DISPLAY_HEIGHT * size)
            )
            pygame.display.set_caption("CHIP-8")
            self._load_sounds()
            self.vm.sound_sink = self._on_sound
            clock = pygame.time.Clock()

            while self._handle_events():
                self.frame_counter = (self.frame_counter + 1) % 256
                for _ in range(self.settings.speed):
                    self.vm.step(self._poll_keys())
                self._draw()
                clock.tick(TICK_HZ)
        finally:
            pygame.quit()
