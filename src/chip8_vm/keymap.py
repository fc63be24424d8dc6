"""Keyboard to CHIP-8 keypad mapping.

The hexadecimal keypad is laid over the left-hand block of a QWERTY
keyboard:

    Keypad        Keyboard
    1 2 3 C       1 2 3 4
    4 5 6 D       Q W E R
    7 8 9 E       A S D F
    A 0 B F       Z X C V
"""

from typing import Dict, Iterable, List

from .state import NUM_KEYS

# Keyboard key name -> keypad index
KEYMAP: Dict[str, int] = {
    "x": 0x0,
    "1": 0x1,
    "2": 0x2,
    "3": 0x3,
    "q": 0x4,
    "w": 0x5,
    "e": 0x6,
    "a": 0x7,
    "s": 0x8,
    "d": 0x9,
    "z": 0xA,
    "c": 0xB,
    "4": 0xC,
    "r": 0xD,
    "f": 0xE,
    "v": 0xF,
}


def keys_from_names(pressed: Iterable[str]) -> List[bool]:
    """Build a 16-entry key snapshot from pressed keyboard key names.

    Names not in the keypad layout are ignored; matching is case insensitive.
    """
    keys = [False] * NUM_KEYS
    for name in pressed:
        index = KEYMAP.get(name.lower())
        if index is not None:
            keys[index] = True
    return keys


def parse_key_list(text: str) -> List[bool]:
    """Parse a comma separated list of keypad digits (e.g. ``"0,a,F"``).

    Raises:
        ValueError: If an entry is not a single hex digit
    """
    keys = [False] * NUM_KEYS
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        if len(item) != 1:
            raise ValueError(f"Not a keypad key: {item!r}")
        keys[int(item, 16)] = True
    return keys
