"""Small hand-assembled CHIP-8 programs.

Each program ends in a jump to itself, so VirtualMachine.run() with
stop_on_idle stops on its own.
"""

from typing import Dict


def assemble(*words: int) -> bytes:
    """Pack 16-bit instruction words into big-endian ROM bytes."""
    return b"".join(word.to_bytes(2, "big") for word in words)


# Draw hex digits 0-7 across the top of the screen.
HEX_DIGITS = assemble(
    0x6000,  # 200: LD V0, 0        digit
    0x6101,  # 202: LD V1, 1        x
    0x6201,  # 204: LD V2, 1        y
    0xF029,  # 206: LD F, V0
    0xD125,  # 208: DRW V1, V2, 5
    0x7001,  # 20A: ADD V0, 1
    0x7105,  # 20C: ADD V1, 5
    0x3008,  # 20E: SE V0, 8
    0x1206,  # 210: JP 206
    0x1212,  # 212: JP 212
)

# Convert 156 to decimal digits with LD B and draw them.
BCD_DISPLAY = assemble(
    0x609C,  # 200: LD V0, 156
    0xA300,  # 202: LD I, 0x300
    0xF033,  # 204: LD B, V0
    0xF265,  # 206: LD V2, [I]      V0..V2 = 1, 5, 6
    0x6300,  # 208: LD V3, 0        x
    0x6400,  # 20A: LD V4, 0        y
    0xF029,  # 20C: LD F, V0
    0xD345,  # 20E: DRW V3, V4, 5
    0x7305,  # 210: ADD V3, 5
    0xF129,  # 212: LD F, V1
    0xD345,  # 214: DRW V3, V4, 5
    0x7305,  # 216: ADD V3, 5
    0xF229,  # 218: LD F, V2
    0xD345,  # 21A: DRW V3, V4, 5
    0x121C,  # 21C: JP 21C
)

# Call a subroutine that adds 16 to V0, then add 1 after returning.
SUBROUTINE = assemble(
    0x6005,  # 200: LD V0, 5
    0x2208,  # 202: CALL 208
    0x7001,  # 204: ADD V0, 1
    0x1206,  # 206: JP 206
    0x7010,  # 208: ADD V0, 16
    0x00EE,  # 20A: RET
)

# Wait for a key, then show its hex digit in the top-left corner.
KEY_ECHO = assemble(
    0xF00A,  # 200: LD V0, K
    0x00E0,  # 202: CLS
    0xF029,  # 204: LD F, V0
    0x6100,  # 206: LD V1, 0
    0xD115,  # 208: DRW V1, V1, 5
    0x1200,  # 20A: JP 200
)

# Beep for half a second, counting the delay timer down alongside.
BEEP = assemble(
    0x601E,  # 200: LD V0, 30
    0xF018,  # 202: LD ST, V0
    0xF015,  # 204: LD DT, V0
    0xF107,  # 206: LD V1, DT
    0x3100,  # 208: SE V1, 0
    0x1206,  # 20A: JP 206
    0x120C,  # 20C: JP 20C
)

EXAMPLE_ROMS: Dict[str, bytes] = {
    "hex-digits": HEX_DIGITS,
    "bcd": BCD_DISPLAY,
    "subroutine": SUBROUTINE,
    "key-echo": KEY_ECHO,
    "beep": BEEP,
}
