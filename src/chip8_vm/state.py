"""MachineState: mutable state record for the CHIP-8 virtual machine.

This module defines the memory layout, register file, call stack, timers,
framebuffer and key state of a single CHIP-8 machine, together with the
built-in hexadecimal font and the errors raised by the core.

Memory Map:
    0x000-0x04F: Built-in font (16 glyphs x 5 bytes)
    0x050-0x1FF: Unused (reserved for the interpreter on real hardware)
    0x200-0xFFF: Program space (0x600-0xFFF on the ETI 660 variant)

State Components:
    - Memory: 4096 bytes
    - Registers: V0-VF (16 unsigned 8-bit values, VF doubles as the flag)
    - I: Address register (16-bit, low 12 bits address memory)
    - PC: Program counter
    - Stack: 16 return addresses plus stack pointer
    - Timers: delay and sound (8-bit, count down once per cycle)
    - Display: 64x32 monochrome framebuffer, row-major
    - Keys: 16 pressed flags
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


MEMORY_SIZE = 4096
ADDRESS_MASK = 0xFFF
NUM_REGISTERS = 16
STACK_SIZE = 16
NUM_KEYS = 16
FLAG_REGISTER = 0xF

DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32

FONT_START = 0x000
FONT_GLYPH_SIZE = 5
PROGRAM_START = 0x200
ETI_PROGRAM_START = 0x600

FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


class Variant(Enum):
    """Machine variant, selecting where programs are loaded."""
    NORMAL = "normal"
    ETI = "eti"

    @property
    def program_start(self) -> int:
        return ETI_PROGRAM_START if self is Variant.ETI else PROGRAM_START


# =============================================================================
# Errors
# =============================================================================

class Chip8Error(Exception):
    """Base class for all errors raised by the virtual machine."""


class DecodeError(Chip8Error):
    """An opcode matches no instruction in its family."""

    def __init__(self, opcode: int, address: Optional[int] = None):
        self.opcode = opcode
        self.address = address
        where = f" at {address:#05x}" if address is not None else ""
        super().__init__(f"Unknown opcode {opcode:#06x}{where}")


class StackOverflowError(Chip8Error):
    """CALL with every stack slot in use."""


class StackUnderflowError(Chip8Error):
    """RET without a matching CALL."""


class ProgramTooLargeError(Chip8Error):
    """A ROM does not fit in program space (strict loads only)."""


# =============================================================================
# State
# =============================================================================

@dataclass
class MachineState:
    """Complete state of one CHIP-8 machine.

    Unlike registers on a real CPU, nothing here is masked on write: handlers
    are responsible for keeping values inside their architectural width.

    Attributes:
        variant: Machine variant (selects program start)
        memory: 4096 bytes of addressable memory
        registers: V0-VF, each 0-255
        index: The I register
        pc: Program counter
        sp: Number of return addresses currently on the stack
        stack: Return address slots
        delay_timer: Delay timer (0-255)
        sound_timer: Sound timer (0-255)
        display: Framebuffer, one byte (0 or 1) per pixel, row-major
        keys: Pressed flags for keys 0x0-0xF
        halted: Set after a fatal error; cleared only by reset
        cycle_count: Number of completed cycles
    """
    variant: Variant = Variant.NORMAL
    memory: bytearray = field(default_factory=lambda: bytearray(MEMORY_SIZE))
    registers: List[int] = field(default_factory=lambda: [0] * NUM_REGISTERS)
    index: int = 0
    pc: int = PROGRAM_START
    sp: int = 0
    stack: List[int] = field(default_factory=lambda: [0] * STACK_SIZE)
    delay_timer: int = 0
    sound_timer: int = 0
    display: bytearray = field(
        default_factory=lambda: bytearray(DISPLAY_WIDTH * DISPLAY_HEIGHT)
    )
    keys: List[bool] = field(default_factory=lambda: [False] * NUM_KEYS)
    halted: bool = False
    cycle_count: int = 0

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def read_byte(self, address: int) -> int:
        return self.memory[address & ADDRESS_MASK]

    def write_byte(self, address: int, value: int) -> None:
        self.memory[address & ADDRESS_MASK] = value & 0xFF

    def fetch(self) -> int:
        """Read the big-endian instruction word at PC."""
        return (self.read_byte(self.pc) << 8) | self.read_byte(self.pc + 1)

    # -------------------------------------------------------------------------
    # Stack
    # -------------------------------------------------------------------------

    def push(self, address: int) -> None:
        """Push a return address.

        Raises:
            StackOverflowError: If all 16 slots are in use
        """
        if self.sp >= STACK_SIZE:
            raise StackOverflowError(
                f"Call stack overflow at {self.pc:#05x} (depth {self.sp})"
            )
        self.stack[self.sp] = address
        self.sp += 1

    def pop(self) -> int:
        """Pop the most recent return address.

        Raises:
            StackUnderflowError: If the stack is empty
        """
        if self.sp == 0:
            raise StackUnderflowError(f"Return with empty stack at {self.pc:#05x}")
        self.sp -= 1
        return self.stack[self.sp]

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    def tick_timers(self) -> None:
        """Decrement each timer that is nonzero."""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------

    def clear_display(self) -> None:
        self.display[:] = bytes(len(self.display))

    def get_pixel(self, x: int, y: int) -> bool:
        """Read the pixel at column x, row y (coordinates wrap)."""
        return bool(self.display[(y % DISPLAY_HEIGHT) * DISPLAY_WIDTH + (x % DISPLAY_WIDTH)])

    def flip_pixel(self, x: int, y: int) -> bool:
        """XOR one pixel on, returning True if it was lit and is now unlit."""
        position = (y % DISPLAY_HEIGHT) * DISPLAY_WIDTH + (x % DISPLAY_WIDTH)
        erased = self.display[position] == 1
        self.display[position] ^= 1
        return erased

    def framebuffer(self) -> List[List[bool]]:
        """Copy of the framebuffer as 32 rows of 64 booleans."""
        return [
            [bool(p) for p in self.display[row * DISPLAY_WIDTH:(row + 1) * DISPLAY_WIDTH]]
            for row in range(DISPLAY_HEIGHT)
        ]

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Capture the small, frequently changing parts of the state.

        Memory and display are excluded; they are large and the trace only
        needs register-level changes.
        """
        return {
            "registers": list(self.registers),
            "pc": self.pc,
            "index": self.index,
            "sp": self.sp,
            "delay_timer": self.delay_timer,
            "sound_timer": self.sound_timer,
            "halted": self.halted,
            "cycle_count": self.cycle_count,
        }

    def validate(self) -> bool:
        """Check that every component is within its architectural range.

        Returns:
            True if state is valid, False otherwise
        """
        if len(self.memory) != MEMORY_SIZE:
            return False
        if len(self.registers) != NUM_REGISTERS:
            return False
        if any(not 0 <= v <= 0xFF for v in self.registers):
            return False
        if not 0 <= self.index <= 0xFFFF or not 0 <= self.pc <= 0xFFFF:
            return False
        if not 0 <= self.sp <= STACK_SIZE:
            return False
        if not 0 <= self.delay_timer <= 0xFF or not 0 <= self.sound_timer <= 0xFF:
            return False
        if len(self.display) != DISPLAY_WIDTH * DISPLAY_HEIGHT:
            return False
        if len(self.keys) != NUM_KEYS:
            return False
        return self.cycle_count >= 0

    def get_register(self, reg) -> int:
        """Get value of a register.

        Args:
            reg: Register index (0-15) or name ("V0"-"VF", case insensitive)

        Raises:
            KeyError: If register doesn't exist
        """
        if isinstance(reg, str):
            name = reg.upper()
            if len(name) != 2 or name[0] != "V" or name[1] not in "0123456789ABCDEF":
                raise KeyError(f"Invalid register: {reg}")
            reg = int(name[1], 16)
        if not 0 <= reg < NUM_REGISTERS:
            raise KeyError(f"Invalid register: {reg}")
        return self.registers[reg]

    def dump_registers(self) -> Dict[str, int]:
        """Get a copy of all register values keyed by name (V0-VF)."""
        return {f"V{i:X}": v for i, v in enumerate(self.registers)}

    def __str__(self) -> str:
        regs = " ".join(f"V{i:X}={v:02X}" for i, v in enumerate(self.registers))
        return (
            f"[Cycle {self.cycle_count}] PC={self.pc:03X} I={self.index:03X} "
            f"SP={self.sp} DT={self.delay_timer} ST={self.sound_timer} {regs}"
            f"{' HALTED' if self.halted else ''}"
        )


def create_initial_state(variant: Variant = Variant.NORMAL) -> MachineState:
    """Create a fresh machine state with the font loaded.

    Args:
        variant: Machine variant (selects initial PC)

    Returns:
        MachineState with zeroed registers and PC at the program start
    """
    state = MachineState(variant=variant, pc=variant.program_start)
    state.memory[FONT_START:FONT_START + len(FONT)] = FONT
    return state
