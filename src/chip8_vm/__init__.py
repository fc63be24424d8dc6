"""chip8-vm: CHIP-8 Virtual Machine with Decoded Instruction Dispatch.

This package emulates a CHIP-8 machine: 4 KB of memory, sixteen 8-bit
registers, a 16-entry call stack, delay and sound timers, a 64x32
monochrome display and a 16-key keypad.

Pipeline:
    fetch -> tick timers -> decode -> key -> registry -> execute

Architecture:
    MEMORY -> FETCH -> DECODE -> INSTRUCTION -> REGISTRY -> EXECUTE -> STATE
               |         |           |             |           |
           [PC-based] [nibbles] ("OP_DRW",...) [Frozen]    [In place]

Modules:
    state: MachineState, memory map constants, font and errors
    decode: Opcode decoder and disassembler
    registry: Instruction handlers (OP_CLS, OP_DRW, etc.)
    cpu: Main VirtualMachine orchestrator
    programs: Small example ROMs
    keymap: Keyboard to keypad mapping
    config: Front-end settings
    frontend: pygame window (optional, imported on demand)
"""

__version__ = "0.1.0"
__author__ = "chip8-vm Project"

from .state import (
    Chip8Error,
    DecodeError,
    MachineState,
    ProgramTooLargeError,
    StackOverflowError,
    StackUnderflowError,
    Variant,
)
from .decode import Instruction, decode, disassemble
from .registry import InstructionSet
from .cpu import VirtualMachine

__all__ = [
    "Chip8Error",
    "DecodeError",
    "Instruction",
    "InstructionSet",
    "MachineState",
    "ProgramTooLargeError",
    "StackOverflowError",
    "StackUnderflowError",
    "Variant",
    "VirtualMachine",
    "decode",
    "disassemble",
]
