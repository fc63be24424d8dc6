"""Instruction decoder for the CHIP-8 virtual machine.

This module turns raw 16-bit opcodes into Instruction values: an operation
key naming one of the 35 CHIP-8 instructions, plus the operands that
instruction needs. Execution never looks at opcode bits; it only sees the
decoded key and params.

Architecture:
    opcode (0xDXYN) -> decode() -> Instruction("OP_DRW", {x, y, n}) -> registry

Opcode fields:
    x   = (opcode >> 8) & 0xF    register index
    y   = (opcode >> 4) & 0xF    register index
    n   = opcode & 0xF           nibble
    kk  = opcode & 0xFF          byte
    nnn = opcode & 0xFFF         address
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .state import DecodeError


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction.

    Attributes:
        key: Operation key (e.g., "OP_ADD_REG")
        params: Operand values, keyed by field name (x, y, n, kk, nnn)
        opcode: The raw 16-bit word this was decoded from
    """
    key: str
    params: Dict[str, int] = field(default_factory=dict)
    opcode: int = 0

    @property
    def mnemonic(self) -> str:
        """Assembly-style rendering, e.g. ``ADD V1, V2``."""
        template = MNEMONICS[self.key]
        p = self.params
        return template.format(
            x=f"{p.get('x', 0):X}",
            y=f"{p.get('y', 0):X}",
            n=p.get("n", 0),
            kk=f"{p.get('kk', 0):#04x}",
            nnn=f"{p.get('nnn', 0):#05x}",
        )

    def __str__(self) -> str:
        return f"{self.opcode:04X}  {self.mnemonic}"


MNEMONICS: Dict[str, str] = {
    "OP_SYS": "SYS {nnn}",
    "OP_CLS": "CLS",
    "OP_RET": "RET",
    "OP_JP": "JP {nnn}",
    "OP_CALL": "CALL {nnn}",
    "OP_SE_IMM": "SE V{x}, {kk}",
    "OP_SNE_IMM": "SNE V{x}, {kk}",
    "OP_SE_REG": "SE V{x}, V{y}",
    "OP_LD_IMM": "LD V{x}, {kk}",
    "OP_ADD_IMM": "ADD V{x}, {kk}",
    "OP_LD_REG": "LD V{x}, V{y}",
    "OP_OR": "OR V{x}, V{y}",
    "OP_AND": "AND V{x}, V{y}",
    "OP_XOR": "XOR V{x}, V{y}",
    "OP_ADD_REG": "ADD V{x}, V{y}",
    "OP_SUB": "SUB V{x}, V{y}",
    "OP_SHR": "SHR V{x}",
    "OP_SUBN": "SUBN V{x}, V{y}",
    "OP_SHL": "SHL V{x}",
    "OP_SNE_REG": "SNE V{x}, V{y}",
    "OP_LD_I": "LD I, {nnn}",
    "OP_JP_V0": "JP V0, {nnn}",
    "OP_RND": "RND V{x}, {kk}",
    "OP_DRW": "DRW V{x}, V{y}, {n}",
    "OP_SKP": "SKP V{x}",
    "OP_SKNP": "SKNP V{x}",
    "OP_LD_VX_DT": "LD V{x}, DT",
    "OP_LD_VX_K": "LD V{x}, K",
    "OP_LD_DT_VX": "LD DT, V{x}",
    "OP_LD_ST_VX": "LD ST, V{x}",
    "OP_ADD_I": "ADD I, V{x}",
    "OP_LD_F": "LD F, V{x}",
    "OP_LD_B": "LD B, V{x}",
    "OP_LD_MEM_VX": "LD [I], V{x}",
    "OP_LD_VX_MEM": "LD V{x}, [I]",
}

# Valid operation keys that decode() can emit
VALID_KEYS: Set[str] = set(MNEMONICS)

_ALU_KEYS = {
    0x0: "OP_LD_REG",
    0x1: "OP_OR",
    0x2: "OP_AND",
    0x3: "OP_XOR",
    0x4: "OP_ADD_REG",
    0x5: "OP_SUB",
    0x6: "OP_SHR",
    0x7: "OP_SUBN",
    0xE: "OP_SHL",
}

_KEY_SKIP_KEYS = {
    0x9E: "OP_SKP",
    0xA1: "OP_SKNP",
}

_MISC_KEYS = {
    0x07: "OP_LD_VX_DT",
    0x0A: "OP_LD_VX_K",
    0x15: "OP_LD_DT_VX",
    0x18: "OP_LD_ST_VX",
    0x1E: "OP_ADD_I",
    0x29: "OP_LD_F",
    0x33: "OP_LD_B",
    0x55: "OP_LD_MEM_VX",
    0x65: "OP_LD_VX_MEM",
}


def decode(opcode: int, address: Optional[int] = None) -> Instruction:
    """Decode a 16-bit opcode.

    The top nibble selects a family; families 0x8, 0xE and 0xF are
    further narrowed by their low nibble or low byte.

    Args:
        opcode: Instruction word (0x0000-0xFFFF)
        address: Where the word was fetched from, for error messages

    Returns:
        Instruction with key and operands

    Raises:
        DecodeError: If the opcode is not a CHIP-8 instruction
    """
    opcode &= 0xFFFF
    family = opcode >> 12
    x = (opcode >> 8) & 0xF
    y = (opcode >> 4) & 0xF
    n = opcode & 0xF
    kk = opcode & 0xFF
    nnn = opcode & 0xFFF

    if family == 0x0:
        if opcode == 0x00E0:
            return Instruction("OP_CLS", {}, opcode)
        if opcode == 0x00EE:
            return Instruction("OP_RET", {}, opcode)
        return Instruction("OP_SYS", {"nnn": nnn}, opcode)

    if family == 0x1:
        return Instruction("OP_JP", {"nnn": nnn}, opcode)
    if family == 0x2:
        return Instruction("OP_CALL", {"nnn": nnn}, opcode)
    if family == 0x3:
        return Instruction("OP_SE_IMM", {"x": x, "kk": kk}, opcode)
    if family == 0x4:
        return Instruction("OP_SNE_IMM", {"x": x, "kk": kk}, opcode)
    if family == 0x5:
        return Instruction("OP_SE_REG", {"x": x, "y": y}, opcode)
    if family == 0x6:
        return Instruction("OP_LD_IMM", {"x": x, "kk": kk}, opcode)
    if family == 0x7:
        return Instruction("OP_ADD_IMM", {"x": x, "kk": kk}, opcode)
    if family == 0x8 and n in _ALU_KEYS:
        return Instruction(_ALU_KEYS[n], {"x": x, "y": y}, opcode)
    if family == 0x9:
        return Instruction("OP_SNE_REG", {"x": x, "y": y}, opcode)
    if family == 0xA:
        return Instruction("OP_LD_I", {"nnn": nnn}, opcode)
    if family == 0xB:
        return Instruction("OP_JP_V0", {"nnn": nnn}, opcode)
    if family == 0xC:
        return Instruction("OP_RND", {"x": x, "kk": kk}, opcode)
    if family == 0xD:
        return Instruction("OP_DRW", {"x": x, "y": y, "n": n}, opcode)
    if family == 0xE and kk in _KEY_SKIP_KEYS:
        return Instruction(_KEY_SKIP_KEYS[kk], {"x": x}, opcode)
    if family == 0xF and kk in _MISC_KEYS:
        return Instruction(_MISC_KEYS[kk], {"x": x}, opcode)

    raise DecodeError(opcode, address)


def disassemble(program: bytes, start: int = 0x200) -> List[Tuple[int, int, str]]:
    """Disassemble a ROM image word by word.

    Data interleaved with code is common in CHIP-8 programs, so words that
    do not decode are listed as ``DW`` rather than raising. A trailing odd
    byte is listed as ``DB``.

    Args:
        program: Raw ROM bytes
        start: Address the first byte is loaded at

    Returns:
        List of (address, word, text) tuples
    """
    listing = []
    for offset in range(0, len(program) - 1, 2):
        word = (program[offset] << 8) | program[offset + 1]
        try:
            text = decode(word).mnemonic
        except DecodeError:
            text = f"DW {word:#06x}"
        listing.append((start + offset, word, text))
    if len(program) % 2:
        last = program[-1]
        listing.append((start + len(program) - 1, last, f"DB {last:#04x}"))
    return listing
