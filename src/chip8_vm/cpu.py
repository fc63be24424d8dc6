"""VirtualMachine: CHIP-8 fetch-decode-execute orchestrator.

This module implements the execution pipeline of one CHIP-8 machine:
    MEMORY -> FETCH -> TIMERS -> DECODE -> KEY -> REGISTRY -> EXECUTE -> STATE

Random numbers, key input and the sound signal are injected callables, so a
machine can run with no window, keyboard or audio device attached.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence, Union

from .decode import Instruction, decode
from .registry import InstructionSet, get_registry
from .state import (
    DISPLAY_HEIGHT,
    DISPLAY_WIDTH,
    MEMORY_SIZE,
    NUM_KEYS,
    Chip8Error,
    MachineState,
    ProgramTooLargeError,
    Variant,
    create_initial_state,
)

logger = logging.getLogger(__name__)

KeyProvider = Callable[[], Sequence[bool]]
SoundSink = Callable[[bool], None]


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Attributes:
        cycle: Cycle number (0-indexed)
        address: PC the instruction was fetched from
        opcode: Raw instruction word
        instruction: Decoded instruction (None if decode failed)
        pre_state: Snapshot before execution
        post_state: Snapshot after execution
        error: Error message if the step failed
    """
    cycle: int
    address: int
    opcode: int
    instruction: Optional[Instruction]
    pre_state: dict
    post_state: dict
    error: Optional[str] = None

    @property
    def mnemonic(self) -> str:
        if self.instruction is None:
            return f"DW {self.opcode:#06x}"
        return self.instruction.mnemonic


class VirtualMachine:
    """A single CHIP-8 machine.

    Attributes:
        variant: Machine variant (program start 0x200 or 0x600)
        registry: InstructionSet used to execute decoded instructions
        state: Current machine state
        trace: Recent execution trace entries (empty unless tracing)
        trace_enabled: Whether step() records trace entries
    """

    DEFAULT_TRACE_LIMIT = 10000

    def __init__(
        self,
        variant: Variant = Variant.NORMAL,
        random_source: Optional[Callable[[], int]] = None,
        seed: Optional[int] = None,
        key_provider: Optional[KeyProvider] = None,
        sound_sink: Optional[SoundSink] = None,
        trace: bool = False,
        trace_limit: int = DEFAULT_TRACE_LIMIT,
    ):
        """Initialize the machine.

        Args:
            variant: Machine variant
            random_source: Callable returning one random byte per call;
                defaults to a random.Random seeded with ``seed``
            seed: Seed for the default random source
            key_provider: Polled for a 16-entry key snapshot before each step
                when step() is not given keys explicitly
            sound_sink: Called with the new "sound active" value whenever it
                changes during a step
            trace: Record an ExecutionTraceEntry per step
            trace_limit: Maximum number of trace entries kept
        """
        self.variant = variant
        if random_source is None:
            rng = random.Random(seed)
            random_source = lambda: rng.getrandbits(8)
        self.random_source = random_source
        self.key_provider = key_provider
        self.sound_sink = sound_sink
        self.registry: InstructionSet = get_registry()
        self.state: MachineState = create_initial_state(variant)
        self.trace_enabled = trace
        self.trace: Deque[ExecutionTraceEntry] = deque(maxlen=trace_limit)
        self._program_size = 0

    # =========================================================================
    # Loading
    # =========================================================================

    @property
    def program_start(self) -> int:
        return self.variant.program_start

    def load(self, rom: bytes, strict: bool = False) -> int:
        """Copy a ROM image into program space and point PC at it.

        Bytes that do not fit below 0x1000 are dropped with a warning, or
        rejected outright when ``strict`` is set. The font area is never
        touched.

        Args:
            rom: Raw program bytes
            strict: Raise instead of truncating an oversized ROM

        Returns:
            Number of bytes loaded

        Raises:
            ProgramTooLargeError: If strict and the ROM does not fit
        """
        rom = bytes(rom)
        capacity = MEMORY_SIZE - self.program_start
        if len(rom) > capacity:
            if strict:
                raise ProgramTooLargeError(
                    f"Program is {len(rom)} bytes; only {capacity} fit "
                    f"from {self.program_start:#05x}"
                )
            logger.warning(
                "Program is %d bytes; truncating %d bytes past end of memory",
                len(rom), len(rom) - capacity,
            )
            rom = rom[:capacity]

        start = self.program_start
        self.state.memory[start:start + len(rom)] = rom
        self.state.pc = start
        self._program_size = len(rom)
        logger.info("Loaded %d byte program at %#05x", len(rom), start)
        return len(rom)

    def load_file(self, path: Union[str, Path], strict: bool = False) -> int:
        """Read a ROM file and load it.

        Raises:
            FileNotFoundError: If the file does not exist
            ProgramTooLargeError: If strict and the ROM does not fit
        """
        rom_path = Path(path)
        if not rom_path.is_file():
            raise FileNotFoundError(f"ROM file not found: {path}")
        return self.load(rom_path.read_bytes(), strict=strict)

    def reset(self) -> None:
        """Return to power-on state. Loaded program bytes are discarded."""
        self.state = create_initial_state(self.variant)
        self.trace.clear()
        self._program_size = 0

    # =========================================================================
    # Execution
    # =========================================================================

    def step(self, keys: Optional[Sequence[bool]] = None) -> Instruction:
        """Execute one fetch-decode-execute cycle.

        Args:
            keys: 16-entry pressed snapshot for this cycle; if omitted, the
                key provider is polled, or the current key state is kept

        Returns:
            The instruction that was executed

        Raises:
            RuntimeError: If the machine halted on an earlier error
            DecodeError: If the fetched word is not an instruction
            StackOverflowError: On CALL with a full stack
            StackUnderflowError: On RET with an empty stack
        """
        state = self.state
        if state.halted:
            raise RuntimeError("VM is halted; call reset() to continue")

        if keys is not None:
            self.set_keys(keys)
        elif self.key_provider is not None:
            self.set_keys(self.key_provider())

        was_sounding = state.sound_timer > 0
        cycle = state.cycle_count
        address = state.pc
        pre_state = state.snapshot() if self.trace_enabled else {}

        # FETCH, then count the timers down before executing
        opcode = state.fetch()
        state.tick_timers()

        instruction = None
        try:
            instruction = decode(opcode, address)
            logger.debug("%03X: %s", address & 0xFFF, instruction)
            self.registry.execute(state, instruction.key, instruction.params, self.random_source)
        except Chip8Error as e:
            state.halted = True
            logger.error("Halting: %s", e)
            self._record(cycle, address, opcode, instruction, pre_state, str(e))
            raise

        self._record(cycle, address, opcode, instruction, pre_state, None)

        is_sounding = state.sound_timer > 0
        if self.sound_sink is not None and is_sounding != was_sounding:
            self.sound_sink(is_sounding)

        return instruction

    def run(
        self,
        cycles: int,
        keys: Optional[Sequence[bool]] = None,
        stop_on_idle: bool = True,
    ) -> int:
        """Step up to ``cycles`` times.

        Args:
            cycles: Maximum number of steps
            keys: Key snapshot applied before every step
            stop_on_idle: Stop after a jump to its own address, the usual
                way CHIP-8 programs end

        Returns:
            Number of steps executed
        """
        executed = 0
        while executed < cycles:
            address = self.state.pc
            instruction = self.step(keys)
            executed += 1
            if stop_on_idle and instruction.key == "OP_JP" and self.state.pc == address:
                logger.info("Program idle at %#05x after %d steps", address, executed)
                break
        return executed

    def _record(self, cycle, address, opcode, instruction, pre_state, error) -> None:
        if not self.trace_enabled:
            return
        self.trace.append(ExecutionTraceEntry(
            cycle=cycle,
            address=address,
            opcode=opcode,
            instruction=instruction,
            pre_state=pre_state,
            post_state=self.state.snapshot(),
            error=error,
        ))

    # =========================================================================
    # Input
    # =========================================================================

    def set_keys(self, keys: Sequence[bool]) -> None:
        """Replace the key state with a 16-entry snapshot."""
        if len(keys) != NUM_KEYS:
            raise ValueError(f"Expected {NUM_KEYS} key states, got {len(keys)}")
        self.state.keys[:] = [bool(k) for k in keys]

    def press_key(self, key: int) -> None:
        self._check_key(key)
        self.state.keys[key] = True

    def release_key(self, key: int) -> None:
        self._check_key(key)
        self.state.keys[key] = False

    @staticmethod
    def _check_key(key: int) -> None:
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"Key must be 0-{NUM_KEYS - 1}, got {key}")

    # =========================================================================
    # Accessors
    # =========================================================================

    def framebuffer(self) -> List[List[bool]]:
        """The 64x32 display as 32 rows of 64 booleans."""
        return self.state.framebuffer()

    def get_pixel(self, x: int, y: int) -> bool:
        return self.state.get_pixel(x, y)

    def render_text(self, on: str = "#", off: str = ".") -> str:
        """Render the display as text, one line per row."""
        return "\n".join(
            "".join(on if lit else off for lit in row) for row in self.framebuffer()
        )

    @property
    def sound_timer(self) -> int:
        return self.state.sound_timer

    @property
    def delay_timer(self) -> int:
        return self.state.delay_timer

    @property
    def sound_active(self) -> bool:
        return self.state.sound_timer > 0

    def get_register(self, reg) -> int:
        return self.state.get_register(reg)

    def dump_registers(self) -> Dict[str, int]:
        return self.state.dump_registers()

    def get_pc(self) -> int:
        return self.state.pc

    def get_index(self) -> int:
        return self.state.index

    def get_cycle_count(self) -> int:
        return self.state.cycle_count

    def is_halted(self) -> bool:
        return self.state.halted

    def lit_pixel_count(self) -> int:
        return sum(self.state.display)

    # =========================================================================
    # Reporting
    # =========================================================================

    def format_trace(self) -> str:
        """Render the recorded trace, one block per cycle."""
        lines = []
        for entry in self.trace:
            status = "OK" if not entry.error else f"ERROR: {entry.error}"
            lines.append(f"[Cycle {entry.cycle}] {entry.address:03X}: "
                         f"{entry.opcode:04X}  {entry.mnemonic}  {status}")

            pre_regs = entry.pre_state.get("registers", [])
            post_regs = entry.post_state.get("registers", [])
            changes = [
                f"V{i:X}: {before} -> {after}"
                for i, (before, after) in enumerate(zip(pre_regs, post_regs))
                if before != after
            ]
            for name in ("index", "sp", "delay_timer", "sound_timer"):
                before = entry.pre_state.get(name)
                after = entry.post_state.get(name)
                if before != after:
                    changes.append(f"{name}: {before} -> {after}")
            if changes:
                lines.append(f"    Changes: {', '.join(changes)}")
        return "\n".join(lines)

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with cycle count, control registers, timers and
            display statistics
        """
        state = self.state
        return {
            "variant": self.variant.value,
            "program_size": self._program_size,
            "cycles": state.cycle_count,
            "halted": state.halted,
            "pc": state.pc,
            "index": state.index,
            "registers": self.dump_registers(),
            "delay_timer": state.delay_timer,
            "sound_timer": state.sound_timer,
            "stack_depth": state.sp,
            "lit_pixels": self.lit_pixel_count(),
            "display_size": (DISPLAY_WIDTH, DISPLAY_HEIGHT),
            "errors": [e.error for e in self.trace if e.error],
        }
