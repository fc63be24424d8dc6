"""InstructionSet: execution handlers for decoded CHIP-8 instructions.

This module implements the registry pattern for the instruction set: each
operation key emitted by the decoder maps to exactly one handler, and the
registry is frozen once every handler is registered.

Handlers mutate the MachineState in place and are responsible for their own
PC update; nothing advances PC after a handler returns.

Handler signature:
    handler(state, params, random_byte) -> None

Flag-writing ALU handlers read both operands before writing anything, write
VF, then write Vx. When x is F the result therefore replaces the flag.
"""

from typing import Any, Callable, Dict, Optional

from .decode import VALID_KEYS
from .state import (
    ADDRESS_MASK,
    DISPLAY_HEIGHT,
    DISPLAY_WIDTH,
    FLAG_REGISTER,
    FONT_GLYPH_SIZE,
    FONT_START,
    MachineState,
)

RandomSource = Callable[[], int]
Handler = Callable[[MachineState, Dict[str, int], RandomSource], None]


class InstructionSet:
    """Frozen registry of instruction handlers.

    Attributes:
        _handlers: Dictionary mapping operation keys to handler functions
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self):
        """Initialize registry with all CHIP-8 instruction handlers."""
        self._handlers: Dict[str, Handler] = {}
        self._frozen = False
        self._register_all_handlers()
        self.freeze()

    def _register_all_handlers(self) -> None:
        # Flow control
        self.register("OP_SYS", self._op_sys)
        self.register("OP_CLS", self._op_cls)
        self.register("OP_RET", self._op_ret)
        self.register("OP_JP", self._op_jp)
        self.register("OP_CALL", self._op_call)
        self.register("OP_JP_V0", self._op_jp_v0)

        # Conditional skips
        self.register("OP_SE_IMM", self._op_se_imm)
        self.register("OP_SNE_IMM", self._op_sne_imm)
        self.register("OP_SE_REG", self._op_se_reg)
        self.register("OP_SNE_REG", self._op_sne_reg)
        self.register("OP_SKP", self._op_skp)
        self.register("OP_SKNP", self._op_sknp)

        # Register loads and arithmetic
        self.register("OP_LD_IMM", self._op_ld_imm)
        self.register("OP_ADD_IMM", self._op_add_imm)
        self.register("OP_LD_REG", self._op_ld_reg)
        self.register("OP_OR", self._op_or)
        self.register("OP_AND", self._op_and)
        self.register("OP_XOR", self._op_xor)
        self.register("OP_ADD_REG", self._op_add_reg)
        self.register("OP_SUB", self._op_sub)
        self.register("OP_SHR", self._op_shr)
        self.register("OP_SUBN", self._op_subn)
        self.register("OP_SHL", self._op_shl)
        self.register("OP_RND", self._op_rnd)

        # Address register and memory
        self.register("OP_LD_I", self._op_ld_i)
        self.register("OP_ADD_I", self._op_add_i)
        self.register("OP_LD_F", self._op_ld_f)
        self.register("OP_LD_B", self._op_ld_b)
        self.register("OP_LD_MEM_VX", self._op_ld_mem_vx)
        self.register("OP_LD_VX_MEM", self._op_ld_vx_mem)

        # Timers and keys
        self.register("OP_LD_VX_DT", self._op_ld_vx_dt)
        self.register("OP_LD_DT_VX", self._op_ld_dt_vx)
        self.register("OP_LD_ST_VX", self._op_ld_st_vx)
        self.register("OP_LD_VX_K", self._op_ld_vx_k)

        # Display
        self.register("OP_DRW", self._op_drw)

    def register(self, key: str, handler: Handler) -> None:
        """Register an instruction handler.

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered or not a decoder key
        """
        if self._frozen:
            raise RuntimeError("Cannot register handlers: registry is frozen")
        if key in self._handlers:
            raise ValueError(f"Handler already registered: {key}")
        if key not in VALID_KEYS:
            raise ValueError(f"Not a decodable operation: {key}")
        self._handlers[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def get_valid_keys(self) -> set:
        return set(self._handlers.keys())

    def execute(
        self,
        state: MachineState,
        key: str,
        params: Dict[str, Any],
        random_byte: RandomSource,
    ) -> None:
        """Execute one decoded instruction against the state.

        Args:
            state: Machine state, mutated in place
            key: Operation key
            params: Instruction operands
            random_byte: Source of random bytes for RND

        Raises:
            KeyError: If key not in registry
        """
        if key not in self._handlers:
            raise KeyError(f"Unknown operation key: {key}")

        self._handlers[key](state, params, random_byte)

        # Always count the cycle once the handler has run
        state.cycle_count += 1

    # =========================================================================
    # Flow Control
    # =========================================================================

    def _op_sys(self, state, params, random_byte) -> None:
        """0nnn - SYS addr. Machine code routines are not emulated."""
        state.pc += 2

    def _op_cls(self, state, params, random_byte) -> None:
        """00E0 - CLS. Clear the display."""
        state.clear_display()
        state.pc += 2

    def _op_ret(self, state, params, random_byte) -> None:
        """00EE - RET. Return to the instruction after the matching CALL."""
        state.pc = state.pop() + 2

    def _op_jp(self, state, params, random_byte) -> None:
        """1nnn - JP addr."""
        state.pc = params["nnn"]

    def _op_call(self, state, params, random_byte) -> None:
        """2nnn - CALL addr. The CALL's own address is pushed; RET adds 2."""
        state.push(state.pc)
        state.pc = params["nnn"]

    def _op_jp_v0(self, state, params, random_byte) -> None:
        """Bnnn - JP V0, addr."""
        state.pc = (params["nnn"] + state.registers[0]) & ADDRESS_MASK

    # =========================================================================
    # Conditional Skips
    # =========================================================================

    @staticmethod
    def _skip_if(state: MachineState, condition: bool) -> None:
        state.pc += 4 if condition else 2

    def _op_se_imm(self, state, params, random_byte) -> None:
        """3xkk - SE Vx, byte."""
        self._skip_if(state, state.registers[params["x"]] == params["kk"])

    def _op_sne_imm(self, state, params, random_byte) -> None:
        """4xkk - SNE Vx, byte."""
        self._skip_if(state, state.registers[params["x"]] != params["kk"])

    def _op_se_reg(self, state, params, random_byte) -> None:
        """5xy0 - SE Vx, Vy."""
        regs = state.registers
        self._skip_if(state, regs[params["x"]] == regs[params["y"]])

    def _op_sne_reg(self, state, params, random_byte) -> None:
        """9xy0 - SNE Vx, Vy."""
        regs = state.registers
        self._skip_if(state, regs[params["x"]] != regs[params["y"]])

    def _op_skp(self, state, params, random_byte) -> None:
        """Ex9E - SKP Vx. Skip if the key numbered by Vx's low nibble is down."""
        key = state.registers[params["x"]] & 0xF
        self._skip_if(state, state.keys[key])

    def _op_sknp(self, state, params, random_byte) -> None:
        """ExA1 - SKNP Vx. Skip if the key numbered by Vx's low nibble is up."""
        key = state.registers[params["x"]] & 0xF
        self._skip_if(state, not state.keys[key])

    # =========================================================================
    # Register Loads and Arithmetic
    # =========================================================================

    def _op_ld_imm(self, state, params, random_byte) -> None:
        """6xkk - LD Vx, byte."""
        state.registers[params["x"]] = params["kk"]
        state.pc += 2

    def _op_add_imm(self, state, params, random_byte) -> None:
        """7xkk - ADD Vx, byte. Wraps at 8 bits and leaves VF alone."""
        x = params["x"]
        state.registers[x] = (state.registers[x] + params["kk"]) & 0xFF
        state.pc += 2

    def _op_ld_reg(self, state, params, random_byte) -> None:
        """8xy0 - LD Vx, Vy."""
        state.registers[params["x"]] = state.registers[params["y"]]
        state.pc += 2

    def _op_or(self, state, params, random_byte) -> None:
        """8xy1 - OR Vx, Vy."""
        regs = state.registers
        regs[params["x"]] = regs[params["x"]] | regs[params["y"]]
        state.pc += 2

    def _op_and(self, state, params, random_byte) -> None:
        """8xy2 - AND Vx, Vy."""
        regs = state.registers
        regs[params["x"]] = regs[params["x"]] & regs[params["y"]]
        state.pc += 2

    def _op_xor(self, state, params, random_byte) -> None:
        """8xy3 - XOR Vx, Vy."""
        regs = state.registers
        regs[params["x"]] = regs[params["x"]] ^ regs[params["y"]]
        state.pc += 2

    @staticmethod
    def _write_with_flag(state: MachineState, x: int, result: int, flag: bool) -> None:
        state.registers[FLAG_REGISTER] = 1 if flag else 0
        state.registers[x] = result & 0xFF
        state.pc += 2

    def _op_add_reg(self, state, params, random_byte) -> None:
        """8xy4 - ADD Vx, Vy. VF = carry."""
        x = params["x"]
        total = state.registers[x] + state.registers[params["y"]]
        self._write_with_flag(state, x, total, total > 0xFF)

    def _op_sub(self, state, params, random_byte) -> None:
        """8xy5 - SUB Vx, Vy. VF = 1 if Vx > Vy (no borrow)."""
        x = params["x"]
        vx, vy = state.registers[x], state.registers[params["y"]]
        self._write_with_flag(state, x, vx - vy, vx > vy)

    def _op_shr(self, state, params, random_byte) -> None:
        """8xy6 - SHR Vx. VF = bit shifted out."""
        x = params["x"]
        vx = state.registers[x]
        self._write_with_flag(state, x, vx >> 1, vx & 0x1)

    def _op_subn(self, state, params, random_byte) -> None:
        """8xy7 - SUBN Vx, Vy. VF = 1 if Vy > Vx (no borrow)."""
        x = params["x"]
        vx, vy = state.registers[x], state.registers[params["y"]]
        self._write_with_flag(state, x, vy - vx, vy > vx)

    def _op_shl(self, state, params, random_byte) -> None:
        """8xyE - SHL Vx. VF = bit shifted out."""
        x = params["x"]
        vx = state.registers[x]
        self._write_with_flag(state, x, vx << 1, vx & 0x80)

    def _op_rnd(self, state, params, random_byte) -> None:
        """Cxkk - RND Vx, byte."""
        state.registers[params["x"]] = (random_byte() & 0xFF) & params["kk"]
        state.pc += 2

    # =========================================================================
    # Address Register and Memory
    # =========================================================================

    def _op_ld_i(self, state, params, random_byte) -> None:
        """Annn - LD I, addr."""
        state.index = params["nnn"]
        state.pc += 2

    def _op_add_i(self, state, params, random_byte) -> None:
        """Fx1E - ADD I, Vx. No flag; I wraps at 16 bits."""
        state.index = (state.index + state.registers[params["x"]]) & 0xFFFF
        state.pc += 2

    def _op_ld_f(self, state, params, random_byte) -> None:
        """Fx29 - LD F, Vx. Point I at the font glyph for digit Vx."""
        state.index = FONT_START + state.registers[params["x"]] * FONT_GLYPH_SIZE
        state.pc += 2

    def _op_ld_b(self, state, params, random_byte) -> None:
        """Fx33 - LD B, Vx. Store Vx as three decimal digits at I."""
        value = state.registers[params["x"]]
        state.write_byte(state.index, value // 100)
        state.write_byte(state.index + 1, (value // 10) % 10)
        state.write_byte(state.index + 2, value % 10)
        state.pc += 2

    def _op_ld_mem_vx(self, state, params, random_byte) -> None:
        """Fx55 - LD [I], Vx. Store V0 through Vx at I; I is unchanged."""
        for i in range(params["x"] + 1):
            state.write_byte(state.index + i, state.registers[i])
        state.pc += 2

    def _op_ld_vx_mem(self, state, params, random_byte) -> None:
        """Fx65 - LD Vx, [I]. Load V0 through Vx from I; I is unchanged."""
        for i in range(params["x"] + 1):
            state.registers[i] = state.read_byte(state.index + i)
        state.pc += 2

    # =========================================================================
    # Timers and Keys
    # =========================================================================

    def _op_ld_vx_dt(self, state, params, random_byte) -> None:
        """Fx07 - LD Vx, DT."""
        state.registers[params["x"]] = state.delay_timer
        state.pc += 2

    def _op_ld_dt_vx(self, state, params, random_byte) -> None:
        """Fx15 - LD DT, Vx."""
        state.delay_timer = state.registers[params["x"]]
        state.pc += 2

    def _op_ld_st_vx(self, state, params, random_byte) -> None:
        """Fx18 - LD ST, Vx."""
        state.sound_timer = state.registers[params["x"]]
        state.pc += 2

    def _op_ld_vx_k(self, state, params, random_byte) -> None:
        """Fx0A - LD Vx, K. Wait for a key press.

        Keys are scanned 0 to F. With none down, PC stays put so the same
        instruction runs again on the next step.
        """
        for key, pressed in enumerate(state.keys):
            if pressed:
                state.registers[params["x"]] = key
                state.pc += 2
                return

    # =========================================================================
    # Display
    # =========================================================================

    def _op_drw(self, state, params, random_byte) -> None:
        """Dxyn - DRW Vx, Vy, n. XOR an n-row sprite from I onto the screen.

        Coordinates wrap on both axes. VF is 1 if any lit pixel was erased
        anywhere in the sprite.
        """
        origin_x = state.registers[params["x"]]
        origin_y = state.registers[params["y"]]
        collision = False

        for row in range(params["n"]):
            sprite_byte = state.read_byte(state.index + row)
            y = (origin_y + row) % DISPLAY_HEIGHT
            for col in range(8):
                if sprite_byte & (0x80 >> col):
                    x = (origin_x + col) % DISPLAY_WIDTH
                    if state.flip_pixel(x, y):
                        collision = True

        state.registers[FLAG_REGISTER] = 1 if collision else 0
        state.pc += 2


# Shared registry instance
_registry: Optional[InstructionSet] = None


def get_registry() -> InstructionSet:
    """Get the shared, frozen InstructionSet.

    The registry holds no machine state, so every VM can share it.
    """
    global _registry
    if _registry is None:
        _registry = InstructionSet()
    return _registry
