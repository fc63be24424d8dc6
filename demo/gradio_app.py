"""chip8-vm Interactive Demo.

A Gradio web interface for running CHIP-8 programs and inspecting the
machine afterwards.

Usage:
    cd /path/to/chip8-vm
    python demo/gradio_app.py

Features:
    - Run a built-in example or an uploaded ROM
    - Hold keypad keys down for the whole run
    - See the final display, registers and timers
    - Step-by-step execution trace and disassembly
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from chip8_vm import Chip8Error, Variant, VirtualMachine, disassemble
from chip8_vm.keymap import parse_key_list
from chip8_vm.programs import EXAMPLE_ROMS


TRACE_LIMIT = 200


# =============================================================================
# Execution Functions
# =============================================================================

def read_rom(example: str, upload) -> bytes:
    """Pick the uploaded ROM if there is one, else the selected example."""
    if upload is not None:
        if isinstance(upload, bytes):
            return upload
        return Path(upload).read_bytes()
    return EXAMPLE_ROMS.get(example, b"")


def run_program(example: str, upload, cycles: int, keys: str, seed: int, eti: bool) -> tuple:
    """Run a ROM and return results.

    Args:
        example: Name of a built-in example
        upload: Uploaded ROM (path or bytes), overrides the example
        cycles: Maximum cycles to run
        keys: Keypad keys held down, comma separated
        seed: Random seed for RND
        eti: Load at 0x600

    Returns:
        Tuple of (summary_text, screen_text, registers_text, trace_text)
    """
    try:
        rom = read_rom(example, upload)
        if not rom:
            return "Error: No program provided", "", "", ""

        vm = VirtualMachine(
            variant=Variant.ETI if eti else Variant.NORMAL,
            seed=int(seed),
            trace=True,
            trace_limit=TRACE_LIMIT,
        )
        vm.load(rom)

        try:
            vm.run(int(cycles), keys=parse_key_list(keys))
        except Chip8Error as e:
            error_msg = str(e)
        else:
            error_msg = None

        # Format summary
        summary = vm.get_summary()
        summary_lines = [
            "EXECUTION SUMMARY",
            "=" * 40,
            f"Program: {summary['program_size']} bytes ({summary['variant']})",
            f"Cycles: {summary['cycles']}",
            f"Halted: {'Yes' if summary['halted'] else 'No'}",
            f"PC: {summary['pc']:#05x}",
            f"Lit pixels: {summary['lit_pixels']}",
        ]
        if error_msg:
            summary_lines.append(f"\nRuntime: {error_msg}")
        summary_text = "\n".join(summary_lines)

        screen_text = vm.render_text(on="█", off=" ")

        # Format registers
        reg_lines = [
            "FINAL REGISTERS",
            "=" * 30,
        ]
        for reg, value in vm.dump_registers().items():
            marker = " *" if value != 0 else ""
            reg_lines.append(f"  {reg}: {value:>3} ({value:#04x}){marker}")
        reg_lines.append("")
        reg_lines.append("CONTROL")
        reg_lines.append("-" * 30)
        reg_lines.append(f"  I:  {summary['index']:#05x}")
        reg_lines.append(f"  SP: {summary['stack_depth']}")
        reg_lines.append(f"  DT: {summary['delay_timer']}")
        reg_lines.append(f"  ST: {summary['sound_timer']}")
        registers_text = "\n".join(reg_lines)

        trace_text = vm.format_trace()
        if summary["cycles"] > TRACE_LIMIT:
            trace_text = f"(last {TRACE_LIMIT} of {summary['cycles']} cycles)\n" + trace_text

        return summary_text, screen_text, registers_text, trace_text

    except Exception as e:
        return f"Error: {str(e)}", "", "", ""


def show_disassembly(example: str, upload, eti: bool) -> str:
    rom = read_rom(example, upload)
    start = Variant.ETI.program_start if eti else Variant.NORMAL.program_start
    return "\n".join(
        f"{address:03X}: {word:04X}  {text}" for address, word, text in disassemble(rom, start)
    )


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="chip8-vm Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # chip8-vm: CHIP-8 Virtual Machine

        Runs a CHIP-8 program for a fixed number of cycles and shows the
        machine state it leaves behind.

        **Pipeline**: `fetch -> tick timers -> decode -> key -> registry -> execute`
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Program")

                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_ROMS.keys()),
                    value="hex-digits",
                    label="Built-in Example"
                )
                rom_upload = gr.File(
                    label="Or upload a ROM (.ch8)",
                    type="binary"
                )

                gr.Markdown("### Settings")

                with gr.Row():
                    cycles = gr.Slider(
                        minimum=1,
                        maximum=20000,
                        value=1000,
                        step=1,
                        label="Max Cycles"
                    )
                    seed = gr.Number(value=0, precision=0, label="Random Seed")

                keys_input = gr.Textbox(
                    value="",
                    label="Keys Held",
                    placeholder="e.g. 5,A"
                )
                eti_checkbox = gr.Checkbox(value=False, label="ETI 660 (load at 0x600)")

                with gr.Row():
                    run_button = gr.Button("Run Program", variant="primary")
                    disasm_button = gr.Button("Disassemble")

            with gr.Column(scale=3):
                screen_output = gr.Textbox(
                    label="Display (64x32)",
                    lines=32,
                    max_lines=32,
                    interactive=False
                )
                with gr.Row():
                    summary_output = gr.Textbox(
                        label="Summary",
                        lines=10,
                        interactive=False
                    )
                    registers_output = gr.Textbox(
                        label="Final Registers",
                        lines=10,
                        interactive=False
                    )

                trace_output = gr.Textbox(
                    label="Execution Trace / Disassembly",
                    lines=20,
                    interactive=False
                )

        with gr.Accordion("Keypad Layout", open=False):
            gr.Markdown("""
            | | | | |
            |---|---|---|---|
            | 1 | 2 | 3 | C |
            | 4 | 5 | 6 | D |
            | 7 | 8 | 9 | E |
            | A | 0 | B | F |
            """)

        run_button.click(
            fn=run_program,
            inputs=[example_dropdown, rom_upload, cycles, keys_input, seed, eti_checkbox],
            outputs=[summary_output, screen_output, registers_output, trace_output]
        )

        disasm_button.click(
            fn=show_disassembly,
            inputs=[example_dropdown, rom_upload, eti_checkbox],
            outputs=[trace_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
