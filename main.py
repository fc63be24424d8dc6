#!/usr/bin/env python3
"""chip8-vm Command Line Interface.

Run CHIP-8 ROMs headless or in a window.

Usage:
    python main.py --rom roms/pong.ch8 --display
    python main.py --example bcd --cycles 100 --screen
    python main.py --rom roms/pong.ch8 --disassemble
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from chip8_vm import Chip8Error, Variant, VirtualMachine, disassemble
from chip8_vm.config import DEFAULT_PIXEL_SIZE, DEFAULT_SPEED, MAX_SPEED, FrontendSettings
from chip8_vm.keymap import parse_key_list
from chip8_vm.programs import EXAMPLE_ROMS


def configure_logging(verbose: bool, quiet: bool) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s", stream=sys.stderr)


def main():
    parser = argparse.ArgumentParser(
        description="chip8-vm: CHIP-8 Virtual Machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Play a ROM in a window at triple speed
    python main.py --rom roms/pong.ch8 --display --speed 3

    # Run a built-in example headless and print the screen
    python main.py --example hex-digits --screen

    # Trace the first 50 cycles of a ROM with key 5 held down
    python main.py --rom roms/pong.ch8 --cycles 50 --keys 5 --trace

    # List a ROM's instructions
    python main.py --rom roms/pong.ch8 --disassemble
        """
    )

    parser.add_argument(
        "--rom", "-r",
        type=str,
        help="Path to ROM file (.ch8)"
    )
    parser.add_argument(
        "--example", "-e",
        choices=sorted(EXAMPLE_ROMS),
        help="Run a built-in example program"
    )
    parser.add_argument(
        "--eti",
        action="store_true",
        help="Load at 0x600 as on the ETI 660"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on ROMs too large for memory instead of truncating"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the random number source (RND)"
    )
    parser.add_argument(
        "--cycles", "-c",
        type=int,
        default=1000,
        help="Headless mode: maximum cycles to run. Default: 1000"
    )
    parser.add_argument(
        "--keys",
        type=str,
        default="",
        help="Headless mode: keypad keys held down, e.g. '5,A'"
    )
    parser.add_argument(
        "--no-idle-stop",
        action="store_true",
        help="Headless mode: keep running after a jump-to-self"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print full execution trace"
    )
    parser.add_argument(
        "--screen", "-s",
        action="store_true",
        help="Print the display after running"
    )
    parser.add_argument(
        "--disassemble", "-d",
        action="store_true",
        help="Print a disassembly of the ROM and exit"
    )
    parser.add_argument(
        "--display",
        action="store_true",
        help="Run in a window (requires pygame)"
    )
    parser.add_argument(
        "--speed",
        type=int,
        default=DEFAULT_SPEED,
        help=f"Window mode: cycles per 60 Hz tick, 0-{MAX_SPEED}. Default: {DEFAULT_SPEED}"
    )
    parser.add_argument(
        "--pixel-size",
        type=int,
        default=DEFAULT_PIXEL_SIZE,
        help=f"Window mode: screen pixels per CHIP-8 pixel. Default: {DEFAULT_PIXEL_SIZE}"
    )
    parser.add_argument(
        "--rainbow",
        action="store_true",
        help="Window mode: cycle the pixel colour"
    )
    parser.add_argument(
        "--sound",
        action="append",
        default=[],
        metavar="FILE",
        help="Window mode: audio file played when the sound timer starts (up to 3)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log every executed instruction"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (final registers only)"
    )

    args = parser.parse_args()

    # Validate arguments
    if not args.rom and not args.example:
        parser.error("Either --rom or --example is required")
    if not 0 <= args.speed <= MAX_SPEED:
        parser.error(f"--speed must be between 0 and {MAX_SPEED}")
    try:
        keys = parse_key_list(args.keys)
    except ValueError as e:
        parser.error(str(e))

    configure_logging(args.verbose, args.quiet)

    # Read program
    if args.rom:
        rom_path = Path(args.rom)
        if not rom_path.is_file():
            print(f"Error: ROM file not found: {args.rom}")
            return 1
        rom = rom_path.read_bytes()
        name = args.rom
    else:
        rom = EXAMPLE_ROMS[args.example]
        name = f"example '{args.example}'"

    variant = Variant.ETI if args.eti else Variant.NORMAL

    if args.disassemble:
        for address, word, text in disassemble(rom, variant.program_start):
            print(f"{address:03X}: {word:04X}  {text}")
        return 0

    vm = VirtualMachine(variant=variant, seed=args.seed, trace=args.trace)
    try:
        vm.load(rom, strict=args.strict)
    except Chip8Error as e:
        print(f"Error: {e}")
        return 1

    if not args.quiet:
        print(f"Loading program: {name} ({len(rom)} bytes)")

    if args.display:
        from chip8_vm.frontend import Frontend

        settings = FrontendSettings(
            pixel_size=args.pixel_size,
            speed=args.speed,
            rainbow=args.rainbow,
        )
        try:
            Frontend(vm, settings, sound_files=args.sound).run()
        except Chip8Error as e:
            print(f"Execution error: {e}")
            return 1
        return 0

    # Run headless
    if not args.quiet:
        print("-" * 60)
        print("Executing...")
        print("-" * 60)

    exit_code = 0
    try:
        vm.run(args.cycles, keys=keys, stop_on_idle=not args.no_idle_stop)
    except Chip8Error as e:
        print(f"Execution error: {e}")
        exit_code = 1

    # Output
    if args.trace:
        print(vm.format_trace())
    if args.screen:
        print(vm.render_text())

    if not args.quiet:
        print()
        summary = vm.get_summary()
        print(f"Cycles: {summary['cycles']}")
        print(f"Halted: {summary['halted']}")
        print(f"PC: {summary['pc']:#05x}  I: {summary['index']:#05x}  "
              f"Stack depth: {summary['stack_depth']}")
        print(f"Timers: DT={summary['delay_timer']} ST={summary['sound_timer']}")
        print(f"Registers: {summary['registers']}")
        print(f"Lit pixels: {summary['lit_pixels']}")
    else:
        # Quiet mode - just print nonzero registers
        regs = vm.dump_registers()
        for reg in sorted(regs.keys()):
            if regs[reg] != 0:
                print(f"{reg}={regs[reg]}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
