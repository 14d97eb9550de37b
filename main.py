#!/usr/bin/env python3
"""CHIP-8 Command Line Interface.

Run CHIP-8 program images with the chip8-vm engine and print the screen.

Usage:
    python main.py --rom roms/IBM_Logo.ch8 --steps 200
    python main.py --hex "6105 6203 8124" --trace
"""

import argparse
import logging
import random
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from chip8_vm import Chip8, Chip8Error
from chip8_vm.decode import disassemble
from chip8_vm.screen import lit_count, render_text
from chip8_vm.state import PROGRAM_START, program_from_hex


def parse_keys(text: str) -> list:
    """Parse a comma separated list of hex key names (e.g. "1,A,f")."""
    keys = []
    for part in text.split(","):
        part = part.strip()
        if part:
            keys.append(int(part, 16))
    return keys


def main():
    parser = argparse.ArgumentParser(
        description="chip8-vm: CHIP-8 Virtual Machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a ROM for 200 steps and show the screen
    python main.py --rom roms/IBM_Logo.ch8 --steps 200

    # Run inline hex with a full trace
    python main.py --hex "6105 6203 8124" --trace

    # Disassemble a ROM without running it
    python main.py --rom roms/IBM_Logo.ch8 --list

    # Hold keys 1 and A down for the whole run
    python main.py --rom game.ch8 --keys 1,A
        """
    )

    parser.add_argument(
        "--rom", "-r",
        type=str,
        help="Path to program image file (.ch8)"
    )
    parser.add_argument(
        "--hex", "-x",
        type=str,
        help="Inline program as hex words (e.g. \"6105 6203 8124\")"
    )
    parser.add_argument(
        "--steps", "-s",
        type=int,
        default=Chip8.DEFAULT_MAX_STEPS,
        help=f"Maximum steps to execute. Default: {Chip8.DEFAULT_MAX_STEPS}"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the RND instruction (deterministic runs)"
    )
    parser.add_argument(
        "--keys", "-k",
        type=str,
        default="",
        help="Comma separated hex keys held down during the run (e.g. 1,A)"
    )
    parser.add_argument(
        "--list", "-l",
        action="store_true",
        help="Print a disassembly listing and exit"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print full execution trace"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (final registers only)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging of every step"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    # Validate arguments
    if not args.rom and not args.hex:
        parser.error("Either --rom or --hex is required")

    try:
        keys = parse_keys(args.keys)
    except ValueError:
        parser.error(f"Invalid --keys value: {args.keys}")

    rng = random.Random(args.seed) if args.seed is not None else None
    cpu = Chip8(rng=rng, trace_enabled=args.trace, max_steps=args.steps)

    # Load program
    try:
        if args.rom:
            rom_path = Path(args.rom)
            if not rom_path.exists():
                print(f"Error: ROM file not found: {args.rom}")
                return 1
            cpu.load_rom(rom_path)
            if not args.quiet:
                print(f"Loading program: {args.rom}")
        else:
            cpu.load_program(program_from_hex(args.hex))
            if not args.quiet:
                print("Running inline program")
    except (OSError, ValueError) as e:
        # ProgramLoadError is a ValueError, as is malformed hex
        print(f"Load error: {e}")
        return 1

    if args.list:
        for entry in disassemble(cpu.state.memory, PROGRAM_START, cpu.state.program_size):
            print(entry)
        print(f"Program Size = {cpu.state.program_size}")
        return 0

    for key in keys:
        try:
            cpu.set_key(key, True)
        except ValueError as e:
            parser.error(str(e))

    # Run
    if not args.quiet:
        print("-" * 66)
        print("Executing...")
        print("-" * 66)

    failed = False
    try:
        cpu.run_for(args.steps)
    except Chip8Error as e:
        print(f"Execution error: {e}")
        failed = True

    # Output
    if args.trace:
        cpu.print_trace()
    elif not args.quiet:
        print(render_text(cpu.get_pixels()))
        print()
        summary = cpu.get_summary()
        print(f"Cycles: {summary['cycles']}")
        print(f"Halted: {summary['halted']}")
        print(f"Still runnable: {summary['can_continue']}")
        print(f"PC: {summary['pc']:#05x}  I: {summary['index_register']:#05x}")
        print(f"Registers: {summary['registers']}")
        print(f"Timers: {summary['timers']}")
        print(f"Lit pixels: {lit_count(cpu.get_pixels())}")
    else:
        # Quiet mode - just print nonzero registers
        regs = cpu.dump_registers()
        for reg, value in regs.items():
            if value != 0:
                print(f"{reg}={value}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
