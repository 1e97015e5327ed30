#!/usr/bin/env python3
"""
CHIP-8 Emulator CLI
====================
Runs a ROM in a pygame window (or headless), pacing instructions against
the wall clock and the timers at 60 Hz.

With no ROM the window shows a checkerboard test pattern, which is a
quick way to check the display and scale without a program.

Usage:
  python cli.py [ROM] [--ips N] [--scale N] [--sprite-mode wrap|clip]
                [--couple-timers] [--seed N] [--tone HZ]
                [--headless] [--max-frames N] [--verbose]
"""

from __future__ import annotations
import argparse
import random
import sys
from typing import Optional

from chip8 import (Machine, LoadError, MachineError, SPRITE_MODES,
                   SPRITE_WRAP)
from system import Chip8System, DEFAULT_IPS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CHIP-8 Emulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --ips 1000 --scale 12\n"
               "  python cli.py test.ch8 --headless --max-frames 600\n"
               "  python cli.py                # checkerboard test pattern\n"
               "\n"
               "Keys: 1234/QWER/ASDF/ZXCV = keypad, F1 = reload, ESC = quit\n"
    )
    parser.add_argument("rom", nargs="?", default=None,
                        help="ROM image to run (omit for the test pattern)")
    parser.add_argument("--ips", type=int, default=DEFAULT_IPS,
                        help=f"Instructions per second (default: {DEFAULT_IPS})")
    parser.add_argument("--scale", type=int, default=10, metavar="N",
                        help="Pixel scale factor for the window (default: 10)")
    parser.add_argument("--sprite-mode", choices=SPRITE_MODES,
                        default=SPRITE_WRAP,
                        help="Sprite pixels past the screen edge wrap or clip "
                             "(default: wrap)")
    parser.add_argument("--couple-timers", action="store_true",
                        help="Count timers down once per instruction instead "
                             "of at 60 Hz")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the RND instruction")
    parser.add_argument("--tone", type=int, default=440, metavar="HZ",
                        help="Beep frequency (default: 440)")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window or audio")
    parser.add_argument("--max-frames", type=int, default=None, metavar="N",
                        help="Stop after N frames (1/60 s each)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print key presses and the final machine state")
    return parser


def build_system(args: argparse.Namespace) -> Chip8System:
    """Machine and host configured from parsed arguments."""
    machine = Machine(sprite_mode=args.sprite_mode,
                      couple_timers=args.couple_timers,
                      rng=random.Random(args.seed))
    return Chip8System(machine, ips=args.ips)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        sys_emu = build_system(args)
    except ValueError as e:
        print(f"[chip8] {e}", file=sys.stderr)
        return 2

    if args.rom is None:
        print("[chip8] No ROM provided, showing test pattern")
        sys_emu.show_test_pattern()
    else:
        try:
            sys_emu.load_rom_file(args.rom)
        except OSError as e:
            print(f"[chip8] cannot read ROM: {e}", file=sys.stderr)
            return 1
        except LoadError as e:
            print(f"[chip8] cannot load '{args.rom}': {e}", file=sys.stderr)
            return 1
        print(f"[chip8] Loaded {len(sys_emu.rom)} bytes from '{args.rom}'")

    if args.headless:
        from display import HeadlessDisplay
        frontend = HeadlessDisplay()
    else:
        try:
            import pygame
            from display import PygameFrontend
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame",
                  file=sys.stderr)
            return 1
        frontend = PygameFrontend(scale=args.scale,
                                  tone_hz=args.tone,
                                  verbose=args.verbose)
        try:
            frontend.start()
        except pygame.error as e:
            print(f"[display] cannot open window: {e}", file=sys.stderr)
            frontend.stop()
            return 1

    try:
        sys_emu.run(frontend, max_frames=args.max_frames,
                    pace=not args.headless)
    except MachineError as e:
        print(f"[chip8] machine error: {e}", file=sys.stderr)
        print(sys_emu.dump_state(), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
    finally:
        frontend.stop()

    if args.verbose:
        print(sys_emu.dump_state())
    return 0


if __name__ == "__main__":
    sys.exit(main())
