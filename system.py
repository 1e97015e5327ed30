"""
CHIP-8 Host System
==================
Wires together:
  - one Machine (chip8.py)
  - a frontend (display.py) that owns the window, tone and keyboard
  - a paced run loop: instructions at ``ips`` per second, timers at
    ``timer_hz`` (60 Hz on real hardware)

Frames run a whole number of instructions each.  The remainder of
``ips / timer_hz`` is carried to the next frame, so over one second the
machine executes exactly ``ips`` instructions.

Reloading the ROM is an explicit state transition.  request_reload()
moves the system to AWAITING_RELOAD; the next frame resets the machine,
loads the image again and returns to RUNNING.  A ROM that came from a
file is read from disk again, so a rebuilt image is picked up.
"""

from __future__ import annotations
import enum
import os
import sys
import time
from typing import Optional, TYPE_CHECKING

from chip8 import Machine, LoadError, SCREEN_W, SCREEN_H

if TYPE_CHECKING:
    from display import Frontend

DEFAULT_IPS = 700
DEFAULT_TIMER_HZ = 60


class HostState(enum.Enum):
    RUNNING = "running"
    AWAITING_RELOAD = "awaiting-reload"


def read_rom(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class Chip8System:
    """
    A Machine plus everything the host has to drive it: ROM bookkeeping,
    the reload state machine, frame slicing and wall-clock pacing.
    """

    def __init__(self, machine: Optional[Machine] = None,
                 ips: int = DEFAULT_IPS,
                 timer_hz: int = DEFAULT_TIMER_HZ):
        if ips < 1 or timer_hz < 1:
            raise ValueError("ips and timer_hz must be positive")
        self.machine = machine if machine is not None else Machine()
        self.ips = ips
        self.timer_hz = timer_hz
        self.state = HostState.RUNNING

        self.rom: Optional[bytes] = None
        self.rom_name: str = ""
        self.rom_path: Optional[str] = None
        self.test_pattern = False
        self.frame_count = 0
        self._step_credit = 0   # in units of 1/timer_hz instructions

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_rom(self, data: bytes | bytearray, name: str = "<memory>"):
        """Reset the machine and load *data*; remembered for reloads."""
        data = bytes(data)
        self.machine.reset()
        self.machine.load_program(data)
        self.rom = data
        self.rom_name = name
        self.rom_path = None
        self.test_pattern = False
        self._step_credit = 0
        self.state = HostState.RUNNING

    def load_rom_file(self, path: str):
        """Load a ROM image from disk.  Reloads read *path* again."""
        self.load_rom(read_rom(path), name=os.path.basename(path))
        self.rom_path = path

    def show_test_pattern(self):
        """No-ROM mode: paint a 1-pixel checkerboard and run nothing."""
        m = self.machine
        m.reset()
        for y in range(SCREEN_H):
            for x in range(SCREEN_W):
                m.gfx[x + y * SCREEN_W] = (x + y) & 1
        m.display_dirty = True
        self.test_pattern = True

    # -----------------------------------------------------------------
    #  Reload state machine
    # -----------------------------------------------------------------

    def request_reload(self):
        if self.rom is None:
            return
        self.state = HostState.AWAITING_RELOAD

    def _apply_reload(self):
        data = self.rom
        if self.rom_path is not None:
            try:
                data = read_rom(self.rom_path)
            except OSError as e:
                print(f"[chip8] reload: {e}; keeping the loaded image",
                      file=sys.stderr)
        self.machine.reset()
        try:
            self.machine.load_program(data)
        except LoadError as e:
            print(f"[chip8] reload: {e}; keeping the loaded image",
                  file=sys.stderr)
            data = self.rom
            self.machine.load_program(data)
        self.rom = data
        self._step_credit = 0
        self.state = HostState.RUNNING

    # -----------------------------------------------------------------
    #  Execution
    # -----------------------------------------------------------------

    def run_frame(self) -> int:
        """Run one timer period's worth of instructions.

        Returns the number of instructions executed.  MachineError
        propagates with the machine left at the failing instruction.
        """
        if self.state is HostState.AWAITING_RELOAD:
            self._apply_reload()
        self.frame_count += 1

        m = self.machine
        if self.test_pattern:
            m.display_dirty = True
            return 0

        self._step_credit += self.ips
        n = self._step_credit // self.timer_hz
        self._step_credit -= n * self.timer_hz
        for _ in range(n):
            m.step()
        if not m.couple_timers:
            m.tick_timers()
        return n

    def run(self, frontend: "Frontend", max_frames: Optional[int] = None,
            pace: bool = True) -> int:
        """Drive the machine until the frontend quits or max_frames.

        Per frame: poll input, run_frame(), repaint if dirty, follow the
        sound timer with the tone.  Returns the number of frames run.
        """
        period = 1.0 / self.timer_hz
        frames = 0
        deadline = time.perf_counter()
        try:
            while max_frames is None or frames < max_frames:
                if not frontend.poll(self):
                    break
                self.run_frame()

                m = self.machine
                if m.display_dirty:
                    frontend.present(m)
                    m.clear_dirty()
                frontend.set_tone(m.sound_timer > 0)
                frames += 1

                if pace:
                    deadline += period
                    delay = deadline - time.perf_counter()
                    if delay > 0:
                        time.sleep(delay)
                    else:
                        # fell behind, restart the schedule from now
                        deadline = time.perf_counter()
        finally:
            frontend.set_tone(False)
        return frames

    # -----------------------------------------------------------------
    #  Introspection
    # -----------------------------------------------------------------

    def dump_state(self) -> str:
        rom = self.rom_name or ("<test pattern>" if self.test_pattern
                                else "<none>")
        lines = [
            f"  ROM: {rom}  state: {self.state.value}  "
            f"frames: {self.frame_count}  steps: {self.machine.cycle_count}",
            self.machine.dump_regs(),
        ]
        return "\n".join(lines)
