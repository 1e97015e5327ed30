"""
CHIP-8 Frontends
=================
The host-side context object handed to ``Chip8System.run()``.  A frontend
owns everything platform specific: the pygame window, the audio device
and whether it is currently beeping, and the physical keyboard layout.

Keypad       Keyboard
+-+-+-+-+    +-+-+-+-+
|1|2|3|C|    |1|2|3|4|
+-+-+-+-+    +-+-+-+-+
|4|5|6|D|    |Q|W|E|R|
+-+-+-+-+ => +-+-+-+-+
|7|8|9|E|    |A|S|D|F|
+-+-+-+-+    +-+-+-+-+
|A|0|B|F|    |Z|X|C|V|
+-+-+-+-+    +-+-+-+-+

ESC or closing the window quits, F1 reloads the ROM.

Usage (programmatic):
    from display import PygameFrontend
    frontend = PygameFrontend(scale=10)
    frontend.start()
    system.run(frontend)
    frontend.stop()
"""

from __future__ import annotations

import sys
from collections import defaultdict, deque
from typing import TYPE_CHECKING

from chip8 import SCREEN_W, SCREEN_H

if TYPE_CHECKING:
    import numpy as np
    from chip8 import Machine
    from system import Chip8System

# Physical key for each keypad index 0x0..0xF
KEY_LAYOUT = "x123qweasdzc4rfv"

PIXEL_OFF = (0, 0, 0)
PIXEL_ON = (255, 255, 255)

TONE_HZ = 440
SAMPLE_RATE = 44100


def square_wave(tone_hz: int = TONE_HZ, sample_rate: int = SAMPLE_RATE,
                channels: int = 1, amplitude: int = 8192,
                duration: float = 0.1) -> "np.ndarray":
    """int16 square wave of roughly *duration* seconds, whole periods only.

    Returns shape (n,) for mono and (n, channels) otherwise, which is
    what pygame.sndarray.make_sound expects.
    """
    import numpy as np

    period = max(2, round(sample_rate / tone_hz))
    one = np.where(np.arange(period) < period // 2,
                   amplitude, -amplitude).astype(np.int16)
    reps = max(1, int(sample_rate * duration) // period)
    wave = np.tile(one, reps)
    if channels > 1:
        wave = np.ascontiguousarray(np.repeat(wave[:, None], channels, axis=1))
    return wave


def framebuffer_rgb(machine: "Machine") -> "np.ndarray":
    """Framebuffer as a (64, 32, 3) uint8 array in surfarray (x, y) order."""
    import numpy as np

    palette = np.array([PIXEL_OFF, PIXEL_ON], dtype=np.uint8)
    cells = np.frombuffer(machine.framebuffer, dtype=np.uint8)
    rows = cells.reshape(SCREEN_H, SCREEN_W)
    return palette[rows].transpose(1, 0, 2)


# ── Audio ────────────────────────────────────────────────────────────


class SquareWaveBeeper:
    """Looped square-wave tone through pygame.mixer."""

    def __init__(self, tone_hz: int = TONE_HZ, sample_rate: int = SAMPLE_RATE,
                 volume: float = 0.2):
        self.tone_hz = tone_hz
        self.sample_rate = sample_rate
        self.volume = volume
        self.playing = False
        self._sound = None

    def start(self) -> bool:
        """Open the audio device.  Returns False (silent) if none."""
        import pygame

        try:
            pygame.mixer.init(frequency=self.sample_rate, size=-16, channels=1)
        except pygame.error as e:
            print(f"[audio] no audio device, running silent: {e}",
                  file=sys.stderr)
            return False
        freq, _size, channels = pygame.mixer.get_init()
        self._sound = pygame.sndarray.make_sound(
            square_wave(self.tone_hz, freq, channels))
        self._sound.set_volume(self.volume)
        return True

    def set_tone(self, on: bool):
        if self._sound is None or on == self.playing:
            return
        if on:
            self._sound.play(loops=-1)
        else:
            self._sound.stop()
        self.playing = on

    def stop(self):
        import pygame

        self.set_tone(False)
        if self._sound is not None:
            self._sound = None
            pygame.mixer.quit()


# ── Frontends ────────────────────────────────────────────────────────


class Frontend:
    """What Chip8System.run() calls once per frame."""

    def start(self):
        pass

    def stop(self):
        pass

    def poll(self, system: "Chip8System") -> bool:
        """Forward pending input to *system*.  False means quit."""
        return True

    def present(self, machine: "Machine"):
        pass

    def set_tone(self, on: bool):
        pass


class PygameFrontend(Frontend):
    """pygame window, keyboard and tone for a CHIP-8 system."""

    def __init__(self, scale: int = 10, title: str = "CHIP-8",
                 tone_hz: int = TONE_HZ, verbose: bool = False):
        self.scale = max(1, scale)
        self.title = title
        self.verbose = verbose
        self.beeper = SquareWaveBeeper(tone_hz)
        self.key_map: dict[int, int] = {}
        self._screen = None
        self._fb_surface = None

    # -- public API -------------------------------------------------------

    def start(self):
        """Open the window and the audio device."""
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        self._screen = pygame.display.set_mode(
            (SCREEN_W * self.scale, SCREEN_H * self.scale))
        self._fb_surface = pygame.Surface((SCREEN_W, SCREEN_H))
        self.key_map = {getattr(pygame, "K_" + ch): i
                        for i, ch in enumerate(KEY_LAYOUT)}
        self._screen.fill(PIXEL_OFF)
        pygame.display.flip()
        self.beeper.start()

    def stop(self):
        import pygame

        self.beeper.stop()
        self._screen = None
        pygame.quit()

    @property
    def running(self) -> bool:
        return self._screen is not None

    def poll(self, system: "Chip8System") -> bool:
        import pygame

        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                return False
            if event.type not in (pygame.KEYDOWN, pygame.KEYUP):
                continue
            down = event.type == pygame.KEYDOWN
            if self.verbose:
                what = "pressed" if down else "released"
                print(f"[display] key {what}: {pygame.key.name(event.key)}")
            if down and event.key == pygame.K_ESCAPE:
                return False
            if down and event.key == pygame.K_F1:
                system.request_reload()
                continue
            idx = self.key_map.get(event.key)
            if idx is not None:
                system.machine.set_key(idx, down)
        return True

    def present(self, machine: "Machine"):
        import pygame

        pygame.surfarray.blit_array(self._fb_surface, framebuffer_rgb(machine))
        scaled = pygame.transform.scale(self._fb_surface,
                                        self._screen.get_size())
        self._screen.blit(scaled, (0, 0))
        pygame.display.flip()

    def set_tone(self, on: bool):
        self.beeper.set_tone(on)


class HeadlessDisplay(Frontend):
    """No-window frontend: replays scripted input, records output.

    Events are scheduled against the poll count (0 = first frame):
        ("key", index, pressed), ("reload",), ("quit",)

    Only the last *history* presented frames are kept; ``presents``
    counts all of them.
    """

    def __init__(self, history: int = 64):
        self.snapshots: deque[bytes] = deque(maxlen=max(1, history))
        self.presents = 0
        self.tone = False
        self.tone_changes: list[bool] = []
        self.polls = 0
        self._script: dict[int, list[tuple]] = defaultdict(list)

    def schedule(self, frame: int, *event):
        self._script[frame].append(tuple(event))

    def poll(self, system: "Chip8System") -> bool:
        events = self._script.pop(self.polls, [])
        self.polls += 1
        for event in events:
            kind = event[0]
            if kind == "quit":
                return False
            if kind == "reload":
                system.request_reload()
            elif kind == "key":
                system.machine.set_key(event[1], event[2])
            else:
                raise ValueError(f"unknown scripted event {event!r}")
        return True

    def present(self, machine: "Machine"):
        self.snapshots.append(bytes(machine.framebuffer))
        self.presents += 1

    def set_tone(self, on: bool):
        if on != self.tone:
            self.tone = on
            self.tone_changes.append(on)
