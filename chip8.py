"""
CHIP-8 Bytecode Interpreter
============================
A single-step interpreter for the CHIP-8 virtual machine: 4 KiB of memory,
sixteen 8-bit V registers, a 16-bit index register, a 16-entry call stack,
delay/sound countdown timers, a 16-key hex keypad and a 64x32 monochrome
framebuffer.

Every call to ``Machine.step()`` fetches one big-endian 16-bit word at PC,
switches on the high nibble (the instruction family) and applies exactly
one instruction.  All bounds checks run before anything is written, so an
instruction that raises leaves the machine as it was before the fetch.

Timers are not advanced by ``step()`` unless the machine is built with
``couple_timers=True``; the host calls ``tick_timers()`` at 60 Hz.
"""

from __future__ import annotations
import random
from typing import NamedTuple, Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE        = 0x1000   # 4 KiB address space
PROGRAM_START   = 0x200    # programs load (and PC starts) here
MAX_PROGRAM_SIZE = MEM_SIZE - PROGRAM_START

NUM_REGS        = 16
STACK_DEPTH     = 16
NUM_KEYS        = 16
VF              = 0xF      # flag register index

SCREEN_W        = 64
SCREEN_H        = 32
SCREEN_CELLS    = SCREEN_W * SCREEN_H

# Sprite edge policies (DXYN)
SPRITE_WRAP     = "wrap"   # pixels past an edge reappear on the other side
SPRITE_CLIP     = "clip"   # pixels past the right/bottom edge are dropped
SPRITE_MODES    = (SPRITE_WRAP, SPRITE_CLIP)

# Hex digit glyphs, 5 bytes each, resident at 0x000-0x04F
FONT_BASE       = 0x000
GLYPH_BYTES     = 5
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])
FONT_END        = FONT_BASE + len(FONTSET)

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for everything the interpreter raises."""
    pass

class LoadError(Chip8Error):
    """Program buffer rejected by load_program()."""
    pass

class MachineError(Chip8Error):
    """An instruction could not be executed.  Nothing was modified."""

    def __init__(self, message: str, pc: Optional[int] = None,
                 opcode: Optional[int] = None):
        self.pc = pc
        self.opcode = opcode
        if opcode is not None:
            message = f"{message} (opcode {opcode:#06x} @ {pc:#05x})"
        elif pc is not None:
            message = f"{message} (@ {pc:#05x})"
        super().__init__(message)

class InvalidOpcodeError(MachineError):
    pass

class MemoryBoundsError(MachineError):
    pass

class StackOverflowError(MachineError):
    pass

class StackUnderflowError(MachineError):
    pass

class AddressOutOfRangeError(MachineError):
    pass

class InvalidRegisterStateError(MachineError):
    pass

# ---------------------------------------------------------------------------
#  Decoder
# ---------------------------------------------------------------------------

class Instruction(NamedTuple):
    word: int     # raw 16-bit instruction
    family: int   # bits 12-15
    x: int        # bits 8-11
    y: int        # bits 4-7
    n: int        # bits 0-3
    kk: int       # bits 0-7
    nnn: int      # bits 0-11


def decode(word: int) -> Instruction:
    """Split a 16-bit instruction word into its operand fields."""
    word &= 0xFFFF
    return Instruction(
        word=word,
        family=(word >> 12) & 0xF,
        x=(word >> 8) & 0xF,
        y=(word >> 4) & 0xF,
        n=word & 0xF,
        kk=word & 0xFF,
        nnn=word & 0xFFF,
    )

# ---------------------------------------------------------------------------
#  Machine
# ---------------------------------------------------------------------------

class Machine:
    """CHIP-8 virtual machine, one instruction per step()."""

    def __init__(self, sprite_mode: str = SPRITE_WRAP,
                 couple_timers: bool = False,
                 rng: Optional[random.Random] = None):
        if sprite_mode not in SPRITE_MODES:
            raise ValueError(f"unknown sprite mode {sprite_mode!r}")
        self.sprite_mode = sprite_mode
        self.couple_timers = couple_timers
        self.rng = rng if rng is not None else random.Random()

        self.mem = bytearray(MEM_SIZE)
        self.v: list[int] = [0] * NUM_REGS
        self.index: int = 0          # I
        self.pc: int = PROGRAM_START
        self.stack: list[int] = [0] * STACK_DEPTH
        self.sp: int = 0

        self.delay_timer: int = 0
        self.sound_timer: int = 0

        self.keys: list[bool] = [False] * NUM_KEYS
        self.gfx = bytearray(SCREEN_CELLS)   # 0/1 per pixel, x + y*64
        self.display_dirty: bool = False

        self.cycle_count: int = 0

        self.reset()

    # -- Lifecycle --

    def reset(self):
        """Zero all state and reinstall the glyph sprites."""
        self.mem[:] = bytes(MEM_SIZE)
        self.mem[FONT_BASE:FONT_END] = FONTSET
        self.v = [0] * NUM_REGS
        self.index = 0
        self.pc = PROGRAM_START
        self.stack = [0] * STACK_DEPTH
        self.sp = 0
        self.delay_timer = 0
        self.sound_timer = 0
        self.keys = [False] * NUM_KEYS
        self.gfx[:] = bytes(SCREEN_CELLS)
        self.display_dirty = False
        self.cycle_count = 0

    def load_program(self, data: bytes | bytearray | memoryview):
        """Copy a program image into memory at 0x200.

        Only valid on a machine that has not executed anything since the
        last reset().  The rest of program space is zeroed so repeated
        loads of the same image produce identical state.
        """
        data = bytes(data)
        if not data:
            raise LoadError("program is empty")
        if len(data) > MAX_PROGRAM_SIZE:
            raise LoadError(f"program is {len(data)} bytes, "
                            f"limit is {MAX_PROGRAM_SIZE}")
        if self.cycle_count:
            raise LoadError("machine has already run; call reset() first")
        self.mem[PROGRAM_START:] = bytes(MAX_PROGRAM_SIZE)
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data

    # -- Host-facing I/O --

    def set_key(self, index: int, pressed: bool):
        if not 0 <= index < NUM_KEYS:
            raise ValueError(f"key index {index} outside 0..15")
        self.keys[index] = bool(pressed)

    @property
    def framebuffer(self) -> memoryview:
        """Read-only view of the 2048 pixel cells, row-major."""
        return memoryview(self.gfx).toreadonly()

    def pixel(self, x: int, y: int) -> int:
        return self.gfx[x + y * SCREEN_W]

    def clear_dirty(self):
        self.display_dirty = False

    def tick_timers(self):
        """Count both timers down by one, stopping at zero."""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    # -- Fetch --

    def fetch(self) -> int:
        """Read the big-endian word at PC without advancing it."""
        pc = self.pc
        if pc < PROGRAM_START or pc + 1 >= MEM_SIZE:
            raise MemoryBoundsError("PC outside program space", pc)
        return (self.mem[pc] << 8) | self.mem[pc + 1]

    def _error(self, cls: type, ins: Instruction, message: str) -> MachineError:
        return cls(message, self.pc, ins.word)

    # -- Step --

    def step(self):
        """Execute one instruction."""
        ins = decode(self.fetch())
        f = ins.family

        if   f == 0x0: self._exec_sys(ins)
        elif f == 0x1: self._exec_jp(ins)
        elif f == 0x2: self._exec_call(ins)
        elif f == 0x3: self._skip_if(self.v[ins.x] == ins.kk)
        elif f == 0x4: self._skip_if(self.v[ins.x] != ins.kk)
        elif f == 0x5: self._exec_skip_reg(ins, equal=True)
        elif f == 0x6:
            self.v[ins.x] = ins.kk
            self.pc += 2
        elif f == 0x7:
            self.v[ins.x] = (self.v[ins.x] + ins.kk) & 0xFF
            self.pc += 2
        elif f == 0x8: self._exec_alu(ins)
        elif f == 0x9: self._exec_skip_reg(ins, equal=False)
        elif f == 0xA:
            self.index = ins.nnn
            self.pc += 2
        elif f == 0xB: self._exec_jp_v0(ins)
        elif f == 0xC:
            self.v[ins.x] = self.rng.randrange(256) & ins.kk
            self.pc += 2
        elif f == 0xD: self._exec_draw(ins)
        elif f == 0xE: self._exec_key(ins)
        elif f == 0xF: self._exec_misc(ins)

        self.cycle_count += 1
        if self.couple_timers:
            self.tick_timers()

    # =====================================================================
    #  Family executors
    # =====================================================================

    def _skip_if(self, cond: bool):
        self.pc += 4 if cond else 2

    # -- 0x0: CLS / RET --
    def _exec_sys(self, ins: Instruction):
        if ins.word == 0x00E0:    # CLS
            self.gfx[:] = bytes(SCREEN_CELLS)
            self.display_dirty = True
            self.pc += 2
        elif ins.word == 0x00EE:  # RET
            if self.sp == 0:
                raise self._error(StackUnderflowError, ins,
                                  "RET with empty stack")
            self.sp -= 1
            self.pc = self.stack[self.sp] + 2
        else:
            # 0NNN machine-code calls are not supported
            raise self._error(InvalidOpcodeError, ins, "unknown 0x0 opcode")

    # -- 0x1: JP nnn --
    def _exec_jp(self, ins: Instruction):
        if ins.nnn >= MEM_SIZE:
            raise self._error(AddressOutOfRangeError, ins,
                              f"jump target {ins.nnn:#x}")
        self.pc = ins.nnn

    # -- 0x2: CALL nnn --
    def _exec_call(self, ins: Instruction):
        if self.sp == STACK_DEPTH:
            raise self._error(StackOverflowError, ins,
                              f"call depth exceeds {STACK_DEPTH}")
        self.stack[self.sp] = self.pc
        self.sp += 1
        self.pc = ins.nnn

    # -- 0x5 / 0x9: SE / SNE Vx, Vy --
    def _exec_skip_reg(self, ins: Instruction, equal: bool):
        if ins.n != 0:
            raise self._error(InvalidOpcodeError, ins,
                              "register skip needs low nibble 0")
        same = self.v[ins.x] == self.v[ins.y]
        self._skip_if(same if equal else not same)

    # -- 0x8: register ALU --
    def _exec_alu(self, ins: Instruction):
        x = ins.x
        a = self.v[x]
        b = self.v[ins.y]
        sub = ins.n
        flag = None

        if   sub == 0x0: r = b                    # LD
        elif sub == 0x1: r = a | b                # OR
        elif sub == 0x2: r = a & b                # AND
        elif sub == 0x3: r = a ^ b                # XOR
        elif sub == 0x4:                          # ADD
            r = a + b
            flag = 1 if r > 0xFF else 0
        elif sub == 0x5:                          # SUB
            r = a - b
            flag = 1 if a >= b else 0
        elif sub == 0x6:                          # SHR
            r = a >> 1
            flag = a & 1
        elif sub == 0x7:                          # SUBN
            r = b - a
            flag = 1 if b >= a else 0
        elif sub == 0xE:                          # SHL
            r = a << 1
            flag = (a >> 7) & 1
        else:
            raise self._error(InvalidOpcodeError, ins, "unknown ALU op")

        self.v[x] = r & 0xFF
        # flag lands last so it wins when x is VF
        if flag is not None:
            self.v[VF] = flag
        self.pc += 2

    # -- 0xB: JP V0, nnn --
    def _exec_jp_v0(self, ins: Instruction):
        target = ins.nnn + self.v[0]
        if target >= MEM_SIZE:
            raise self._error(AddressOutOfRangeError, ins,
                              f"jump target {target:#x}")
        self.pc = target

    # -- 0xD: DRW Vx, Vy, n --
    def _exec_draw(self, ins: Instruction):
        height = ins.n
        base = self.index
        if base + height > MEM_SIZE:
            raise self._error(MemoryBoundsError, ins,
                              f"sprite read {base:#x}+{height}")
        x0 = self.v[ins.x] % SCREEN_W
        y0 = self.v[ins.y] % SCREEN_H
        wrap = self.sprite_mode == SPRITE_WRAP
        collision = 0
        changed = False

        for row in range(height):
            bits = self.mem[base + row]
            if not bits:
                continue
            py = y0 + row
            if py >= SCREEN_H:
                if not wrap:
                    break
                py %= SCREEN_H
            for col in range(8):
                if not bits & (0x80 >> col):
                    continue
                px = x0 + col
                if px >= SCREEN_W:
                    if not wrap:
                        break
                    px %= SCREEN_W
                cell = px + py * SCREEN_W
                if self.gfx[cell]:
                    collision = 1
                self.gfx[cell] ^= 1
                changed = True

        self.v[VF] = collision
        if changed:
            self.display_dirty = True
        self.pc += 2

    # -- 0xE: SKP / SKNP Vx --
    def _exec_key(self, ins: Instruction):
        if ins.kk not in (0x9E, 0xA1):
            raise self._error(InvalidOpcodeError, ins, "unknown key op")
        key = self.v[ins.x]
        if key >= NUM_KEYS:
            raise self._error(InvalidRegisterStateError, ins,
                              f"V{ins.x:X}={key:#04x} is not a key")
        pressed = self.keys[key]
        self._skip_if(pressed if ins.kk == 0x9E else not pressed)

    # -- 0xF: timers, keypad wait, index and memory ops --
    def _exec_misc(self, ins: Instruction):
        x = ins.x
        sub = ins.kk

        if sub == 0x07:                           # LD Vx, DT
            self.v[x] = self.delay_timer
        elif sub == 0x0A:                         # LD Vx, K
            for key in range(NUM_KEYS):
                if self.keys[key]:
                    self.v[x] = key
                    break
            else:
                return  # nothing pressed: re-run this instruction next step
        elif sub == 0x15:                         # LD DT, Vx
            self.delay_timer = self.v[x]
        elif sub == 0x18:                         # LD ST, Vx
            self.sound_timer = self.v[x]
        elif sub == 0x1E:                         # ADD I, Vx
            target = self.index + self.v[x]
            if target >= MEM_SIZE:
                raise self._error(AddressOutOfRangeError, ins,
                                  f"I would become {target:#x}")
            self.index = target
        elif sub == 0x29:                         # LD F, Vx
            digit = self.v[x]
            if digit > 0xF:
                raise self._error(InvalidRegisterStateError, ins,
                                  f"V{x:X}={digit:#04x} is not a hex digit")
            self.index = FONT_BASE + digit * GLYPH_BYTES
        elif sub == 0x33:                         # LD B, Vx
            self._check_store(ins, 3)
            val = self.v[x]
            self.mem[self.index]     = val // 100
            self.mem[self.index + 1] = (val // 10) % 10
            self.mem[self.index + 2] = val % 10
        elif sub == 0x55:                         # LD [I], Vx
            self._check_store(ins, x + 1)
            self.mem[self.index:self.index + x + 1] = bytes(self.v[:x + 1])
        elif sub == 0x65:                         # LD Vx, [I]
            if self.index + x >= MEM_SIZE:
                raise self._error(MemoryBoundsError, ins,
                                  f"load {self.index:#x}..+{x}")
            self.v[:x + 1] = list(self.mem[self.index:self.index + x + 1])
        else:
            raise self._error(InvalidOpcodeError, ins, "unknown 0xF op")
        self.pc += 2

    def _check_store(self, ins: Instruction, count: int):
        """Validate a write of *count* bytes at I."""
        start = self.index
        end = start + count - 1
        if end >= MEM_SIZE:
            raise self._error(MemoryBoundsError, ins,
                              f"store {start:#x}..{end:#x}")
        if start < FONT_END:
            raise self._error(MemoryBoundsError, ins,
                              f"store {start:#x} overlaps glyph area")

    # -- Run loop --

    def run(self, max_steps: int = 1_000_000) -> int:
        """Step up to max_steps times.  Returns the number executed."""
        steps = 0
        for _ in range(max_steps):
            self.step()
            steps += 1
        return steps

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = [f"  PC = {self.pc:#05x}  I = {self.index:#05x}  "
                 f"SP = {self.sp}  DT = {self.delay_timer}  "
                 f"ST = {self.sound_timer}"]
        for row in range(0, NUM_REGS, 8):
            lines.append("  " + "  ".join(
                f"V{i:X}={self.v[i]:02x}" for i in range(row, row + 8)))
        if self.sp:
            frames = " ".join(f"{a:#05x}" for a in self.stack[:self.sp])
            lines.append(f"  stack: {frames}")
        return "\n".join(lines)
