"""
Intcode Processor
=================
A step emulator for the Intcode stored-program machine.  Code and data share
one tape of signed integers; every instruction is decoded from the raw value
at the instruction pointer each step, never cached.

The run loop is resumable: an IN instruction with no pending input stops the
loop *before* executing, leaving IP on the IN opcode, so the orchestrator can
feed more input later and call run() again with no state lost.
"""

from __future__ import annotations
import logging
import re
from collections import deque
from enum import IntEnum
from typing import Callable, Iterable, NamedTuple, Optional

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

# Growth further than this past the end of the dense arena goes to the
# sparse overflow map instead of zero-filling the gap.
SPARSE_GAP = 1 << 16

TOKEN_RE = re.compile(r"^[+-]?[0-9]+\Z")


class Opcode(IntEnum):
    ADD  = 1
    MUL  = 2
    IN   = 3
    OUT  = 4
    JT   = 5
    JF   = 6
    LT   = 7
    EQ   = 8
    ARB  = 9
    HALT = 99


class Mode(IntEnum):
    POSITION  = 0
    IMMEDIATE = 1
    RELATIVE  = 2


class Status(IntEnum):
    RUNNING   = 0
    SUSPENDED = 1
    HALTED    = 2


# Parameter roles per opcode: 'r' = read, 'w' = write target
PARAMS: dict[Opcode, str] = {
    Opcode.ADD:  "rrw",
    Opcode.MUL:  "rrw",
    Opcode.IN:   "w",
    Opcode.OUT:  "r",
    Opcode.JT:   "rr",
    Opcode.JF:   "rr",
    Opcode.LT:   "rrw",
    Opcode.EQ:   "rrw",
    Opcode.ARB:  "r",
    Opcode.HALT: "",
}

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class IntcodeError(Exception):
    """Base for all processor and orchestration faults."""
    pass

class ProgramLoadError(IntcodeError):
    pass

class DecodeError(IntcodeError):
    pass

class InvalidOpcode(DecodeError):
    def __init__(self, value: int):
        self.value = value
        super().__init__(f"{value} is not a valid opcode")

class InvalidParameterMode(DecodeError):
    def __init__(self, mode: int, value: int):
        self.mode = mode
        self.value = value
        super().__init__(f"{mode} is not a valid parameter mode (in {value})")

class InvalidOutputMode(IntcodeError):
    def __init__(self, mode: Mode, value: int):
        self.mode = mode
        self.value = value
        super().__init__(
            f"{mode.name.lower()} is not a valid parameter mode for output "
            f"(in {value})")

class AddressError(IntcodeError):
    def __init__(self, addr: int):
        self.addr = addr
        super().__init__(f"Negative address {addr}")

class HaltError(IntcodeError):
    pass

class InputStarvation(IntcodeError):
    pass

# ---------------------------------------------------------------------------
#  Program loading
# ---------------------------------------------------------------------------

def parse_program(text: str) -> list[int]:
    """Parse comma-separated decimal integers into a program image."""
    program = []
    for i, token in enumerate(text.strip().split(",")):
        token = token.strip()
        if not TOKEN_RE.match(token):
            raise ProgramLoadError(
                f"Malformed token {token!r} at position {i}")
        value = int(token)
        if not INT64_MIN <= value <= INT64_MAX:
            raise ProgramLoadError(
                f"Token {token!r} at position {i} does not fit in 64 bits")
        program.append(value)
    return program

# ---------------------------------------------------------------------------
#  Memory
# ---------------------------------------------------------------------------

class Memory:
    """Zero-extended integer tape.

    Cells live in a dense list; an access far past its end is kept in a
    sparse map so that touching a huge address does not allocate the gap.
    Either way the logical length grows to cover the address.
    """

    def __init__(self, values: Iterable[int] = ()):
        self.cells: list[int] = list(values)
        self._sparse: dict[int, int] = {}
        self._length = len(self.cells)

    def _check(self, addr: int):
        if addr < 0:
            raise AddressError(addr)

    def _grow(self, addr: int) -> bool:
        """Extend the logical tape to cover addr. True if addr is dense."""
        if addr >= self._length:
            self._length = addr + 1
        dense = len(self.cells)
        if addr < dense:
            return True
        if addr - dense > SPARSE_GAP:
            return False
        self.cells.extend([0] * (addr + 1 - dense))
        # Fold in any sparse cells the arena has caught up with
        if self._sparse:
            for a in [a for a in self._sparse if a <= addr]:
                self.cells[a] = self._sparse.pop(a)
        return True

    def read(self, addr: int) -> int:
        self._check(addr)
        if self._grow(addr):
            return self.cells[addr]
        return self._sparse.get(addr, 0)

    def write(self, addr: int, value: int):
        self._check(addr)
        if self._grow(addr):
            self.cells[addr] = value
        else:
            self._sparse[addr] = value

    def load(self, addr: int, values: Iterable[int]):
        """Write a run of values starting at addr."""
        for i, v in enumerate(values):
            self.write(addr + i, v)

    def copy(self) -> Memory:
        mem = Memory()
        mem.cells = list(self.cells)
        mem._sparse = dict(self._sparse)
        mem._length = self._length
        return mem

    def snapshot(self) -> list[int]:
        """Dense copy of the whole logical tape."""
        out = list(self.cells) + [0] * (self._length - len(self.cells))
        for a, v in self._sparse.items():
            out[a] = v
        return out

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, addr: int) -> int:
        return self.read(addr)

    def __setitem__(self, addr: int, value: int):
        self.write(addr, value)

    def __iter__(self):
        return iter(self.snapshot())

# ---------------------------------------------------------------------------
#  Decoder
# ---------------------------------------------------------------------------

class Instruction(NamedTuple):
    opcode: Opcode
    modes: tuple[Mode, ...]
    raw: int

    @property
    def width(self) -> int:
        return 1 + len(self.modes)

    def format(self, operands: Iterable[int] = ()) -> str:
        """Mnemonic form: [a] position, #a immediate, @a relative."""
        marks = {Mode.POSITION: "[{}]", Mode.IMMEDIATE: "#{}",
                 Mode.RELATIVE: "@{}"}
        args = [marks[m].format(v) for m, v in zip(self.modes, operands)]
        name = self.opcode.name.lower()
        return f"{name} {', '.join(args)}" if args else name

    def __str__(self) -> str:
        return self.format(range(1, len(self.modes) + 1))


def decode(value: int) -> Instruction:
    """Split a raw value into opcode and per-parameter addressing modes."""
    if value < 0:
        raise InvalidOpcode(value)
    try:
        opcode = Opcode(value % 100)
    except ValueError:
        raise InvalidOpcode(value) from None

    roles = PARAMS[opcode]
    digits = value // 100
    modes = []
    for role in roles:
        digit = digits % 10
        digits //= 10
        try:
            mode = Mode(digit)
        except ValueError:
            raise InvalidParameterMode(digit, value) from None
        if role == "w" and mode == Mode.IMMEDIATE:
            raise InvalidOutputMode(mode, value)
        modes.append(mode)
    return Instruction(opcode, tuple(modes), value)

# ---------------------------------------------------------------------------
#  Processor
# ---------------------------------------------------------------------------

class Processor:
    """One Intcode machine: private memory, IP and relative base."""

    def __init__(self, program: Iterable[int] = (), *,
                 on_output: Optional[Callable[[int], None]] = None,
                 on_halt: Optional[Callable[[], None]] = None,
                 trace: bool = False,
                 name: str = "cpu"):
        if isinstance(program, Memory):
            self.memory = program.copy()
        else:
            self.memory = Memory(program)
        self.ip: int = 0
        self.relative_base: int = 0
        self.status: Status = Status.RUNNING
        self.step_count: int = 0

        self.name = name
        self.trace = trace

        # Callbacks
        self.on_output = on_output  # called with each OUT value
        self.on_halt = on_halt

    @classmethod
    def from_text(cls, text: str, **kwargs) -> Processor:
        return cls(parse_program(text), **kwargs)

    def clone(self) -> Processor:
        """Independent copy: same state, separate memory."""
        other = Processor(self.memory, on_output=self.on_output,
                          on_halt=self.on_halt, trace=self.trace,
                          name=self.name)
        other.ip = self.ip
        other.relative_base = self.relative_base
        other.status = self.status
        other.step_count = self.step_count
        return other

    @property
    def halted(self) -> bool:
        return self.status == Status.HALTED

    # -- Operand resolution --

    def _address(self, mode: Mode, raw: int) -> int:
        # decode() never lets an immediate write target through
        if mode == Mode.RELATIVE:
            addr = raw + self.relative_base
        else:
            addr = raw
        if addr < 0:
            raise AddressError(addr)
        return addr

    def _operands(self, inst: Instruction) -> list[int]:
        """Resolve every parameter up front: read values, write addresses.

        All address faults surface here, before the instruction mutates
        anything.
        """
        out = []
        roles = PARAMS[inst.opcode]
        for i, mode in enumerate(inst.modes):
            raw = self.memory.read(self.ip + 1 + i)
            if roles[i] == "w":
                out.append(self._address(mode, raw))
            elif mode == Mode.IMMEDIATE:
                out.append(raw)
            else:
                out.append(self.memory.read(self._address(mode, raw)))
        return out

    # =====================================================================
    #  STEP: the core decode/execute loop
    # =====================================================================

    def step(self, inputs: Optional[deque] = None) -> Optional[int]:
        """Execute one instruction.

        Returns the value emitted by OUT, else None.  An IN with no input
        left in *inputs* sets SUSPENDED and leaves IP untouched.
        """
        if self.status == Status.HALTED:
            raise HaltError(f"{self.name} is halted")

        inst = decode(self.memory.read(self.ip))
        op = inst.opcode

        if op == Opcode.IN and not inputs:
            self.status = Status.SUSPENDED
            log.debug("%s: suspended for input at ip=%d", self.name, self.ip)
            return None

        args = self._operands(inst)
        if self.trace:
            log.debug("%s: %6d  %s", self.name, self.ip, inst.format(
                self.memory.read(self.ip + 1 + i)
                for i in range(len(inst.modes))))

        self.status = Status.RUNNING
        self.step_count += 1
        next_ip = self.ip + inst.width
        emitted = None

        if   op == Opcode.ADD:
            self.memory.write(args[2], args[0] + args[1])
        elif op == Opcode.MUL:
            self.memory.write(args[2], args[0] * args[1])
        elif op == Opcode.IN:
            self.memory.write(args[0], inputs.popleft())
        elif op == Opcode.OUT:
            emitted = args[0]
            if self.on_output:
                self.on_output(emitted)
        elif op == Opcode.JT:
            if args[0] != 0:
                next_ip = args[1]
        elif op == Opcode.JF:
            if args[0] == 0:
                next_ip = args[1]
        elif op == Opcode.LT:
            self.memory.write(args[2], 1 if args[0] < args[1] else 0)
        elif op == Opcode.EQ:
            self.memory.write(args[2], 1 if args[0] == args[1] else 0)
        elif op == Opcode.ARB:
            self.relative_base += args[0]
        elif op == Opcode.HALT:
            self.status = Status.HALTED
            log.debug("%s: halted at ip=%d after %d steps",
                      self.name, self.ip, self.step_count)
            if self.on_halt:
                self.on_halt()
            return None

        if next_ip < 0:
            raise AddressError(next_ip)
        self.ip = next_ip
        return emitted

    # -- Run loop --

    def run(self, inputs: Iterable[int] = (),
            max_steps: Optional[int] = None) -> tuple[list[int], Status]:
        """Run until HALT, starvation, or max_steps instructions.

        A deque passed as *inputs* is consumed in place; leftovers stay in
        it.  Returns (outputs of this call, status).  Status RUNNING means
        the step budget ran out.
        """
        if self.status == Status.HALTED:
            return [], Status.HALTED
        queue = inputs if isinstance(inputs, deque) else deque(inputs)
        outputs: list[int] = []
        self.status = Status.RUNNING
        steps = 0
        while max_steps is None or steps < max_steps:
            value = self.step(queue)
            if value is not None:
                outputs.append(value)
            if self.status != Status.RUNNING:
                break
            steps += 1
        return outputs, self.status

    # -- Debug / introspection --

    def dump_state(self) -> str:
        lines = [f"  {self.name}: status={self.status.name} ip={self.ip} "
                 f"rb={self.relative_base} mem={len(self.memory)} "
                 f"steps={self.step_count}"]
        if not self.halted:
            try:
                inst = decode(self.memory.read(self.ip))
                lines.append(f"  next: {inst.format(self.memory.read(self.ip + 1 + i) for i in range(len(inst.modes)))}")
            except IntcodeError as e:
                lines.append(f"  next: <{e}>")
        return "\n".join(lines)


def run_program(program: Iterable[int], inputs: Iterable[int] = (),
                patches: Optional[dict[int, int]] = None) -> list[int]:
    """Run a fresh copy of *program* to HALT and return everything it output.

    *patches* maps addresses to values written before the first step.
    """
    cpu = Processor(program)
    for addr, value in (patches or {}).items():
        cpu.memory.write(addr, value)
    outputs, status = cpu.run(inputs)
    if status != Status.HALTED:
        raise InputStarvation(
            f"Program suspended for input at ip={cpu.ip} "
            f"after {len(outputs)} outputs")
    return outputs
