"""
Intcode Peripheral Layer
========================
Host-side devices that sit between an orchestrator and its processors.
None of them touch processor memory; they only buffer the plain integer
streams that go into run() and come out of it.

  PacketQueues  : per-address FIFO inboxes for the packet network
  NatGateway    : single-slot register for packets sent to address 255
  AsciiConsole  : text convention over integer I/O (0..255 are characters)
"""

from __future__ import annotations
import logging
from collections import deque
from typing import Callable, Iterable, Optional

from intcode import Processor, Status

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

NAT_ADDRESS = 255
NO_PACKET   = -1
ASCII_MAX   = 255


# ---------------------------------------------------------------------------
#  PacketQueues: per-address inboxes
# ---------------------------------------------------------------------------

class PacketQueues:
    """FIFO input queues indexed by node address.

    A packet (x, y) is appended as two values so that the receiving
    processor reads x then y from consecutive IN instructions.
    """

    def __init__(self, size: int):
        self.size = size
        self.queues: list[deque[int]] = [deque() for _ in range(size)]
        self.delivered: int = 0

        # Callback: called with (dest, x, y) for each delivered packet
        self.on_packet: Optional[Callable[[int, int, int], None]] = None

    def __contains__(self, addr: int) -> bool:
        return 0 <= addr < self.size

    def queue(self, addr: int) -> deque[int]:
        return self.queues[addr]

    def pending(self, addr: int) -> bool:
        return len(self.queues[addr]) > 0

    def push(self, addr: int, *values: int):
        """Append raw values (e.g. a node's address when priming)."""
        self.queues[addr].extend(values)

    def deliver(self, dest: int, x: int, y: int):
        self.queues[dest].append(x)
        self.queues[dest].append(y)
        self.delivered += 1
        if self.on_packet:
            self.on_packet(dest, x, y)

    @property
    def all_empty(self) -> bool:
        return not any(self.queues)


# ---------------------------------------------------------------------------
#  NatGateway: last-packet-wins register
# ---------------------------------------------------------------------------
# Not a queue.  Each receive() overwrites the held packet; wake() hands the
# held packet back for delivery to address 0 and remembers the Y it sent so
# the orchestrator can stop once the same Y goes out twice in a row.

class NatGateway:

    def __init__(self, address: int = NAT_ADDRESS):
        self.address = address
        self.packet: Optional[tuple[int, int]] = None
        self.first_packet: Optional[tuple[int, int]] = None
        self.received: int = 0
        self.last_sent_y: Optional[int] = None
        self.prev_sent_y: Optional[int] = None
        self.wakes: int = 0

    def receive(self, x: int, y: int):
        self.packet = (x, y)
        if self.first_packet is None:
            self.first_packet = (x, y)
        self.received += 1

    def wake(self) -> Optional[tuple[int, int]]:
        """Packet to send to address 0, or None if nothing was received."""
        if self.packet is None:
            return None
        self.prev_sent_y = self.last_sent_y
        self.last_sent_y = self.packet[1]
        self.wakes += 1
        return self.packet

    @property
    def repeated(self) -> bool:
        """True once two consecutive wakes sent the same Y."""
        return self.wakes >= 2 and self.last_sent_y == self.prev_sent_y


# ---------------------------------------------------------------------------
#  ASCII convention
# ---------------------------------------------------------------------------

def encode_ascii(text: str) -> list[int]:
    """Character codes for *text*, one value per character."""
    out = []
    for ch in text:
        code = ord(ch)
        if code > ASCII_MAX:
            raise ValueError(f"{ch!r} is outside the ASCII range")
        out.append(code)
    return out


def decode_ascii(values: Iterable[int]) -> tuple[str, list[int]]:
    """Split output into text (0..255) and out-of-band results."""
    chars = []
    results = []
    for v in values:
        if 0 <= v <= ASCII_MAX:
            chars.append(chr(v))
        else:
            results.append(v)
    return "".join(chars), results


class AsciiConsole:
    """Serial-console view of a processor that speaks ASCII.

    Output values in 0..255 land in the text buffer; anything else is an
    out-of-band result (a score, a count) and is kept in ``results``.
    """

    def __init__(self, cpu: Processor):
        self.cpu = cpu
        self.rx_buffer: deque[int] = deque()   # host -> processor
        self.tx_buffer: list[str] = []         # processor -> host
        self.results: list[int] = []

        # Callbacks
        self.on_tx: Optional[Callable[[str], None]] = None

    def inject_input(self, text: str):
        self.rx_buffer.extend(encode_ascii(text))

    def send_line(self, line: str):
        """Queue one command line, newline-terminated."""
        self.inject_input(line.rstrip("\n") + "\n")

    def run(self, max_steps: Optional[int] = None) -> Status:
        outputs, status = self.cpu.run(self.rx_buffer, max_steps=max_steps)
        text, results = decode_ascii(outputs)
        if text:
            self.tx_buffer.append(text)
            if self.on_tx:
                self.on_tx(text)
        if results:
            log.debug("console: out-of-band results %s", results)
            self.results.extend(results)
        return status

    @property
    def has_rx_data(self) -> bool:
        return len(self.rx_buffer) > 0

    def drain_text(self) -> str:
        """Return all pending text and clear the buffer."""
        out = "".join(self.tx_buffer)
        self.tx_buffer.clear()
        return out
