"""
Intcode System Orchestration
============================
Wires several independent Processor instances together and drives them,
round-robin, to a fixed point.  Two topologies:

  AmplifierPipeline : N stages in a chain, optionally closed into a ring
                      (the last stage feeds the first) until all halt.
  PacketNetwork     : N addressed nodes exchanging (dest, x, y) packets,
                      with a NAT on address 255 that re-wakes an idle
                      network and stops it once it repeats itself.

Every instance owns its memory.  Queues and the NAT belong to the
orchestrator and are only touched between run() calls.
"""

from __future__ import annotations
import logging
from collections import deque
from typing import Iterable, NamedTuple, Optional

from intcode import IntcodeError, Processor
from devices import NAT_ADDRESS, NO_PACKET, NatGateway, PacketQueues

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
#  Configuration
# ---------------------------------------------------------------------------

NETWORK_SIZE       = 50
IDLE_ROUNDS        = 2        # consecutive quiet rounds before a node counts as idle
DEFAULT_MAX_ROUNDS = 100_000


class OrchestrationError(IntcodeError):
    pass

class RoundLimitExceeded(OrchestrationError):
    def __init__(self, rounds: int):
        self.rounds = rounds
        super().__init__(f"No result after {rounds} rounds")

class PipelineStalled(OrchestrationError):
    pass


# ---------------------------------------------------------------------------
#  AmplifierPipeline
# ---------------------------------------------------------------------------

class AmplifierPipeline:
    """Chain of stages, each primed with its own phase setting.

    Stage i's outputs are queued as stage i+1's inputs.  With *feedback*
    the last stage's outputs go back to stage 0 and the ring keeps
    turning until every stage has halted.
    """

    def __init__(self, program: Iterable[int], phases: Iterable[int],
                 feedback: bool = False,
                 max_rounds: int = DEFAULT_MAX_ROUNDS):
        program = list(program)
        phases = list(phases)
        if not phases:
            raise ValueError("pipeline needs at least one stage")
        self.stages = [Processor(program, name=f"amp{i}")
                       for i in range(len(phases))]
        self.queues: list[deque[int]] = [deque([p]) for p in phases]
        self.phases = phases
        self.feedback = feedback
        self.max_rounds = max_rounds
        self.rounds = 0
        self.last_signal: Optional[int] = None

    @property
    def all_halted(self) -> bool:
        return all(cpu.halted for cpu in self.stages)

    def _drive(self, i: int) -> list[int]:
        cpu = self.stages[i]
        try:
            outputs, _ = cpu.run(self.queues[i])
        except IntcodeError:
            log.error("pipeline: stage %d failed\n%s", i, cpu.dump_state())
            raise
        return outputs

    def step_round(self) -> bool:
        """Run every live stage once.  Returns True if any stage executed."""
        self.rounds += 1
        last = len(self.stages) - 1
        progressed = False
        for i, cpu in enumerate(self.stages):
            if cpu.halted:
                continue
            before = cpu.step_count
            outputs = self._drive(i)
            if cpu.step_count != before:
                progressed = True
            if i == last:
                if outputs:
                    self.last_signal = outputs[-1]
                if not self.feedback:
                    continue
            self.queues[(i + 1) % len(self.stages)].extend(outputs)
        return progressed

    def run(self, signal: int = 0) -> int:
        """Send *signal* into stage 0 and return the final signal out.

        A pipeline runs once; build a new one for another signal.
        """
        if self.rounds:
            raise OrchestrationError("Pipeline has already run")
        self.queues[0].append(signal)
        if not self.feedback:
            self.step_round()
        else:
            while not self.all_halted:
                if self.rounds >= self.max_rounds:
                    raise RoundLimitExceeded(self.rounds)
                if not self.step_round():
                    raise PipelineStalled(
                        f"No stage can progress after {self.rounds} rounds")
        if self.last_signal is None:
            raise PipelineStalled("No signal left the last stage")
        log.debug("pipeline %s -> %d in %d rounds",
                  self.phases, self.last_signal, self.rounds)
        return self.last_signal


# ---------------------------------------------------------------------------
#  PacketNetwork
# ---------------------------------------------------------------------------

class NetworkResult(NamedTuple):
    y: int                              # Y the NAT sent twice in a row
    first_nat_packet: tuple[int, int]   # first packet the NAT ever received
    rounds: int
    packets: int


class PacketNetwork:
    """N processors on a packet-switched bus with a NAT.

    Each round drives every node once.  A node with an empty inbox is fed
    NO_PACKET instead of being left to block.  Output is read as
    (dest, x, y) triples; a triple split across rounds is held per sender
    until complete.
    """

    def __init__(self, program: Iterable[int], size: int = NETWORK_SIZE,
                 nat_address: int = NAT_ADDRESS,
                 idle_rounds: int = IDLE_ROUNDS):
        program = list(program)
        self.size = size
        self.idle_rounds = idle_rounds
        self.nodes = [Processor(program, name=f"node{a}") for a in range(size)]
        self.queues = PacketQueues(size)
        for addr in range(size):
            self.queues.push(addr, addr)
        self.nat = NatGateway(nat_address)

        self.quiet: list[int] = [0] * size   # consecutive quiet rounds per node
        self._partial: list[list[int]] = [[] for _ in range(size)]
        self.rounds = 0
        self.dropped = 0

    @property
    def idle(self) -> bool:
        return all(q >= self.idle_rounds for q in self.quiet)

    def _drive(self, addr: int) -> list[int]:
        cpu = self.nodes[addr]
        try:
            outputs, _ = cpu.run(self.queues.queue(addr))
        except IntcodeError:
            log.error("network: node %d failed in round %d\n%s",
                      addr, self.rounds, cpu.dump_state())
            raise
        return outputs

    def _route(self, src: int, outputs: list[int]):
        buf = self._partial[src]
        buf.extend(outputs)
        while len(buf) >= 3:
            dest, x, y = buf[0], buf[1], buf[2]
            del buf[:3]
            if dest == self.nat.address:
                self.nat.receive(x, y)
                log.debug("network: node %d -> NAT (%d, %d)", src, x, y)
            elif dest in self.queues:
                self.queues.deliver(dest, x, y)
            else:
                self.dropped += 1
                log.warning("network: node %d sent (%d, %d) to unknown "
                            "address %d, dropped", src, x, y, dest)

    def step_round(self) -> bool:
        """Drive every node once.  Returns True if the network is now idle."""
        self.rounds += 1
        for addr, cpu in enumerate(self.nodes):
            if cpu.halted:
                self.quiet[addr] += 1
                continue
            starved = not self.queues.pending(addr)
            if starved:
                self.queues.push(addr, NO_PACKET)
            outputs = self._drive(addr)
            if starved and not outputs:
                self.quiet[addr] += 1
            else:
                self.quiet[addr] = 0
            self._route(addr, outputs)
        idle = self.idle
        if idle:
            log.debug("network: idle after round %d", self.rounds)
        return idle

    def run(self, max_rounds: int = DEFAULT_MAX_ROUNDS) -> NetworkResult:
        """Drive rounds until the NAT delivers the same Y twice in a row."""
        while self.rounds < max_rounds:
            if not self.step_round():
                continue
            packet = self.nat.wake()
            if packet is None:
                continue
            self.queues.deliver(0, *packet)
            log.info("network: NAT woke node 0 with %s in round %d",
                     packet, self.rounds)
            if self.nat.repeated:
                log.info("network: NAT repeated Y=%d, stopping",
                         self.nat.last_sent_y)
                return NetworkResult(self.nat.last_sent_y,
                                     self.nat.first_packet,
                                     self.rounds,
                                     self.queues.delivered)
        raise RoundLimitExceeded(self.rounds)

    def dump_state(self) -> str:
        lines = [f"=== Network: {self.size} nodes, round {self.rounds} ==="]
        for addr, cpu in enumerate(self.nodes):
            lines.append(cpu.dump_state())
            lines.append(f"  inbox={list(self.queues.queue(addr))} "
                         f"quiet={self.quiet[addr]}")
        lines.append(f"  NAT: packet={self.nat.packet} "
                     f"wakes={self.nat.wakes} dropped={self.dropped}")
        return "\n".join(lines)
