"""
Integration tests for the orchestrators: the amplifier pipeline (one pass
and feedback ring) and the packet network with its NAT.
"""

import unittest

import pytest

from intcode import InvalidOpcode, InvalidOutputMode, Memory, parse_program
from system import (
    AmplifierPipeline, PacketNetwork, NetworkResult,
    OrchestrationError, PipelineStalled, RoundLimitExceeded,
)

# ---------------------------------------------------------------------------
#  Programs
# ---------------------------------------------------------------------------

# signal * 10 + phase
AMP = parse_program("3,15,3,16,1002,16,10,16,1,16,15,15,4,15,99,0,0")

AMP_FEEDBACK = parse_program(
    "3,26,1001,26,-4,26,3,27,1002,27,2,27,1,27,26,"
    "27,4,27,1001,28,-1,28,1005,28,6,99,0,0,5")

# Reads its address, then polls forever without sending
QUIET_NODE = [3, 100, 3, 101, 1105, 1, 2]

# Node 0 sends (5, 6) to node 1; node 1 forwards every packet it gets to
# the NAT; everyone else just polls.
RELAY_NODE = parse_program(
    "3,100,1005,100,11,104,1,104,5,104,6,"
    "3,101,1008,101,-1,102,1005,102,11,"
    "3,103,1008,100,1,104,1006,104,11,"
    "104,255,4,101,4,103,1105,1,11")

# Node 0 sends (255, 8, ...) then waits for one input before sending 9
SPLIT_NODE = [3, 100, 1005, 100, 13, 104, 255, 104, 8, 3, 101,
              104, 9, 3, 101, 1105, 1, 13]

# Node 0 sends one packet to address 7, which does not exist
STRAY_NODE = [3, 100, 1005, 100, 11, 104, 7, 104, 1, 104, 2,
              3, 101, 1105, 1, 11]


# ---------------------------------------------------------------------------
#  Pipeline
# ---------------------------------------------------------------------------

class TestAmplifierPipeline(unittest.TestCase):
    def test_single_pass(self):
        pipe = AmplifierPipeline(AMP, [4, 3, 2, 1, 0])
        self.assertEqual(pipe.run(0), 43210)
        self.assertTrue(pipe.all_halted)
        self.assertEqual(pipe.rounds, 1)

    def test_stages_do_not_share_memory(self):
        pipe = AmplifierPipeline(AMP, [0, 1])
        pipe.run(0)
        self.assertEqual(pipe.stages[0].memory[15], 0)
        self.assertEqual(pipe.stages[1].memory[15], 1)

    def test_feedback_ring(self):
        pipe = AmplifierPipeline(AMP_FEEDBACK, [9, 8, 7, 6, 5],
                                 feedback=True)
        self.assertEqual(pipe.run(0), 139629729)
        self.assertTrue(pipe.all_halted)
        self.assertGreater(pipe.rounds, 1)

    def test_stall_is_reported(self):
        # Each stage reads three values before it outputs anything
        pipe = AmplifierPipeline([3, 0, 3, 0, 3, 0, 4, 0, 99], [1, 2],
                                 feedback=True)
        with self.assertRaises(PipelineStalled):
            pipe.run(0)

    def test_no_signal(self):
        pipe = AmplifierPipeline([3, 0, 99], [1, 2])
        with self.assertRaises(PipelineStalled):
            pipe.run(0)

    def test_round_limit(self):
        pipe = AmplifierPipeline(AMP_FEEDBACK, [9, 8, 7, 6, 5],
                                 feedback=True, max_rounds=2)
        with self.assertRaises(RoundLimitExceeded):
            pipe.run(0)

    def test_fault_aborts_pipeline(self):
        pipe = AmplifierPipeline([3, 0, 3, 1, 42], [1, 2])
        with self.assertRaises(InvalidOpcode):
            pipe.run(0)

    def test_write_mode_fault_is_logged(self):
        pipe = AmplifierPipeline([3, 0, 11101, 1, 1, 5, 99], [1])
        with self.assertLogs("system", "ERROR") as cm:
            with self.assertRaises(InvalidOutputMode):
                pipe.run(0)
        self.assertIn("stage 0 failed", cm.output[0])
        self.assertIn("next: <", cm.output[0])

    def test_runs_once(self):
        pipe = AmplifierPipeline(AMP, [4, 3, 2, 1, 0])
        pipe.run(0)
        with self.assertRaises(OrchestrationError):
            pipe.run(1)

    def test_program_from_memory(self):
        pipe = AmplifierPipeline(Memory(AMP), [4, 3, 2, 1, 0])
        self.assertEqual(pipe.run(0), 43210)

    def test_needs_stages(self):
        with self.assertRaises(ValueError):
            AmplifierPipeline(AMP, [])


# ---------------------------------------------------------------------------
#  Network
# ---------------------------------------------------------------------------

@pytest.mark.network
class TestPacketNetwork:
    def test_nodes_primed_with_address(self):
        net = PacketNetwork(QUIET_NODE, size=4)
        net.step_round()
        assert [cpu.memory[100] for cpu in net.nodes] == [0, 1, 2, 3]

    def test_idle_needs_two_quiet_rounds(self):
        net = PacketNetwork(QUIET_NODE, size=3)
        assert not net.step_round()     # address consumed: not quiet
        assert not net.step_round()     # first quiet round
        assert net.quiet == [1, 1, 1]
        assert net.step_round()         # second quiet round
        assert net.idle

    def test_no_nat_traffic_hits_round_limit(self, max_rounds):
        net = PacketNetwork(QUIET_NODE, size=5)
        with pytest.raises(RoundLimitExceeded) as exc:
            net.run(max_rounds=max_rounds)
        assert exc.value.rounds == max_rounds
        assert net.nat.wakes == 0

    def test_nat_terminates_on_repeated_y(self, max_rounds):
        net = PacketNetwork(RELAY_NODE, size=3)
        result = net.run(max_rounds=max_rounds)
        assert isinstance(result, NetworkResult)
        assert result.y == 6
        assert result.first_nat_packet == (5, 6)
        assert result.rounds == 6
        assert net.nat.wakes == 2

    def test_full_size_network(self, max_rounds):
        net = PacketNetwork(RELAY_NODE)
        assert len(net.nodes) == 50
        assert net.run(max_rounds=max_rounds).y == 6

    def test_split_triple_reassembled(self):
        net = PacketNetwork(SPLIT_NODE, size=2)
        net.step_round()
        assert net.nat.packet is None
        net.step_round()
        assert net.nat.packet == (8, 9)

    def test_packet_to_unknown_address_dropped(self, caplog):
        net = PacketNetwork(STRAY_NODE, size=2)
        with caplog.at_level("WARNING", logger="system"):
            net.step_round()
        assert net.dropped == 1
        assert "unknown address 7" in caplog.text
        assert net.queues.all_empty

    def test_delivery_order(self):
        net = PacketNetwork(QUIET_NODE, size=2)
        net.step_round()
        seen = []
        net.queues.on_packet = lambda *pkt: seen.append(pkt)
        net._route(0, [1, 10, 11, 1, 20])
        net._route(0, [21])
        assert list(net.queues.queue(1)) == [10, 11, 20, 21]
        assert seen == [(1, 10, 11), (1, 20, 21)]

    def test_fault_aborts_network(self):
        net = PacketNetwork([3, 100, 42], size=2)
        with pytest.raises(InvalidOpcode):
            net.run(max_rounds=10)

    def test_write_mode_fault_is_logged(self, caplog):
        net = PacketNetwork([3, 100, 11101, 1, 1, 5, 99], size=2)
        with caplog.at_level("ERROR", logger="system"):
            with pytest.raises(InvalidOutputMode):
                net.run(max_rounds=10)
        assert "node 0 failed in round 1" in caplog.text

    def test_program_from_memory(self, max_rounds):
        net = PacketNetwork(Memory(RELAY_NODE), size=3)
        assert net.run(max_rounds=max_rounds).y == 6

    def test_dump_state(self):
        net = PacketNetwork(QUIET_NODE, size=2)
        net.step_round()
        text = net.dump_state()
        assert "2 nodes, round 1" in text
        assert "NAT: packet=None" in text
