"""
Pytest configuration for the Intcode test suite.

    pytest                       # everything
    pytest -m "not network"      # skip the multi-node simulations
    INTCODE_TRACE=1 pytest -k X  # DEBUG logging: suspends, halts, NAT wakes

INTCODE_MAX_ROUNDS caps the round limit the network tests hand to
PacketNetwork.run(), so a broken idle detector fails fast instead of
spinning.
"""

import logging
import os

import pytest

MAX_ROUNDS = int(os.environ.get("INTCODE_MAX_ROUNDS", "200"))


def pytest_configure(config):
    config.addinivalue_line("markers",
        "network: multi-node packet network simulations")

    if os.environ.get("INTCODE_TRACE"):
        logging.basicConfig(level=logging.DEBUG,
                            format="%(name)s %(levelname)s %(message)s")


@pytest.fixture
def max_rounds():
    return MAX_ROUNDS
