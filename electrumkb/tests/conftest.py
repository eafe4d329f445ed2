# Pytest looks here for fixtures
import pytest

from electrumkb.networks import Net, KBMainnet, KBRegTestnet, KBTestnet
from electrumkb.simple_config import SimpleConfig


@pytest.fixture
def config(tmp_path) -> SimpleConfig:
    return SimpleConfig({ 'electrum_kb_path': str(tmp_path) })


@pytest.fixture(params=(KBMainnet, KBTestnet, KBRegTestnet))
def network(request):
    Net.set_to(request.param)
    try:
        yield request.param
    finally:
        Net.set_to(KBMainnet)


@pytest.fixture(autouse=True)
def set_to_mainnet_network_on_test_finish():
    try:
        yield
    finally:
        if not Net.is_mainnet():
            Net.set_to(KBMainnet)
