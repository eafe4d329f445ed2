import asyncio

from aiorpcx import RPCError
import pytest

from electrumkb import network
from electrumkb.exceptions import (
    ConnectionFailedError, ConnectionsDisabledError, ConnectionTimeoutError, FatalConnectivityError,
    NotConnectedError
)
from electrumkb.network import (
    ALERT_ACTIONS, ConnectionManager, ConnectionState, LatestBlockTip, Peer, ServerQuirks,
    TCP, TLS, broadcast_failure_reason, default_peers
)
from electrumkb.networks import Net, KBTestnet

from .util import FakeConnector, default_server_responses


PEERS = [
    Peer("a.example.com", 50001, TCP),
    Peer("b.example.com", 50002, TLS),
    Peer("c.example.com", 50001, TCP),
]


@pytest.fixture
def no_delays(monkeypatch) -> None:
    monkeypatch.setattr(network, 'RETRY_DELAY', 0)
    monkeypatch.setattr(network, 'RECONNECT_DELAY', 0)
    monkeypatch.setattr(network, 'ONION_RECONNECT_DELAY', 0)


async def wait_for(condition, timeout: float=2.0) -> None:
    waited = 0.0
    while not condition():
        assert waited < timeout, "condition not met"
        await asyncio.sleep(0.01)
        waited += 0.01


@pytest.mark.parametrize("banner,disabled", [
    ("ElectrumX 1.16.0", False),
    ("ElectrumPersonalServer 0.2.4", True),
    ("electrs 0.8.10", True),
    ("electrs 0.9.0", False),
    ("electrs 0.10.1", False),
    ("electrs/0.9.3", False),
    ("electrs-esplora 0.4.1", True),
    ("Fulcrum 1.8.2", True),
    ("Fulcrum 1.9.0", False),
    ("Fulcrum 1.9", True),
    ("", False),
    (None, False),
])
def test_quirks_from_banner(banner, disabled: bool) -> None:
    quirks = ServerQuirks.from_banner(banner)
    assert quirks.batching_disabled is disabled
    assert quirks.server_name == (banner or "")


def test_peer_from_config() -> None:
    assert Peer.from_config(None, 1, 2) is None
    assert Peer.from_config("host", None, None) is None
    assert Peer.from_config("host", "50001", None) == Peer("host", 50001, TCP)
    assert Peer.from_config("host", 50001, 50002) == Peer("host", 50002, TLS)
    assert Peer("x.onion", 1).is_onion()
    assert not Peer("x.example", 1).is_onion()


def test_default_peers(network) -> None:
    peers = default_peers()
    assert len(peers) == len(Net.DEFAULT_SERVERS)
    if network is KBTestnet:
        assert peers[0].transport == TLS


def test_latest_block_tip_anchor() -> None:
    tip = LatestBlockTip()
    assert tip.estimate_current_height(now=network.ANCHOR_TIMESTAMP) == network.ANCHOR_HEIGHT
    assert tip.calculate_block_time(network.BLOCK_TIME_ANCHOR_HEIGHT) == \
        network.BLOCK_TIME_ANCHOR_TIMESTAMP


def test_latest_block_tip_extrapolates() -> None:
    tip = LatestBlockTip()
    tip.update(1000, now=10000.7)
    assert tip.observed_at == 10000
    assert tip.estimate_current_height(now=10000) == 1000
    assert tip.estimate_current_height(now=11200) == 1002
    assert tip.calculate_block_time(1001) == 10595
    assert tip.calculate_block_time(1000) == 10000


def test_broadcast_failure_reason() -> None:
    assert "mempool" in broadcast_failure_reason(RPCError(1, "txn-mempool-conflict"))
    assert broadcast_failure_reason(RPCError(1, "something odd")) == "reason unknown"
    assert broadcast_failure_reason(ValueError("x")) == "reason unknown"


def test_peer_rotation(config) -> None:
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    selected = [ manager.select_peer() for _ in range(4) ]
    assert set(selected[:3]) == set(PEERS)
    assert selected[3] == selected[0]


def test_peer_override_wins(config) -> None:
    config.set_server_override("override.example.com", 50001, None)
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    assert manager.select_peer() == Peer("override.example.com", 50001, TCP)
    config.set_server_override("override.example.com", 50001, 50002)
    assert manager.select_peer() == Peer("override.example.com", 50002, TLS)


def test_onion_peer_is_substituted(config) -> None:
    config.set_server_override("abcdefgh.onion", 50001, None)
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    peer = manager.select_peer()
    assert not peer.is_onion()
    assert peer in PEERS


def test_no_peers(config) -> None:
    manager = ConnectionManager(config, FakeConnector(), peers=[])
    with pytest.raises(ConnectionFailedError):
        manager.select_peer()


@pytest.mark.asyncio
async def test_connect(config) -> None:
    connector = FakeConnector()
    manager = ConnectionManager(config, connector, peers=PEERS)
    statuses = []
    manager.register_callback(lambda event, state: statuses.append(state), ['status'])
    try:
        await manager.ensure_connected()
        assert manager.state == ConnectionState.CONNECTED
        assert manager.tip.height == 1000
        assert manager.server_banner == "ElectrumX 1.16.0"
        assert not manager.batching_disabled
        assert statuses == [ ConnectionState.CONNECTING, ConnectionState.CONNECTED ]
        (session,) = connector.sessions
        assert session.requests[0] == ('server.version', [ 'electrumkb', '1.4' ])
        assert session.requests[1] == ('blockchain.headers.subscribe', [])
        assert manager.get_config()['connected']
        assert manager.seconds_since_last_request() >= 0
        assert await manager.wait_until_connected(timeout=0)
    finally:
        await manager.shutdown()
    assert manager.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connect_degraded_without_tip(config) -> None:
    responses = default_server_responses()
    responses['server.version'] = [ 'electrs 0.8.0', '1.4' ]
    responses['blockchain.headers.subscribe'] = {}
    manager = ConnectionManager(config, FakeConnector(responses), peers=PEERS)
    try:
        await manager.connect(PEERS[0])
        assert manager.state == ConnectionState.DEGRADED
        assert manager.batching_disabled
        assert manager.tip.height is None
        # Degraded is still a usable connection.
        assert await manager.wait_until_connected(timeout=0)

        session = manager._session
        await session.handlers['blockchain.headers.subscribe']({ 'height': 2000 })
        assert manager.state == ConnectionState.CONNECTED
        assert manager.tip.height == 2000
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_header_subscription_error_is_degraded(config) -> None:
    responses = default_server_responses()
    responses['blockchain.headers.subscribe'] = RPCError(1, "unsupported")
    manager = ConnectionManager(config, FakeConnector(responses), peers=PEERS)
    try:
        await manager.connect(PEERS[0])
        assert manager.state == ConnectionState.DEGRADED
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_without_agreement_fails(config) -> None:
    responses = default_server_responses()
    responses['server.version'] = [ '', '1.4' ]
    manager = ConnectionManager(config, FakeConnector(responses), peers=PEERS)
    with pytest.raises(ConnectionFailedError):
        await manager.connect(PEERS[0])
    assert manager.state == ConnectionState.DISCONNECTED
    await manager.shutdown()


@pytest.mark.asyncio
async def test_reconnect_bound_alerts_once(config, no_delays) -> None:
    connector = FakeConnector(failures=100)
    manager = ConnectionManager(config, connector, peers=PEERS)
    alerts = []
    manager.register_callback(lambda event, *args: alerts.append(args),
        ['connectivity_alert'])
    with pytest.raises(FatalConnectivityError) as e:
        await manager.ensure_connected()
    assert e.value.attempts == network.MAX_CONNECTION_ATTEMPTS
    assert len(connector.attempts) == network.MAX_CONNECTION_ATTEMPTS
    assert len(alerts) == 1
    assert alerts[0][1] == ALERT_ACTIONS
    assert manager.state == ConnectionState.DISCONNECTED
    await manager.shutdown()


@pytest.mark.asyncio
async def test_attempts_reset_after_success(config, no_delays) -> None:
    connector = FakeConnector(failures=3)
    manager = ConnectionManager(config, connector, peers=PEERS)
    try:
        await manager.ensure_connected()
        assert len(connector.attempts) == 4
        assert manager._connection_attempts == 0
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_no_alert_when_disabled(config) -> None:
    manager = ConnectionManager(config, FakeConnector(failures=100), peers=PEERS)
    manager.set_disabled(True)
    assert manager.is_disabled()
    await manager.ensure_connected()
    assert manager.state == ConnectionState.DISCONNECTED
    assert not await manager.wait_until_connected()
    with pytest.raises(ConnectionsDisabledError):
        await manager.request('server.ping')


@pytest.mark.asyncio
async def test_retry_alert_action(config, no_delays) -> None:
    connector = FakeConnector(failures=5)
    manager = ConnectionManager(config, connector, peers=PEERS)
    try:
        with pytest.raises(FatalConnectivityError):
            await manager.ensure_connected()
        task = manager.respond_to_alert('retry')
        await task
        assert manager.state == ConnectionState.CONNECTED
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_reset_to_default_server_alert_action(config, no_delays) -> None:
    config.set_server_override("broken.example.com", 50001, None)
    connector = FakeConnector(failures=5)
    manager = ConnectionManager(config, connector, peers=PEERS)
    try:
        with pytest.raises(FatalConnectivityError):
            await manager.ensure_connected()
        await manager.respond_to_alert('reset_to_default_server')
        assert config.get_server_override() == (None, None, None)
        assert manager.peer in PEERS
        assert manager.respond_to_alert('cancel') is None
        with pytest.raises(ValueError):
            manager.respond_to_alert('bogus')
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_transport_error_reconnects(config, no_delays) -> None:
    connector = FakeConnector()
    manager = ConnectionManager(config, connector, peers=PEERS)
    try:
        await manager.ensure_connected()
        await connector.sessions[0].close()
        await wait_for(lambda: len(connector.sessions) == 2 and
            manager.state == ConnectionState.CONNECTED)
        manager.on_transport_error()
        assert manager.state == ConnectionState.DISCONNECTED
        # A second report for the same outage does nothing.
        manager.on_transport_error()
        await wait_for(lambda: len(connector.sessions) == 3 and
            manager.state == ConnectionState.CONNECTED)
        await asyncio.sleep(0.05)
        assert len(connector.sessions) == 3
    finally:
        await manager.shutdown()



@pytest.mark.asyncio
@pytest.mark.parametrize("host,delay", [
    ("abcdefghijklmnop.onion", 4.0),
    ("plain.example.com", 0.5),
])
async def test_reconnect_delay_after_transport_error(config, host: str, delay: float) -> None:
    config.set_server_override(host, 50001, None)
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    delays = []
    manager._schedule_reconnect = delays.append
    try:
        await manager.ensure_connected()
        manager.on_transport_error()
        manager.on_transport_error()
        assert delays == [ delay ]
    finally:
        await manager.shutdown()

@pytest.mark.asyncio
async def test_force_disconnect_does_not_reconnect(config, no_delays) -> None:
    connector = FakeConnector()
    manager = ConnectionManager(config, connector, peers=PEERS)
    await manager.ensure_connected()
    await manager.force_disconnect()
    await asyncio.sleep(0.05)
    assert manager.state == ConnectionState.DISCONNECTED
    assert len(connector.sessions) == 1
    assert manager.seconds_since_last_request() == -1
    with pytest.raises(NotConnectedError):
        await manager.request('server.ping')
    await manager.shutdown()


@pytest.mark.asyncio
async def test_wait_until_connected_times_out(config) -> None:
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    with pytest.raises(ConnectionTimeoutError):
        await manager.wait_until_connected(timeout=0.3)


@pytest.mark.asyncio
async def test_ping(config) -> None:
    responses = default_server_responses()
    manager = ConnectionManager(config, FakeConnector(responses), peers=PEERS)
    try:
        assert not await manager.ping()
        await manager.connect(PEERS[0])
        assert await manager.ping()
        responses['server.ping'] = RPCError(1, "gone")
        assert not await manager.ping()
        assert manager.state == ConnectionState.DISCONNECTED
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_requests(config) -> None:
    responses = default_server_responses()
    responses['blockchain.scripthash.get_balance'] = lambda scripthash: (
        RPCError(1, "bad") if scripthash == "bad" else { "confirmed": 1, "unconfirmed": 0 })
    connector = FakeConnector(responses)
    manager = ConnectionManager(config, connector, peers=PEERS)
    try:
        with pytest.raises(NotConnectedError):
            manager.get_config()
        await manager.connect(PEERS[1])
        assert await manager.server_features() == { 'protocol_max': '1.4' }
        assert await manager.estimate_fee(1) == 1
        assert await manager.get_fee_histogram() == [ [ 5, 1000000 ] ]
        assert await manager.broadcast("00") == 'ab' * 32
        results = await manager.batch('blockchain.scripthash.get_balance',
            [ [ "good" ], [ "bad" ] ])
        assert results[0] == { "confirmed": 1, "unconfirmed": 0 }
        assert isinstance(results[1], RPCError)
        assert await manager.batch('blockchain.scripthash.get_balance', []) == []
        assert manager.get_config() == { 'host': 'b.example.com', 'port': 50002,
            'transport': TLS, 'server_name': 'ElectrumX 1.16.0', 'connected': True }

    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_batching_override_applies_from_next_session(config) -> None:
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    try:
        await manager.connect(PEERS[0])
        assert not manager.batching_disabled
        manager.set_batching_disabled(True)
        # Quirks do not change during a session.
        assert not manager.batching_disabled

        await manager.connect(PEERS[1])
        assert manager.batching_disabled
        manager.set_batching_disabled(None)
        await manager.connect(PEERS[2])
        assert not manager.batching_disabled
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_broadcast_error_propagates(config) -> None:
    responses = default_server_responses()
    responses['blockchain.transaction.broadcast'] = RPCError(1, "txn-already-known")
    manager = ConnectionManager(config, FakeConnector(responses), peers=PEERS)
    try:
        await manager.connect(PEERS[0])
        with pytest.raises(RPCError):
            await manager.broadcast("00")
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_test_connection(config) -> None:
    connector = FakeConnector()
    manager = ConnectionManager(config, connector, peers=PEERS)
    assert await manager.test_connection("test.example.com", 50001)
    assert connector.attempts[-1] == Peer("test.example.com", 50001, TCP)
    assert not await manager.test_connection("test.example.com")
    connector.failures = 1
    assert not await manager.test_connection("test.example.com", None, 50002)
    assert manager.state == ConnectionState.DISCONNECTED


def test_save_and_reset_peer(config) -> None:
    manager = ConnectionManager(config, FakeConnector(), peers=PEERS)
    manager.save_peer(PEERS[1])
    assert config.get_server_override() == ("b.example.com", None, 50002)
    manager.save_peer(PEERS[0])
    assert config.get_server_override() == ("a.example.com", 50001, None)
    manager.reset_to_default_server()
    assert config.get_server_override() == (None, None, None)
