# ElectrumKB - lightweight Electrum protocol client
# Copyright (C) 2019-2020 The ElectrumSV Developers
#
# Permission is hereby granted, free of charge, to any person
# obtaining a copy of this software and associated documentation files
# (the "Software"), to deal in the Software without restriction,
# including without limitation the rights to use, copy, modify, merge,
# publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS
# BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN
# ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
# CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

'''The connection to a single Electrum protocol server.

A `ConnectionManager` owns at most one `KBSession` at a time and is responsible for picking a
peer, performing the version handshake, tracking the chain tip, noticing when the transport
goes away and reconnecting within a bounded number of attempts.
'''

from __future__ import annotations

import asyncio
from enum import IntEnum
from functools import partial
import math
import random
import ssl
import time
from typing import Any, AsyncContextManager, Callable, Sequence

import attr
import certifi
from aiorpcx import (
    connect_rs, RPCSession, Notification, RPCError, TaskTimeout, TaskGroup,
    handler_invocation, sleep, timeout_after, NewlineFramer
)

from .exceptions import (
    ConnectionFailedError, ConnectionsDisabledError, ConnectionTimeoutError,
    FatalConnectivityError, NotConnectedError, ProtocolError
)
from .fees import fee_rate_from_coin_per_kb
from .i18n import _
from .logs import logs
from .networks import Net
from .simple_config import SimpleConfig
from .util import semver_to_int, TriggeredCallbacks
from .version import CLIENT_NAME, PROTOCOL_VERSION


logger = logs.get_logger("network")

HEADERS_SUBSCRIBE = 'blockchain.headers.subscribe'

# The transport labels used by `Peer`.
TCP = 'tcp'
TLS = 'tls'

MAX_MESSAGE_SIZE = 10 * 1024 * 1024

MAX_CONNECTION_ATTEMPTS = 5
RETRY_DELAY = 0.5
RECONNECT_DELAY = 0.5
ONION_RECONNECT_DELAY = 4.0
CONNECT_TIMEOUT = 30.0
WAIT_POLL_INTERVAL = 0.1
WAIT_TIMEOUT = 30.0
PING_INTERVAL = 300.0
PING_TIMEOUT = 10.0
TEST_CONNECTION_TIMEOUT = 5.0

SECONDS_PER_BLOCK = 9.93 * 60
# Used to extrapolate heights before any tip has been seen.
ANCHOR_HEIGHT = 627179
ANCHOR_TIMESTAMP = 1587570465.609
BLOCK_TIME_ANCHOR_HEIGHT = 624083
BLOCK_TIME_ANCHOR_TIMESTAMP = 1585837504

ALERT_RETRY = 'retry'
ALERT_RESET_TO_DEFAULT_SERVER = 'reset_to_default_server'
ALERT_CANCEL = 'cancel'
ALERT_ACTIONS = (ALERT_RETRY, ALERT_RESET_TO_DEFAULT_SERVER, ALERT_CANCEL)

# Server implementations that cannot process JSON-RPC batches, and the first release of each
# that can. A value of None means no release is known to support them.
BATCHING_BROKEN_SERVERS = {
    'ElectrumPersonalServer': None,
    'electrs-esplora': None,
    'electrs': '0.9.0',
    'Fulcrum': '1.9.0',
}

BROADCAST_TX_MSG_LIST = (
    ('dust', _('very small "dust" payments')),
    (('Missing inputs', 'Inputs unavailable', 'bad-txns-inputs-missingorspent'),
     _('missing, already-spent, or otherwise invalid coins')),
    ('insufficient fee', _('insufficient fees or priority')),
    ('min relay fee not met', _('the fee is below the minimum relay fee')),
    ('bad-txns-premature-spend-of-coinbase', _('attempt to spend an unmatured coinbase')),
    (('txn-already-in-mempool', 'txn-already-known'),
     _("it already exists in the server's mempool")),
    ('txn-mempool-conflict', _("it conflicts with one already in the server's mempool")),
    ('bad-txns-nonstandard-inputs', _('use of non-standard input scripts')),
    ('absurdly-high-fee', _('fee is absurdly high')),
    ('non-mandatory-script-verify-flag', _('the script fails verification')),
    ('tx-size', _('transaction is too large')),
    ('scriptsig-size', _('it contains an oversized script')),
    ('scriptpubkey', _('it contains a non-standard signature')),
    ('bare-multisig', _('it contains a bare multisig input')),
    ('multi-op-return', _('it contains more than 1 OP_RETURN input')),
    ('scriptsig-not-pushonly', _('a scriptsig is not simply data')),
    ('bad-txns-nonfinal', _("transaction is not final"))
)


def broadcast_failure_reason(exception: Exception) -> str:
    if isinstance(exception, RPCError):
        msg = str(exception.message)
        for in_msgs, out_msg in BROADCAST_TX_MSG_LIST:
            if isinstance(in_msgs, str):
                in_msgs = (in_msgs, )
            if any(in_msg in msg for in_msg in in_msgs):
                return out_msg
    return _('reason unknown')


class ConnectionState(IntEnum):
    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    # The handshake succeeded but the server did not give us a usable tip.
    DEGRADED = 3


LIVE_STATES = (ConnectionState.CONNECTED, ConnectionState.DEGRADED)


@attr.s(slots=True, frozen=True)
class Peer:
    host: str = attr.ib()
    port: int = attr.ib(converter=int)
    transport: str = attr.ib(default=TCP)

    @classmethod
    def from_config(cls, host: str | None, tcp_port: int | None,
            ssl_port: int | None) -> Peer | None:
        if not host:
            return None
        if ssl_port:
            return cls(host, ssl_port, TLS)
        if tcp_port:
            return cls(host, tcp_port, TCP)
        return None

    def is_onion(self) -> bool:
        return self.host.endswith('onion')

    def use_ssl(self) -> bool:
        return self.transport == TLS

    def __str__(self) -> str:
        return f'{self.host}:{self.port}'


def default_peers() -> list[Peer]:
    '''The rotation list for the active network, preferring TLS where a server offers it.'''
    peers = []
    for host, ports in Net.DEFAULT_SERVERS.items():
        if ports.get('s'):
            peers.append(Peer(host, ports['s'], TLS))
        elif ports.get('t'):
            peers.append(Peer(host, ports['t'], TCP))
    return peers


@attr.s(slots=True, frozen=True)
class ServerQuirks:
    batching_disabled: bool = attr.ib(default=False)
    server_name: str = attr.ib(default='')

    @classmethod
    def from_banner(cls, banner: str | None) -> ServerQuirks:
        '''Work out what the server behind a `server.version` banner can do.

        The banner looks like "electrs/0.9.2" or "Fulcrum 1.9.1".
        '''
        banner = banner or ''
        parts = banner.split(' ')
        name = parts[0]
        batching_disabled = False
        for prefix in ('ElectrumPersonalServer', 'electrs', 'Fulcrum'):
            if name.startswith(prefix):
                batching_disabled = True
                break

        if batching_disabled:
            software, _sep, version = name.partition('/')
            if not version and len(parts) > 1:
                software, version = name, parts[1]
            minimum = BATCHING_BROKEN_SERVERS.get(software)
            if minimum is not None and semver_to_int(version) >= semver_to_int(minimum):
                batching_disabled = False
        return cls(batching_disabled=batching_disabled, server_name=banner)


@attr.s(slots=True)
class LatestBlockTip:
    height: int | None = attr.ib(default=None)
    observed_at: int | None = attr.ib(default=None)

    def update(self, height: int, now: float | None=None) -> None:
        self.height = height
        self.observed_at = math.floor(time.time() if now is None else now)

    def estimate_current_height(self, now: float | None=None) -> int:
        if now is None:
            now = time.time()
        if self.height is not None and self.observed_at is not None:
            elapsed = math.floor(now) - self.observed_at
            return self.height + math.floor(elapsed / SECONDS_PER_BLOCK)
        return math.floor(ANCHOR_HEIGHT + (now - ANCHOR_TIMESTAMP) / SECONDS_PER_BLOCK)

    def calculate_block_time(self, height: int) -> int:
        if self.height is not None and self.observed_at is not None:
            return math.floor(self.observed_at + (height - self.height) * SECONDS_PER_BLOCK)
        return math.floor(BLOCK_TIME_ANCHOR_TIMESTAMP +
            (height - BLOCK_TIME_ANCHOR_HEIGHT) * SECONDS_PER_BLOCK)


def _tip_height(tip: Any) -> int | None:
    if isinstance(tip, dict):
        height = tip.get('height')
        if isinstance(height, int) and not isinstance(height, bool) and height > 0:
            return height
    return None


class KBSession(RPCSession):

    ca_path = certifi.where()

    def __init__(self, peer: Peer, logger, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._handlers: dict[str, Callable[..., Any]] = {}
        self._closed_event = asyncio.Event()
        # These attributes are intended to part of the external API
        self.peer = peer
        self.logger = logger
        self.last_request_time = 0.0

    def default_framer(self) -> NewlineFramer:
        return NewlineFramer(max_size=MAX_MESSAGE_SIZE)

    async def send_request(self, method, args=()):
        self.last_request_time = time.time()
        return await super().send_request(method, args)

    def send_batch(self, raise_errors=False):
        self.last_request_time = time.time()
        return super().send_batch(raise_errors)

    def set_notification_handler(self, method: str, handler: Callable[..., Any]) -> None:
        self._handlers[method] = handler

    async def handle_request(self, request):
        if isinstance(request, Notification):
            handler = self._handlers.get(request.method)
        else:
            handler = None
        coro = handler_invocation(handler, request)()
        return await coro

    async def connection_lost(self):
        await super().connection_lost()
        self._closed_event.set()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()


Connector = Callable[[Peer, Callable[..., Any]], AsyncContextManager[Any]]


class ConnectionManager(TriggeredCallbacks):
    '''The single owner of the connection state.

    Callbacks that can be registered for: "status" with the new `ConnectionState`, "tip" with
    the new height and "connectivity_alert" with the failing peer and the alert actions.
    '''

    def __init__(self, config: SimpleConfig, connector: Connector | None=None,
            peers: Sequence[Peer] | None=None) -> None:
        TriggeredCallbacks.__init__(self)
        self._config = config
        self._connector: Connector = connector or self._default_connector
        self._peers = list(peers) if peers is not None else default_peers()
        # Spread clients across the rotation rather than all starting on the first server.
        self._peer_index = random.randrange(len(self._peers)) if self._peers else 0

        self.state = ConnectionState.DISCONNECTED
        self.quirks = ServerQuirks()
        self.tip = LatestBlockTip()
        self.peer: Peer | None = None
        self.server_banner = ''

        self._session: Any = None
        self._session_task: asyncio.Task[None] | None = None
        self._candidate: Peer | None = None
        self._connection_attempts = 0
        self._was_connected = False
        self._batching_override: bool | None = None
        self._shutting_down = False
        self._connect_lock = asyncio.Lock()
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    #
    # Peer selection
    #

    def _ssl_context(self) -> ssl.SSLContext:
        sslc = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        sslc.load_verify_locations(cafile=KBSession.ca_path)
        # Most Electrum servers present self-signed certificates.
        if not self._config.get('electrum_tls_verify', False):
            sslc.check_hostname = False
            sslc.verify_mode = ssl.CERT_NONE
        return sslc

    def _default_connector(self, peer: Peer, session_factory: Callable[..., Any]) \
            -> AsyncContextManager[Any]:
        sslc = self._ssl_context() if peer.use_ssl() else None
        return connect_rs(peer.host, peer.port, session_factory=session_factory, ssl=sslc)

    def _next_rotation_peer(self) -> Peer | None:
        if not self._peers:
            return None
        self._peer_index = (self._peer_index + 1) % len(self._peers)
        return self._peers[self._peer_index]

    def _current_rotation_peer(self) -> Peer | None:
        if not self._peers:
            return None
        return self._peers[self._peer_index % len(self._peers)]

    def select_peer(self) -> Peer:
        '''Advance the rotation and return the peer to dial.

        Raises `ConnectionFailedError` if there is nothing dialable.'''
        peer = self._next_rotation_peer()
        override = Peer.from_config(*self._config.get_server_override())
        if override is not None:
            peer = override
        self._candidate = peer
        if peer is not None and peer.is_onion():
            substitute = self._current_rotation_peer()
            logger.info("not dialing onion host %s, using %s instead", peer, substitute)
            peer = substitute
        if peer is None:
            raise ConnectionFailedError(_('no servers available'))
        return peer

    def save_peer(self, peer: Peer) -> None:
        if peer.use_ssl():
            self._config.set_server_override(peer.host, None, peer.port)
        else:
            self._config.set_server_override(peer.host, peer.port, None)

    def reset_to_default_server(self) -> None:
        self._config.set_server_override(None, None, None)

    def is_disabled(self) -> bool:
        return self._config.is_connection_disabled()

    def set_disabled(self, flag: bool) -> None:
        self._config.set_connection_disabled(flag)

    #
    # Connection lifecycle
    #

    def is_connected(self) -> bool:
        return self.state in LIVE_STATES

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug("connection state %s -> %s", self.state.name, state.name)
            self.state = state
            self.trigger_callback('status', state)

    async def connect(self, peer: Peer) -> None:
        '''Open a session to `peer` and complete the handshake.

        Raises `ConnectionFailedError` on failure, leaving the state as disconnected.'''
        if self._session_task is not None:
            await self._close_session()

        self.peer = peer
        self._set_state(ConnectionState.CONNECTING)
        logger.info("connecting to %s (%s)", peer, peer.transport)
        ready: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._session_task = asyncio.create_task(self._maintain_session(peer, ready))
        try:
            async with timeout_after(CONNECT_TIMEOUT):
                await ready
        except TaskTimeout:
            await self._close_session()
            raise ConnectionFailedError(_('timed out connecting to {}').format(peer)) from None
        except ConnectionFailedError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise

    async def _handshake(self, session: Any) -> tuple[str, Any]:
        result = await session.send_request('server.version', [CLIENT_NAME, PROTOCOL_VERSION])
        if not isinstance(result, (list, tuple)) or not result or not result[0]:
            raise ProtocolError(f'server did not agree a protocol version: {result!r}')
        banner = str(result[0])

        session.set_notification_handler(HEADERS_SUBSCRIBE, self._on_new_tip)
        try:
            tip = await session.send_request(HEADERS_SUBSCRIBE)
        except RPCError as e:
            logger.warning("header subscription failed: %s", e)
            tip = None
        return banner, tip

    def _handshake_complete(self, session: Any, banner: str, tip: Any) -> None:
        self._session = session
        self.server_banner = banner
        self.quirks = ServerQuirks.from_banner(banner)
        if self._batching_override is not None:
            self.quirks = attr.evolve(self.quirks, batching_disabled=self._batching_override)
        if self.quirks.batching_disabled:
            logger.info("batching disabled for server '%s'", banner)
        self._connection_attempts = 0
        self._was_connected = True

        height = _tip_height(tip)
        if height is None:
            logger.warning("no usable tip from %s, connection degraded", session.peer)
            self._set_state(ConnectionState.DEGRADED)
        else:
            self.tip.update(height)
            logger.info("connected to %s '%s' at height %d", session.peer, banner, height)
            self._set_state(ConnectionState.CONNECTED)

    async def _maintain_session(self, peer: Peer, ready: asyncio.Future[None]) -> None:
        session = None
        failure: str | None = None
        session_logger = logs.get_logger(f'[{peer} {peer.transport}]')
        try:
            async with self._connector(peer, partial(KBSession, peer, session_logger)) \
                    as session:
                try:
                    banner, tip = await self._handshake(session)
                except (RPCError, ProtocolError) as error:
                    failure = f'handshake failed: {error}'
                    return
                if ready.done():
                    return
                self._handshake_complete(session, banner, tip)
                ready.set_result(None)

                async with TaskGroup() as group:
                    await group.spawn(self._ping_loop, session)
                    await session.wait_closed()
                    await group.cancel_remaining()
        except (OSError, TaskTimeout) as error:
            failure = str(error) or type(error).__name__
        finally:
            if not ready.done():
                ready.set_exception(ConnectionFailedError(
                    _('could not connect to {}: {}').format(peer, failure or _('cancelled'))))
            elif failure is not None:
                logger.warning("session with %s ended: %s", peer, failure)
            if session is not None:
                self._session_closed(session)

    def _session_closed(self, session: Any) -> None:
        if session is not self._session:
            return
        self._session = None
        if self.is_connected():
            self.on_transport_error()

    def on_transport_error(self, error: Exception | None=None) -> None:
        '''The transport to a connected server has gone away.

        Only the first report of an outage does anything.'''
        if not self.is_connected():
            return
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("lost connection to %s: %s", self.peer, error or _('closed'))
        session = self._session
        if session is not None and not session.is_closing():
            self._spawn(session.close())
        if self._shutting_down or self.is_disabled():
            return
        onion = self._candidate is not None and self._candidate.is_onion()
        self._schedule_reconnect(ONION_RECONNECT_DELAY if onion else RECONNECT_DELAY)

    def _spawn(self, coro) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)
        return task

    def _schedule_reconnect(self, delay: float) -> asyncio.Task[Any]:
        return self._spawn(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await sleep(delay)
        try:
            await self.ensure_connected()
        except FatalConnectivityError as e:
            logger.error("%s", e)

    async def ensure_connected(self) -> None:
        '''Connect if not already connected, trying up to `MAX_CONNECTION_ATTEMPTS` times.

        Raises `FatalConnectivityError` once the attempts for this outage are used up.
        '''
        if self.is_disabled():
            logger.debug("connections are disabled")
            return
        async with self._connect_lock:
            while not self.is_connected():
                peer = None
                try:
                    peer = self.select_peer()
                    await self.connect(peer)
                except ConnectionFailedError as e:
                    self._connection_attempts += 1
                    logger.warning("connection attempt %d failed: %s",
                        self._connection_attempts, e)
                    if self._connection_attempts >= MAX_CONNECTION_ATTEMPTS:
                        self._present_connectivity_alert(peer)
                        raise FatalConnectivityError(peer, self._connection_attempts) from e
                    await sleep(RETRY_DELAY)

    def _present_connectivity_alert(self, peer: Peer | None) -> None:
        if self.is_disabled():
            return
        self.trigger_callback('connectivity_alert', peer, ALERT_ACTIONS)

    def respond_to_alert(self, action: str) -> asyncio.Task[Any] | None:
        if action == ALERT_RETRY:
            self._connection_attempts = 0
            return self._schedule_reconnect(RECONNECT_DELAY)
        if action == ALERT_RESET_TO_DEFAULT_SERVER:
            self.reset_to_default_server()
            self._connection_attempts = 0
            return self._schedule_reconnect(RECONNECT_DELAY)
        if action == ALERT_CANCEL:
            logger.info("reconnection cancelled by the user")
            return None
        raise ValueError(f'unknown alert action {action!r}')

    def _transport_alive(self) -> bool:
        return self._session is not None and not self._session.is_closing()

    async def wait_until_connected(self, timeout: float=WAIT_TIMEOUT) -> bool:
        '''Raises `ConnectionTimeoutError` if there is no connection within `timeout` seconds.'''
        if self.is_disabled():
            return False
        waited = 0.0
        while True:
            if self.state == ConnectionState.CONNECTED:
                return True
            if self._was_connected and self._transport_alive():
                return True
            if waited >= timeout:
                raise ConnectionTimeoutError()
            await sleep(WAIT_POLL_INTERVAL)
            waited += WAIT_POLL_INTERVAL

    async def _on_new_tip(self, json_tip: Any) -> None:
        height = _tip_height(json_tip)
        if height is None:
            logger.debug("ignoring unusable header notification %r", json_tip)
            return
        self.tip.update(height)
        if self.state == ConnectionState.DEGRADED:
            self._set_state(ConnectionState.CONNECTED)
        self.trigger_callback('tip', height)

    async def _ping_loop(self, session: Any) -> None:
        while True:
            await sleep(PING_INTERVAL)
            if not await self.ping():
                await session.close()
                return

    async def ping(self) -> bool:
        session = self._session
        if session is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        try:
            async with timeout_after(PING_TIMEOUT):
                await session.send_request('server.ping')
        except (RPCError, TaskTimeout, OSError) as e:
            logger.warning("ping to %s failed: %s", self.peer, e)
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        return True

    async def _close_session(self) -> None:
        # Leave the disconnected state first so the closing session is not reported as an
        # outage.
        self._set_state(ConnectionState.DISCONNECTED)
        session, task = self._session, self._session_task
        self._session = None
        self._session_task = None
        if session is not None and not session.is_closing():
            await session.close()
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def force_disconnect(self) -> None:
        logger.info("disconnecting from %s", self.peer)
        await self._close_session()

    async def shutdown(self) -> None:
        self._shutting_down = True
        for task in list(self._pending_tasks):
            task.cancel()
        await asyncio.gather(*self._pending_tasks, return_exceptions=True)
        await self._close_session()

    #
    # Requests
    #

    def _require_session(self) -> Any:
        if self.is_disabled():
            raise ConnectionsDisabledError()
        session = self._session
        if session is None or session.is_closing():
            raise NotConnectedError()
        return session

    @property
    def batching_disabled(self) -> bool:
        return self.quirks.batching_disabled

    def set_batching_disabled(self, flag: bool | None) -> None:
        '''Override the batching quirk detected from the server banner, None to stop overriding.

        Quirks are fixed for the life of a session, the override applies from the next
        handshake on.'''
        self._batching_override = flag

    async def request(self, method: str, *args: Any) -> Any:
        '''Raises `ConnectionsDisabledError`, `NotConnectedError` or `RPCError`.'''
        session = self._require_session()
        return await session.send_request(method, list(args))

    async def batch(self, method: str, params_list: Sequence[Sequence[Any]]) -> list[Any]:
        '''One JSON-RPC batch calling `method` once per entry in `params_list`.

        The result for each entry is either the server's result or the `RPCError` it returned.
        '''
        if not params_list:
            return []
        session = self._require_session()
        async with session.send_batch(raise_errors=False) as batch:
            for params in params_list:
                batch.add_request(method, list(params))
        return list(batch.results)

    async def broadcast(self, tx_hex: str) -> str:
        try:
            return await self.request('blockchain.transaction.broadcast', tx_hex)
        except RPCError as e:
            logger.error("broadcast failed, %s: %s", broadcast_failure_reason(e), e.message)
            raise

    async def server_features(self) -> dict[str, Any]:
        return await self.request('server.features')

    async def estimate_fee(self, blocks: int) -> int:
        '''The server's fee estimate for confirmation within `blocks`, in sat/byte.'''
        coin_per_kb = await self.request('blockchain.estimatefee', blocks)
        return fee_rate_from_coin_per_kb(coin_per_kb)

    async def get_fee_histogram(self) -> list[list[float]]:
        return await self.request('mempool.get_fee_histogram')

    async def test_connection(self, host: str, tcp_port: int | None=None,
            ssl_port: int | None=None) -> bool:
        peer = Peer.from_config(host, tcp_port, ssl_port)
        if peer is None:
            return False
        session_logger = logs.get_logger(f'[{peer} test]')
        try:
            async with timeout_after(TEST_CONNECTION_TIMEOUT):
                async with self._connector(peer, partial(KBSession, peer, session_logger)) \
                        as session:
                    await session.send_request('server.version',
                        [CLIENT_NAME, PROTOCOL_VERSION])
                    await session.send_request('server.ping')
        except (OSError, RPCError, TaskTimeout) as e:
            logger.info("test connection to %s failed: %s", peer, e)
            return False
        return True

    def get_config(self) -> dict[str, Any]:
        if self.peer is None:
            raise NotConnectedError()
        return {
            'host': self.peer.host,
            'port': self.peer.port,
            'transport': self.peer.transport,
            'server_name': self.server_banner,
            'connected': self.is_connected() and self._transport_alive(),
        }

    def seconds_since_last_request(self) -> float:
        session = self._session
        if session is None or not session.last_request_time:
            return -1
        return time.time() - session.last_request_time

    def estimate_current_height(self) -> int:
        return self.tip.estimate_current_height()

    def calculate_block_time(self, height: int) -> int:
        return self.tip.calculate_block_time(height)
