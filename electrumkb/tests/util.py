import asyncio
import time
from typing import Any

from aiorpcx import RPCError

from electrumkb.bitcoin import p2pkh_script, script_to_address
from electrumkb.fees import fee_rate_from_coin_per_kb
from electrumkb.network import LatestBlockTip
from electrumkb.transaction import SupportTicket, Transaction, XTxInput, XTxOutput


BLOCK_TIME_BASE = 1600000000


def make_addresses(count: int) -> list[str]:
    addresses = []
    for i in range(count):
        hash160 = bytes((i // 256, i % 256)) + bytes(18)
        addresses.append(script_to_address(p2pkh_script(hash160)))
    return addresses


def make_ticket(n: int=0) -> SupportTicket:
    return SupportTicket(
        supported_hash=bytes([n]) * 32,
        worker_pubkey=bytes.fromhex('02' + '11' * 32),
        height=700000 + n,
        support_pubkey=bytes.fromhex('03' + '22' * 32),
        reward_type=n % 3,
        timestamp=1700000000 + n,
        nonce=-n,
    )


def make_transaction(tickets: int=0, witness: bool=False, seed: int=1) -> Transaction:
    txin = XTxInput(prev_hash=bytes([seed]) * 32, prev_idx=1,
        script_sig=b'' if witness else bytes.fromhex('51'), sequence=0xfffffffe)
    if witness:
        txin.witness = [ bytes.fromhex('30' * 71), bytes.fromhex('02' + '33' * 32) ]
    outputs = [
        XTxOutput(150000000, p2pkh_script(bytes(20))),
        XTxOutput(2 ** 62, bytes.fromhex('0014' + '44' * 20)),
    ]
    tx = Transaction(version=2, inputs=[ txin ], outputs=outputs, locktime=12345)
    for n in range(tickets):
        tx.add_ticket(make_ticket(n))
    return tx


class FakeResponder:
    '''Canned server responses keyed by method, a value or a callable taking the arguments.

    A response that is an exception instance is raised.'''

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses

    def respond(self, method: str, args: Any) -> Any:
        response = self.responses[method]
        if callable(response):
            response = response(*args)
        if isinstance(response, Exception):
            raise response
        return response


class FakeBatch:
    def __init__(self, session: "FakeSession") -> None:
        self._session = session
        self._requests: list[tuple[str, Any]] = []
        self.results: tuple[Any, ...] = ()

    def add_request(self, method: str, args: Any=()) -> None:
        self._requests.append((method, list(args)))

    async def __aenter__(self) -> "FakeBatch":
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        if exc_type is not None:
            return
        self._session.batches.append(list(self._requests))
        results = []
        for method, args in self._requests:
            try:
                results.append(self._session.responder.respond(method, args))
            except RPCError as e:
                results.append(e)
        self.results = tuple(results)


class FakeSession:
    '''Stands in for `KBSession` without a transport.'''

    def __init__(self, peer, responder: FakeResponder) -> None:
        self.peer = peer
        self.responder = responder
        self.requests: list[tuple[str, list[Any]]] = []
        self.batches: list[list[tuple[str, Any]]] = []
        self.handlers: dict[str, Any] = {}
        self.last_request_time = 0.0
        self._closing = False
        self._closed_event = asyncio.Event()

    async def send_request(self, method: str, args: Any=()) -> Any:
        self.requests.append((method, list(args)))
        self.last_request_time = time.time()
        await asyncio.sleep(0)
        return self.responder.respond(method, args)

    def send_batch(self, raise_errors: bool=False) -> FakeBatch:
        self.last_request_time = time.time()
        return FakeBatch(self)

    def set_notification_handler(self, method: str, handler: Any) -> None:
        self.handlers[method] = handler

    def is_closing(self) -> bool:
        return self._closing

    async def close(self) -> None:
        self._closing = True
        self._closed_event.set()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()


class _FakeConnection:
    def __init__(self, connector: "FakeConnector", peer) -> None:
        self._connector = connector
        self._peer = peer
        self._session: FakeSession | None = None

    async def __aenter__(self) -> FakeSession:
        connector = self._connector
        connector.attempts.append(self._peer)
        if connector.failures > 0:
            connector.failures -= 1
            raise ConnectionRefusedError(f'connection to {self._peer} refused')
        self._session = FakeSession(self._peer, connector.responder)
        connector.sessions.append(self._session)
        return self._session

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:
        if self._session is not None:
            await self._session.close()


class FakeConnector:
    '''Replaces `connect_rs`, failing the first `failures` connection attempts.'''

    def __init__(self, responses: dict[str, Any] | None=None, failures: int=0) -> None:
        self.responder = FakeResponder(responses if responses is not None
            else default_server_responses())
        self.failures = failures
        self.attempts: list[Any] = []
        self.sessions: list[FakeSession] = []

    def __call__(self, peer, session_factory) -> _FakeConnection:
        return _FakeConnection(self, peer)


def default_server_responses() -> dict[str, Any]:
    return {
        'server.version': [ 'ElectrumX 1.16.0', '1.4' ],
        'blockchain.headers.subscribe': { 'height': 1000, 'hex': '00' * 80 },
        'server.ping': None,
        'server.features': { 'protocol_max': '1.4' },
        'blockchain.estimatefee': 0.00001024,
        'mempool.get_fee_histogram': [ [ 5, 1000000 ] ],
        'blockchain.transaction.broadcast': lambda tx_hex: 'ab' * 32,
    }


class FakeManager:
    '''The parts of `ConnectionManager` the query layer uses.'''

    def __init__(self, responses: dict[str, Any], batching_disabled: bool=False,
            height: int=1000) -> None:
        self.responder = FakeResponder(responses)
        self.batching_disabled = batching_disabled
        self.height = height
        self.tip = LatestBlockTip()
        self.requests: list[tuple[str, tuple[Any, ...]]] = []
        self.batches: list[tuple[str, list[list[Any]]]] = []

    async def request(self, method: str, *args: Any) -> Any:
        self.requests.append((method, args))
        await asyncio.sleep(0)
        return self.responder.respond(method, args)

    async def batch(self, method: str, params_list) -> list[Any]:
        self.batches.append((method, [ list(params) for params in params_list ]))
        results = []
        for params in params_list:
            try:
                results.append(self.responder.respond(method, params))
            except RPCError as e:
                results.append(e)
        return results

    async def get_fee_histogram(self) -> Any:
        return await self.request('mempool.get_fee_histogram')

    async def estimate_fee(self, blocks: int) -> int:
        return fee_rate_from_coin_per_kb(await self.request('blockchain.estimatefee', blocks))

    def estimate_current_height(self) -> int:
        return self.height

    def calculate_block_time(self, height: int) -> int:
        return BLOCK_TIME_BASE + height
