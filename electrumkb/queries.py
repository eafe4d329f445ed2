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

from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence, TYPE_CHECKING

from aiorpcx import RPCError, TaskGroup, ignore_after

from .bitcoin import address_to_scripthash
from .fees import (
    FAST_BLOCKS, FeeEstimates, MEDIUM_BLOCKS, SLOW_BLOCKS, combine_estimates
)
from .logs import logs
from .transaction import Transaction
from .util import chunks

if TYPE_CHECKING:
    from .cache import TransactionCache
    from .network import ConnectionManager


logger = logs.get_logger("queries")

BALANCE_CHUNK_SIZE = 200
UTXO_CHUNK_SIZE = 100
HISTORY_CHUNK_SIZE = 100
TRANSACTION_CHUNK_SIZE = 45

# The JSON-RPC error code servers use when a response would exceed their size limit.
RESPONSE_TOO_LARGE_CODE = -32600
VERBOSE_UNSUPPORTED_MESSAGE = 'verbose transactions are currently unsupported'

FEE_HISTOGRAM_TIMEOUT = 15.0
PROFILE_TIMEOUT = 15.0

DEFAULT_PROFILE: dict[str, Any] = {
    'creator': '',
    'owner': '',
    'signer': '',
    'name': '',
    'link': '',
    'appData': '',
    'rps': 0,
    'generatedRPs': 0,
    'ownedProfilesCount': 0,
    'isRented': False,
    'tenant': '',
    'rentedAt': 0,
    'duration': 0,
    'isCandidate': False,
    'isBanned': False,
    'contribution': 0,
    'isDomain': False,
    'offeredAt': 0,
    'bidAmount': 0,
    'buyer': '',
    'balance': 0,
    'bidTarget': '',
    'ownedProfiles': [],
}

QueryResults = dict[str, Any]


def _is_verbose_unsupported(error: RPCError) -> bool:
    return str(error.message).startswith(VERBOSE_UNSUPPORTED_MESSAGE)


def _normalize_output_addresses(tx: dict[str, Any]) -> None:
    # Bitcoin Core 22.0 replaced the "addresses" list with a single "address".
    for output in tx.get('vout') or []:
        script_pubkey = output.get('scriptPubKey') if isinstance(output, dict) else None
        if isinstance(script_pubkey, dict) and script_pubkey.get('address'):
            script_pubkey['addresses'] = [ script_pubkey['address'] ]


def normalize_profile(raw_profile: Any) -> dict[str, Any]:
    '''Coerce a `blockchain.scripthash.get_profile` result onto the default profile shape.'''
    profile = dict(DEFAULT_PROFILE)
    profile['ownedProfiles'] = []
    if not isinstance(raw_profile, dict):
        return profile
    for key, default in DEFAULT_PROFILE.items():
        if key in ('ownedProfiles', 'ownedProfilesCount'):
            continue
        value = raw_profile.get(key)
        if value is None:
            continue
        if isinstance(default, bool):
            profile[key] = bool(value)
        elif isinstance(default, (int, float)):
            try:
                number = float(value or 0)
            except (TypeError, ValueError):
                logger.warning("profile field '%s' is not a number: %r", key, value)
                continue
            profile[key] = int(number) if number.is_integer() else number
        else:
            profile[key] = str(value or '')
    owned = raw_profile.get('ownedProfiles')
    if isinstance(owned, list):
        profile['ownedProfiles'] = owned
        profile['ownedProfilesCount'] = len(owned)
    return profile


class QueryLayer:
    '''Address and transaction lookups spread over as few server round trips as possible.

    When the server supports JSON-RPC batches each chunk of keys is a single batch, otherwise
    each key is requested separately and concurrently. Per-key server errors are logged and the
    key is left out of the result; connectivity errors propagate to the caller.
    '''

    def __init__(self, manager: ConnectionManager, cache: TransactionCache | None=None) -> None:
        self._manager = manager
        self._cache = cache
        # The confirmed height of every transaction seen in an address history.
        self.tx_heights: dict[str, int] = {}

    async def _request_capturing(self, method: str, args: Sequence[Any]) -> Any:
        try:
            return await self._manager.request(method, *args)
        except RPCError as e:
            return e

    async def _query(self, method: str, keys: Sequence[str],
            make_args: Callable[[str], Sequence[Any]]) -> QueryResults:
        '''Call `method` once per key, returning the result or `RPCError` for each key.'''
        if not keys:
            return {}
        if not self._manager.batching_disabled:
            results = await self._manager.batch(method, [ make_args(key) for key in keys ])
            return dict(zip(keys, results))

        tasks = {}
        async with TaskGroup() as group:
            for key in keys:
                task = await group.spawn(self._request_capturing(method, make_args(key)))
                tasks[task] = key
        return { key: task.result() for task, key in tasks.items() }

    def _scripthash_map(self, addresses: Iterable[str]) -> dict[str, str]:
        return { address_to_scripthash(address): address for address in addresses }

    def _record_history_heights(self, history: Any) -> None:
        for item in history or []:
            if isinstance(item, dict) and item.get('tx_hash'):
                self.tx_heights[item['tx_hash']] = item.get('height', 0)

    #
    # Address lookups
    #

    async def multi_get_balance_by_address(self, addresses: Sequence[str],
            batch_size: int=BALANCE_CHUNK_SIZE) -> dict[str, Any]:
        ret: dict[str, Any] = { 'balance': 0, 'unconfirmed_balance': 0, 'addresses': {} }
        for chunk in chunks(addresses, batch_size):
            scripthash_to_address = self._scripthash_map(chunk)
            results = await self._query('blockchain.scripthash.get_balance',
                list(scripthash_to_address), lambda scripthash: [ scripthash ])
            for scripthash, result in results.items():
                if isinstance(result, RPCError):
                    logger.warning("balance lookup for %s failed: %s",
                        scripthash_to_address[scripthash], result)
                    continue
                try:
                    confirmed = int(result['confirmed'])
                    unconfirmed = int(result['unconfirmed'])
                except (KeyError, TypeError, ValueError):
                    logger.warning("malformed balance for %s: %r",
                        scripthash_to_address[scripthash], result)
                    continue
                ret['balance'] += confirmed
                ret['unconfirmed_balance'] += unconfirmed
                ret['addresses'][scripthash_to_address[scripthash]] = result
        return ret

    async def multi_get_utxo_by_address(self, addresses: Sequence[str],
            batch_size: int=UTXO_CHUNK_SIZE) -> dict[str, list[dict[str, Any]]]:
        ret: dict[str, list[dict[str, Any]]] = {}
        for chunk in chunks(addresses, batch_size):
            scripthash_to_address = self._scripthash_map(chunk)
            results = await self._query('blockchain.scripthash.listunspent',
                list(scripthash_to_address), lambda scripthash: [ scripthash ])
            for scripthash, result in results.items():
                address = scripthash_to_address[scripthash]
                if isinstance(result, RPCError):
                    logger.warning("utxo lookup for %s failed: %s", address, result)
                    continue
                utxos = []
                for item in result or []:
                    utxos.append({
                        'address': address,
                        'txid': item['tx_hash'],
                        'vout': item['tx_pos'],
                        'value': item['value'],
                        'height': item['height'],
                    })
                ret[address] = utxos
        return ret

    async def multi_get_history_by_address(self, addresses: Sequence[str],
            batch_size: int=HISTORY_CHUNK_SIZE) -> dict[str, list[dict[str, Any]]]:
        ret: dict[str, list[dict[str, Any]]] = {}
        for chunk in chunks(addresses, batch_size):
            scripthash_to_address = self._scripthash_map(chunk)
            results = await self._query('blockchain.scripthash.get_history',
                list(scripthash_to_address), lambda scripthash: [ scripthash ])
            for scripthash, result in results.items():
                address = scripthash_to_address[scripthash]
                if isinstance(result, RPCError):
                    logger.warning("history lookup for %s failed: %s", address, result)
                    result = []
                self._record_history_heights(result)
                ret[address] = [ dict(item, address=address) for item in result or [] ]
        return ret

    async def get_balance_by_address(self, address: str) -> dict[str, Any]:
        balance = await self._manager.request('blockchain.scripthash.get_balance',
            address_to_scripthash(address))
        balance['addr'] = address
        return balance

    async def get_transactions_by_address(self, address: str) -> list[dict[str, Any]]:
        history = await self._manager.request('blockchain.scripthash.get_history',
            address_to_scripthash(address))
        self._record_history_heights(history)
        return history

    async def get_mempool_transactions_by_address(self, address: str) -> list[dict[str, Any]]:
        return await self._manager.request('blockchain.scripthash.get_mempool',
            address_to_scripthash(address))

    #
    # Transaction lookups
    #

    def transaction_to_electrum_dict(self, tx_hex: str) -> dict[str, Any]:
        '''Decode a raw extended transaction into the verbose server response shape.

        Chain data is filled in from the recorded history heights. The confirmation count is
        extrapolated from the tip and can be wrong while block production is irregular.

        Raises `TransactionDecodeError`.
        '''
        tx = Transaction.from_hex(tx_hex)
        result = tx.to_electrum_dict()
        result['hex'] = tx_hex
        result.update(blockhash='', confirmations=0, time=0, blocktime=0)

        height = self.tx_heights.get(result['txid'], 0)
        if height > 0:
            confirmations = self._manager.estimate_current_height() - height
            # The estimate can lag behind the real tip.
            if confirmations < 0:
                confirmations = 1
            result['confirmations'] = confirmations
            result['time'] = result['blocktime'] = self._manager.calculate_block_time(height)
        return result

    async def _refetch_raw(self, txid: str) -> str | None:
        try:
            return await self._manager.request('blockchain.transaction.get', txid, False)
        except RPCError as e:
            logger.warning("raw fetch of %s failed: %s", txid, e)
            return None

    async def _recover(self, txid: str, error: RPCError, verbose: bool) -> Any:
        if error.code != RESPONSE_TOO_LARGE_CODE and not _is_verbose_unsupported(error):
            logger.warning("transaction %s lookup failed: %s", txid, error)
            return None
        logger.debug("fetching %s raw after: %s", txid, error.message)
        raw = await self._refetch_raw(txid)
        if raw is None or not verbose:
            return raw
        return self.transaction_to_electrum_dict(raw)

    async def _get_transactions(self, txids: Iterable[str], verbose: bool,
            batch_size: int) -> dict[str, Any]:
        txids = list(dict.fromkeys(txid for txid in txids if txid))
        ret: dict[str, Any] = {}
        if verbose and self._cache is not None:
            ret.update(self._cache.get_many(txids, True))
        missing = [ txid for txid in txids if txid not in ret ]
        if not missing:
            return ret

        fetched: dict[str, Any] = {}
        # Locally decoded transactions only have an extrapolated depth and are never cached.
        estimated: set[str] = set()
        for chunk in chunks(missing, batch_size):
            results = await self._query('blockchain.transaction.get', chunk,
                lambda txid: [ txid, verbose ])
            for txid, result in results.items():
                if isinstance(result, RPCError):
                    result = await self._recover(txid, result, verbose)
                    if result is None:
                        continue
                    estimated.add(txid)
                elif verbose and isinstance(result, str):
                    # The server ignored the verbose flag.
                    result = self.transaction_to_electrum_dict(result)
                    estimated.add(txid)
                if verbose and isinstance(result, dict):
                    result.pop('hex', None)
                    _normalize_output_addresses(result)
                fetched[txid] = result

        if verbose and self._cache is not None:
            self._cache.put_many({ txid: result for txid, result in fetched.items()
                if txid not in estimated }, True)
        ret.update(fetched)
        return ret

    async def multi_get_transactions_verbose(self, txids: Iterable[str],
            batch_size: int=TRANSACTION_CHUNK_SIZE) -> dict[str, dict[str, Any]]:
        '''Decoded transactions keyed by txid. Final ones come from and go to the cache.'''
        return await self._get_transactions(txids, True, batch_size)

    async def multi_get_transactions_raw(self, txids: Iterable[str],
            batch_size: int=TRANSACTION_CHUNK_SIZE) -> dict[str, str]:
        return await self._get_transactions(txids, False, batch_size)

    async def get_transactions_full_by_address(self, address: str) -> list[dict[str, Any]]:
        '''The history of `address` with every input's value and addresses filled in.

        Transactions are resolved through `multi_get_transactions_verbose`, so cached entries
        are used and the rest are batched. History entries that cannot be fetched are left
        out, and inputs whose funding transaction cannot be fetched are not enriched.
        '''
        history = await self.get_transactions_by_address(address)
        history_txids = list(dict.fromkeys(item['tx_hash'] for item in history or []
            if item.get('tx_hash')))
        transactions = await self.multi_get_transactions_verbose(history_txids)

        funding_txids = { txin.get('txid') for tx in transactions.values()
            for txin in tx.get('vin') or [] }
        funding_txids.discard(None)
        funding = await self.multi_get_transactions_verbose(
            txid for txid in funding_txids if txid not in transactions)
        funding.update(transactions)

        ret = []
        for txid in history_txids:
            if txid not in transactions:
                logger.warning("leaving %s out of the history of %s", txid, address)
                continue
            full = dict(transactions[txid])
            full['address'] = address
            inputs = []
            for txin in full.get('vin') or []:
                txin = dict(txin)
                prev_outputs = funding.get(txin.get('txid'), {}).get('vout') or []
                vout = txin.get('vout')
                if isinstance(vout, int) and 0 <= vout < len(prev_outputs):
                    prev_output = prev_outputs[vout]
                    txin['value'] = prev_output.get('value')
                    addresses = prev_output.get('scriptPubKey', {}).get('addresses')
                    if addresses:
                        txin['addresses'] = addresses
                inputs.append(txin)

            outputs = []
            for output in full.get('vout') or []:
                output = dict(output)
                addresses = output.get('scriptPubKey', {}).get('addresses')
                if addresses:
                    output['addresses'] = addresses
                outputs.append(output)

            full['inputs'] = inputs
            full['outputs'] = outputs
            for key in ('vin', 'vout', 'hex', 'hash'):
                full.pop(key, None)
            ret.append(full)
        return ret

    #
    # Fees and profiles
    #

    async def estimate_fees(self) -> FeeEstimates:
        histogram = None
        async with ignore_after(FEE_HISTOGRAM_TIMEOUT):
            histogram = await self._manager.get_fee_histogram()
        if histogram is None:
            logger.warning("no fee histogram within %.0f seconds", FEE_HISTOGRAM_TIMEOUT)

        secondary = FeeEstimates(
            fast=await self._manager.estimate_fee(FAST_BLOCKS),
            medium=await self._manager.estimate_fee(MEDIUM_BLOCKS),
            slow=await self._manager.estimate_fee(SLOW_BLOCKS),
        )
        return combine_estimates(histogram, secondary)

    async def verify_profile(self, profile_id: str) -> dict[str, Any]:
        '''The profile registered under `profile_id`, or the empty default profile.'''
        raw_profile = None
        try:
            async with ignore_after(PROFILE_TIMEOUT):
                raw_profile = await self._manager.request(
                    'blockchain.scripthash.get_profile', profile_id)
        except RPCError as e:
            logger.error("error verifying profile %s: %s", profile_id, e)
            return normalize_profile(None)
        if not raw_profile:
            logger.info("no profile found for %s", profile_id)
        return normalize_profile(raw_profile)
