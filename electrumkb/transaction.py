# Electrum - lightweight Bitcoin client
# Copyright (C) 2011 Thomas Voegtlin
# Copyright (C) 2019 Neil Booth
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

'''The extended transaction format.

A standard (optionally segwit) transaction followed, after the locktime, by a vector of
support tickets. The "pure" serialization stops at the locktime and is what the transaction
id is computed from, so that attaching tickets never changes a transaction's id.
'''

from __future__ import annotations
from io import BytesIO
import math
from struct import error as struct_error
from typing import Any, Callable, cast, TypeVar

import attr
from bitcoinx import (
    double_sha256, hash_to_hex_str, pack_byte, pack_le_int32, pack_le_int64,
    pack_le_uint32, pack_list, pack_varbytes, read_le_int32, read_le_int64, read_le_uint32,
    read_varint
)

from .bitcoin import classify_script, script_to_address
from .exceptions import TransactionDecodeError
from .logs import logs


logger = logs.get_logger("transaction")

SEGWIT_MARKER = 0x00
SEGWIT_FLAG = 0x01
COIN = 100000000
WITNESS_SCALE_FACTOR = 4

ReadBytesFunc = Callable[[int], bytes]
T = TypeVar('T')


class _StrictReader:
    '''A read function over a byte buffer that never returns short.'''

    def __init__(self, raw: bytes) -> None:
        self._stream = BytesIO(raw)
        self._size = len(raw)

    def read(self, n: int) -> bytes:
        result = self._stream.read(n)
        if len(result) != n:
            raise TransactionDecodeError(
                f'needed {n:,d} bytes at offset {self.tell() - len(result):,d}, '
                f'only {len(result):,d} remain')
        return result

    def tell(self) -> int:
        return self._stream.tell()

    def seek(self, offset: int) -> None:
        self._stream.seek(offset)

    def remaining(self) -> int:
        return self._size - self._stream.tell()


def xread_list(read: ReadBytesFunc, read_one: Callable[[ReadBytesFunc], T]) -> list[T]:
    '''Return a list of items.

    Each item is read with read_one, the stream begins with a count of the items.'''
    return [read_one(read) for _ in range(read_varint(read))]


def xread_varbytes(read: ReadBytesFunc) -> bytes:
    n = read_varint(read)
    result = read(n)
    if len(result) != n:
        raise TransactionDecodeError(f'varbytes requires a buffer of {n:,d} bytes')
    return result


def read_uint8(read: ReadBytesFunc) -> int:
    return read(1)[0]


@attr.s(slots=True, frozen=True)
class SupportTicket:
    '''A record rewarding a worker/support key pair, carried after the locktime.'''
    supported_hash: bytes = attr.ib()
    worker_pubkey: bytes = attr.ib()
    height: int = attr.ib()
    support_pubkey: bytes = attr.ib()
    reward_type: int = attr.ib()
    timestamp: int = attr.ib()
    nonce: int = attr.ib()

    @classmethod
    def read(cls, read: ReadBytesFunc) -> SupportTicket:
        return cls(
            supported_hash=xread_varbytes(read),
            worker_pubkey=xread_varbytes(read),
            height=read_le_int32(read),
            support_pubkey=xread_varbytes(read),
            reward_type=read_uint8(read),
            timestamp=read_le_int32(read),
            nonce=read_le_int32(read),
        )

    def to_bytes(self) -> bytes:
        return b''.join((
            pack_varbytes(self.supported_hash),
            pack_varbytes(self.worker_pubkey),
            pack_le_int32(self.height),
            pack_varbytes(self.support_pubkey),
            pack_byte(self.reward_type),
            pack_le_int32(self.timestamp),
            pack_le_int32(self.nonce),
        ))

    def to_json(self) -> dict[str, Any]:
        return {
            "supportedHash": self.supported_hash.hex(),
            "workerPubKey": self.worker_pubkey.hex(),
            "height": self.height,
            "supportPubKey": self.support_pubkey.hex(),
            "rewardType": self.reward_type,
            "timestamp": self.timestamp,
            "nonce": self.nonce,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> SupportTicket:
        return cls(
            supported_hash=bytes.fromhex(data["supportedHash"]),
            worker_pubkey=bytes.fromhex(data["workerPubKey"]),
            height=int(data["height"]),
            support_pubkey=bytes.fromhex(data["supportPubKey"]),
            reward_type=int(data["rewardType"]),
            timestamp=int(data["timestamp"]),
            nonce=int(data["nonce"]),
        )


@attr.s(slots=True)
class XTxInput:
    '''A transaction input with its witness stack.'''
    prev_hash: bytes = attr.ib()
    prev_idx: int = attr.ib()
    script_sig: bytes = attr.ib(default=b'')
    sequence: int = attr.ib(default=0xffffffff)
    witness: list[bytes] = attr.ib(default=attr.Factory(list))

    @classmethod
    def read(cls, read: ReadBytesFunc) -> XTxInput:
        return cls(
            prev_hash=read(32),
            prev_idx=read_le_uint32(read),
            script_sig=xread_varbytes(read),
            sequence=read_le_uint32(read),
        )

    def prevout_bytes(self) -> bytes:
        return self.prev_hash + pack_le_uint32(self.prev_idx)

    def prev_txid(self) -> str:
        return cast(str, hash_to_hex_str(self.prev_hash))

    def is_coinbase(self) -> bool:
        return self.prev_hash == bytes(32) and self.prev_idx == 0xffffffff

    def to_bytes(self) -> bytes:
        return b''.join((
            self.prevout_bytes(),
            pack_varbytes(self.script_sig),
            pack_le_uint32(self.sequence),
        ))

    def witness_bytes(self) -> bytes:
        return cast(bytes, pack_list(self.witness, pack_varbytes))

    def __repr__(self) -> str:
        return (
            f'XTxInput(prev_hash="{self.prev_txid()}", prev_idx={self.prev_idx}, '
            f'script_sig="{self.script_sig.hex()}", sequence={self.sequence}, '
            f'witness={[item.hex() for item in self.witness]})'
        )


@attr.s(slots=True)
class XTxOutput:
    value: int = attr.ib()
    script_pubkey: bytes = attr.ib()

    @classmethod
    def read(cls, read: ReadBytesFunc) -> XTxOutput:
        # Always a 64-bit integer, there is no narrowing of the satoshi value.
        value = read_le_int64(read)
        return cls(value, xread_varbytes(read))

    def to_bytes(self) -> bytes:
        return pack_le_int64(self.value) + pack_varbytes(self.script_pubkey)

    def address(self) -> str | None:
        return script_to_address(self.script_pubkey)

    def __repr__(self) -> str:
        return f'XTxOutput(value={self.value}, script_pubkey="{self.script_pubkey.hex()}")'


@attr.s(slots=True)
class Transaction:
    version: int = attr.ib(default=2)
    inputs: list[XTxInput] = attr.ib(default=attr.Factory(list))
    outputs: list[XTxOutput] = attr.ib(default=attr.Factory(list))
    locktime: int = attr.ib(default=0)
    tickets: list[SupportTicket] = attr.ib(default=attr.Factory(list))

    @classmethod
    def read(cls, read: ReadBytesFunc, tell: Callable[[], int], seek: Callable[[int], None],
            extended: bool=True) -> Transaction:
        '''Read a transaction from the stream.

        Raises `TransactionDecodeError` for short or malformed data.'''
        version = read_le_int32(read)

        has_witness = False
        offset = tell()
        marker_and_flag = read(2)
        if marker_and_flag[0] == SEGWIT_MARKER and marker_and_flag[1] == SEGWIT_FLAG:
            has_witness = True
        else:
            seek(offset)

        inputs = xread_list(read, XTxInput.read)
        outputs = xread_list(read, XTxOutput.read)
        if has_witness:
            for txin in inputs:
                txin.witness = xread_list(read, xread_varbytes)
            if not any(txin.witness for txin in inputs):
                raise TransactionDecodeError('transaction has superfluous witness data')
        locktime = read_le_uint32(read)

        tickets: list[SupportTicket] = []
        if extended:
            tickets = xread_list(read, SupportTicket.read)

        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime,
            tickets=tickets)

    @classmethod
    def from_bytes(cls, raw: bytes, extended: bool=True) -> Transaction:
        reader = _StrictReader(raw)
        try:
            tx = cls.read(reader.read, reader.tell, reader.seek, extended)
        except struct_error as e:
            raise TransactionDecodeError(str(e)) from e
        if reader.remaining():
            raise TransactionDecodeError(
                f'transaction has {reader.remaining():,d} unexpected trailing bytes')
        return tx

    @classmethod
    def from_pure_bytes(cls, raw: bytes) -> Transaction:
        return cls.from_bytes(raw, extended=False)

    @classmethod
    def from_hex(cls, text: str, extended: bool=True) -> Transaction:
        try:
            raw = bytes.fromhex(text)
        except (TypeError, ValueError) as e:
            raise TransactionDecodeError(f'invalid transaction hex: {e}') from e
        return cls.from_bytes(raw, extended)

    def has_witnesses(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].is_coinbase()

    def add_ticket(self, ticket: SupportTicket) -> None:
        self.tickets.append(ticket)

    def to_bytes(self, extended: bool=True, witness: bool=True) -> bytes:
        include_witness = witness and self.has_witnesses()
        parts = [ pack_le_int32(self.version) ]
        if include_witness:
            parts.append(bytes((SEGWIT_MARKER, SEGWIT_FLAG)))
        parts.append(pack_list(self.inputs, XTxInput.to_bytes))
        parts.append(pack_list(self.outputs, XTxOutput.to_bytes))
        if include_witness:
            parts.extend(txin.witness_bytes() for txin in self.inputs)
        parts.append(pack_le_uint32(self.locktime))
        if extended:
            parts.append(pack_list(self.tickets, SupportTicket.to_bytes))
        return b''.join(parts)

    def to_pure_bytes(self, witness: bool=True) -> bytes:
        return self.to_bytes(extended=False, witness=witness)

    def to_hex(self, extended: bool=True) -> str:
        return self.to_bytes(extended).hex()

    def __str__(self) -> str:
        return self.to_hex()

    def hash(self) -> bytes:
        return cast(bytes, double_sha256(self.to_bytes(extended=False, witness=False)))

    def txid(self) -> str:
        '''The base protocol id, unaffected by witness data and tickets.'''
        return cast(str, hash_to_hex_str(self.hash()))

    def wtxid(self) -> str:
        if self.is_coinbase():
            return cast(str, hash_to_hex_str(bytes(32)))
        return cast(str, hash_to_hex_str(double_sha256(self.to_bytes(extended=False))))

    def extended_hash(self) -> str:
        return cast(str, hash_to_hex_str(
            double_sha256(self.to_bytes(extended=True, witness=False))))

    def size(self) -> int:
        return len(self.to_bytes(extended=False))

    def base_size(self) -> int:
        return len(self.to_bytes(extended=False, witness=False))

    def weight(self) -> int:
        return self.base_size() * (WITNESS_SCALE_FACTOR - 1) + self.size()

    def vsize(self) -> int:
        return math.ceil(self.weight() / WITNESS_SCALE_FACTOR)

    def to_electrum_dict(self) -> dict[str, Any]:
        '''The shape of a verbose `blockchain.transaction.get` response, without chain data.'''
        raw = self.to_bytes()
        vin = []
        for txin in self.inputs:
            vin.append({
                "txid": txin.prev_txid(),
                "vout": txin.prev_idx,
                "scriptSig": { "hex": txin.script_sig.hex(), "asm": "" },
                "txinwitness": [ item.hex() for item in txin.witness ],
                "sequence": txin.sequence,
            })

        vout = []
        for n, output in enumerate(self.outputs):
            kind, _payload, _version = classify_script(output.script_pubkey)
            address = output.address()
            vout.append({
                "value": output.value / COIN,
                "n": n,
                "scriptPubKey": {
                    "asm": "",
                    "hex": output.script_pubkey.hex(),
                    "reqSigs": 1,
                    "type": kind,
                    "addresses": [ address ] if address is not None else [],
                },
            })

        return {
            "txid": self.txid(),
            "hash": self.wtxid(),
            "version": self.version,
            "size": len(raw),
            "vsize": self.vsize(),
            "weight": self.weight(),
            "locktime": self.locktime,
            "vin": vin,
            "vout": vout,
            "tickets": [ ticket.to_json() for ticket in self.tickets ],
            "hex": raw.hex(),
        }
