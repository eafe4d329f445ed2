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

from typing import cast

from bech32 import decode as bech32_decode, encode as bech32_encode
from bitcoinx import (
    base58_decode_check, base58_encode_check, Base58Error, hash_to_hex_str, pack_byte, sha256
)

from .exceptions import InvalidAddressError
from .networks import Net

OP_0 = 0x00
OP_1 = 0x51
OP_16 = 0x60
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xa9
OP_CHECKSIG = 0xac


class ScriptKind:
    P2PKH = 'pubkeyhash'
    P2SH = 'scripthash'
    P2WPKH = 'witness_v0_keyhash'
    P2WSH = 'witness_v0_scripthash'
    P2TR = 'witness_v1_taproot'
    UNKNOWN_WITNESS = 'witness_unknown'
    NONSTANDARD = 'nonstandard'


def _push(data: bytes) -> bytes:
    assert len(data) < 0x4c
    return pack_byte(len(data)) + data


def p2pkh_script(hash160: bytes) -> bytes:
    return bytes((OP_DUP, OP_HASH160)) + _push(hash160) + bytes((OP_EQUALVERIFY, OP_CHECKSIG))


def p2sh_script(hash160: bytes) -> bytes:
    return bytes((OP_HASH160, )) + _push(hash160) + bytes((OP_EQUAL, ))


def witness_script(version: int, program: bytes) -> bytes:
    version_op = OP_0 if version == 0 else OP_1 + version - 1
    return bytes((version_op, )) + _push(program)


def address_to_script(address: str) -> bytes:
    '''Return the output script for an address on the current network.

    Raises `InvalidAddressError` if the address is not recognised.
    '''
    if address.lower().startswith(Net.SEGWIT_HRP + '1'):
        version, program = bech32_decode(Net.SEGWIT_HRP, address)
        if version is None:
            raise InvalidAddressError(f'invalid segwit address: {address}')
        return witness_script(version, bytes(program))

    try:
        raw = base58_decode_check(address)
    except (Base58Error, ValueError):
        raise InvalidAddressError(f'invalid address: {address}') from None
    if len(raw) != 21:
        raise InvalidAddressError(f'invalid address length: {address}')
    prefix, hash160 = raw[0], raw[1:]
    if prefix == Net.ADDRTYPE_P2PKH:
        return p2pkh_script(hash160)
    if prefix == Net.ADDRTYPE_P2SH:
        return p2sh_script(hash160)
    raise InvalidAddressError(f'unknown address prefix {prefix:#x}: {address}')


def classify_script(script: bytes) -> tuple[str, bytes | None, int]:
    '''Returns (kind, payload, witness version) for an output script.'''
    n = len(script)
    if (n == 25 and script[0] == OP_DUP and script[1] == OP_HASH160 and script[2] == 20
            and script[23] == OP_EQUALVERIFY and script[24] == OP_CHECKSIG):
        return ScriptKind.P2PKH, script[3:23], -1
    if n == 23 and script[0] == OP_HASH160 and script[1] == 20 and script[22] == OP_EQUAL:
        return ScriptKind.P2SH, script[2:22], -1
    if 4 <= n <= 42 and (script[0] == OP_0 or OP_1 <= script[0] <= OP_16) \
            and script[1] == n - 2:
        version = 0 if script[0] == OP_0 else script[0] - OP_1 + 1
        program = script[2:]
        if version == 0 and len(program) == 20:
            return ScriptKind.P2WPKH, program, version
        if version == 0 and len(program) == 32:
            return ScriptKind.P2WSH, program, version
        if version == 1 and len(program) == 32:
            return ScriptKind.P2TR, program, version
        return ScriptKind.UNKNOWN_WITNESS, program, version
    return ScriptKind.NONSTANDARD, None, -1


def script_to_address(script: bytes) -> str | None:
    '''The address for a standard output script, or None for anything else.'''
    kind, payload, version = classify_script(script)
    if payload is None:
        return None
    if kind == ScriptKind.P2PKH:
        return cast(str, base58_encode_check(pack_byte(Net.ADDRTYPE_P2PKH) + payload))
    if kind == ScriptKind.P2SH:
        return cast(str, base58_encode_check(pack_byte(Net.ADDRTYPE_P2SH) + payload))
    return bech32_encode(Net.SEGWIT_HRP, version, list(payload))


def is_address_valid(address: str) -> bool:
    try:
        address_to_script(address)
    except InvalidAddressError:
        return False
    return True


def scripthash_bytes(script: bytes) -> bytes:
    return cast(bytes, sha256(bytes(script)))


def scripthash_hex(script: bytes) -> str:
    '''The Electrum protocol lookup key for an output script.'''
    return cast(str, hash_to_hex_str(scripthash_bytes(script)))


def address_to_scripthash(address: str) -> str:
    return scripthash_hex(address_to_script(address))
