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

'''Decryption of one-time codes sent from a peer.

The sender generates an ephemeral key pair, multiplies the recipient's public key by the
ephemeral secret and encrypts the code with AES-256-GCM under the SHA-256 of the resulting
point. The recipient repeats the multiplication with its own secret and the ephemeral
public key to arrive at the same symmetric key.
'''

from __future__ import annotations
import json
from typing import Any, Iterable
from urllib.parse import parse_qs, urlparse

import attr
from bitcoinx import base58_decode_check, Base58Error, PrivateKey, PublicKey

from .crypto import aes_gcm_decrypt, sha256
from .exceptions import NoMatchingWalletError, OtpDecryptionError
from .logs import logs
from .networks import Net


logger = logs.get_logger("otp")

DECRYPT_URL_PREFIX = "bluewallet://decrypt"


class _DecryptFailed:
    '''The single terminal outcome of a failed decryption.'''

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "DECRYPT_FAILED"


DECRYPT_FAILED = _DecryptFailed()


@attr.s(slots=True, frozen=True)
class OtpPayload:
    ephemeral_public_key: str = attr.ib()
    iv: str = attr.ib()
    auth_tag: str = attr.ib()
    encrypted_message: str = attr.ib()
    recipient_public_key: str = attr.ib(default="")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OtpPayload:
        try:
            return cls(
                ephemeral_public_key=data["ephemeralPublicKey"],
                iv=data["iv"],
                auth_tag=data["authTag"],
                encrypted_message=data["encryptedMessage"],
                recipient_public_key=data.get("publicKey", ""),
            )
        except (KeyError, TypeError) as e:
            raise OtpDecryptionError(f"malformed OTP payload: {e}") from e

    @classmethod
    def from_json(cls, text: str) -> OtpPayload:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise OtpDecryptionError(f"OTP payload is not JSON: {e}") from e
        return cls.from_dict(data)


def private_key_from_wif(wif: str) -> PrivateKey:
    '''Raises `ValueError` for a malformed key or one for another network.'''
    try:
        raw = base58_decode_check(wif)
    except Base58Error as e:
        raise ValueError(f"invalid WIF: {e}") from e
    if raw[0] != Net.WIF_PREFIX:
        raise ValueError(f"WIF prefix {raw[0]:#x} is not for {Net.NAME}")
    if len(raw) == 34 and raw[-1] == 1:
        return PrivateKey(raw[1:33])
    if len(raw) == 33:
        return PrivateKey(raw[1:], compressed=False)
    raise ValueError("invalid WIF length")


def derive_shared_key(ephemeral_public_key: PublicKey, private_key: PrivateKey) -> bytes:
    shared_point = ephemeral_public_key.multiply(private_key.to_bytes())
    return sha256(shared_point.to_bytes(compressed=ephemeral_public_key.is_compressed()))


def decrypt(payload: OtpPayload, private_key: PrivateKey) -> str | _DecryptFailed:
    '''Returns the plaintext code, or `DECRYPT_FAILED`. This never raises.'''
    logger.debug("decrypting OTP, iv %s auth tag %s", payload.iv, payload.auth_tag)
    try:
        ephemeral_public_key = PublicKey.from_hex(payload.ephemeral_public_key)
    except (TypeError, ValueError):
        logger.error("invalid ephemeral public key %s", payload.ephemeral_public_key)
        return DECRYPT_FAILED

    try:
        key = derive_shared_key(ephemeral_public_key, private_key)
    except (TypeError, ValueError):
        logger.exception("failed to derive shared secret")
        return DECRYPT_FAILED
    logger.debug("derived shared secret")

    try:
        iv = bytes.fromhex(payload.iv)
        tag = bytes.fromhex(payload.auth_tag)
        ciphertext = bytes.fromhex(payload.encrypted_message)
    except ValueError:
        logger.error("OTP payload fields are not hex")
        return DECRYPT_FAILED
    logger.debug("iv length %d, auth tag length %d", len(iv), len(tag))

    try:
        plaintext = aes_gcm_decrypt(key, iv, ciphertext, tag)
    except ValueError:
        logger.error("OTP authentication failed")
        return DECRYPT_FAILED

    try:
        result = plaintext.decode('utf-8')
    except UnicodeDecodeError:
        logger.error("decrypted OTP is not valid text")
        return DECRYPT_FAILED
    logger.debug("decrypted OTP")
    return result


def find_target_key(recipient_public_key: str, private_keys: Iterable[PrivateKey]) \
        -> PrivateKey | None:
    '''The key whose compressed public key matches the payload's recipient.'''
    logger.debug("finding key for public key %s", recipient_public_key)
    target = recipient_public_key.lower()
    for private_key in private_keys:
        if private_key.public_key.to_hex(compressed=True) == target:
            logger.debug("found matching key")
            return private_key
    logger.debug("no matching key")
    return None


def decrypt_otp(encrypted_data: str, private_keys: Iterable[PrivateKey]) -> str:
    '''Decrypts a JSON encoded OTP payload with whichever of the keys it was sent to.

    Raises `NoMatchingWalletError` or `OtpDecryptionError`.'''
    payload = OtpPayload.from_json(encrypted_data)
    private_key = find_target_key(payload.recipient_public_key, private_keys)
    if private_key is None:
        raise NoMatchingWalletError()
    result = decrypt(payload, private_key)
    if result is DECRYPT_FAILED:
        raise OtpDecryptionError()
    assert isinstance(result, str)
    return result


def otp_from_url(url: str) -> str | None:
    '''The encrypted payload from a decrypt link, or None if this is not a decrypt link.'''
    if not url.startswith(DECRYPT_URL_PREFIX):
        return None
    values = parse_qs(urlparse(url).query).get("otp")
    if not values or not values[0]:
        raise OtpDecryptionError("No OTP provided")
    return values[0]
