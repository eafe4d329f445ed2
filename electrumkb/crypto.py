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

import base64
import hashlib
import os
from typing import Union

from Cryptodome.Cipher import AES


class InvalidPadding(Exception):
    pass


class InvalidPassword(Exception):
    pass


def to_bytes(something: Union[bytes, str], encoding: str='utf8') -> bytes:
    if isinstance(something, bytes):
        return something
    if isinstance(something, str):
        return something.encode(encoding)
    raise TypeError("Not a string or bytes like object")


def append_PKCS7_padding(data: bytes) -> bytes:
    padlen = 16 - (len(data) % 16)
    return data + bytes([padlen]) * padlen


def strip_PKCS7_padding(data: bytes) -> bytes:
    if len(data) % 16 != 0 or len(data) == 0:
        raise InvalidPadding("invalid length")
    padlen = data[-1]
    if not 0 < padlen <= 16:
        raise InvalidPadding("invalid padding byte (out of range)")
    for i in data[-padlen:]:
        if i != padlen:
            raise InvalidPadding("invalid padding byte (inconsistent)")
    return data[0:-padlen]


def aes_encrypt_with_iv(key: bytes, iv: bytes, data: bytes) -> bytes:
    data = append_PKCS7_padding(data)
    return AES.new(key, AES.MODE_CBC, iv).encrypt(data)


def aes_decrypt_with_iv(key: bytes, iv: bytes, data: bytes) -> bytes:
    cipher = AES.new(key, AES.MODE_CBC, iv)
    data = cipher.decrypt(data)
    try:
        return strip_PKCS7_padding(data)
    except InvalidPadding:
        raise InvalidPassword()


def aes_gcm_decrypt(key: bytes, iv: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    '''Authenticated decryption, raises `ValueError` if the tag does not verify.'''
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv)
    return cipher.decrypt_and_verify(ciphertext, tag)


def aes_gcm_encrypt(key: bytes, iv: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    '''Returns (ciphertext, tag).'''
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv)
    return cipher.encrypt_and_digest(plaintext)


def EncodeAES_base64(secret: bytes, msg: bytes) -> bytes:
    """Returns base64 encoded ciphertext."""
    iv = bytes(os.urandom(16))
    ct = aes_encrypt_with_iv(secret, iv, msg)
    return base64.b64encode(iv + ct)


def DecodeAES_base64(secret: bytes, ciphertext_b64: Union[bytes, str]) -> bytes:
    ciphertext = bytes(base64.b64decode(ciphertext_b64))
    iv, e = ciphertext[:16], ciphertext[16:]
    return aes_decrypt_with_iv(secret, iv, e)


def pw_encode(data: str, secret: bytes) -> str:
    return EncodeAES_base64(secret, to_bytes(data, "utf8")).decode('utf8')


def pw_decode(data: str, secret: bytes) -> str:
    try:
        return DecodeAES_base64(secret, data).decode("utf8")
    except (InvalidPassword, ValueError) as e:
        raise InvalidPassword() from e


def sha256(x: Union[bytes, str]) -> bytes:
    x = to_bytes(x, 'utf8')
    return hashlib.sha256(x).digest()


def sha256d(x: Union[bytes, str]) -> bytes:
    x = to_bytes(x, 'utf8')
    return sha256(sha256(x))
