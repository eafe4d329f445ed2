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

import json
import sqlite3
import threading
from typing import Any, Iterable, TYPE_CHECKING

from .crypto import InvalidPassword, pw_decode, pw_encode, sha256d
from .exceptions import CacheDecodeError
from .logs import logs

if TYPE_CHECKING:
    from .simple_config import SimpleConfig

CACHE_FILENAME = "tx_cache.sqlite"
# Entries are encrypted at rest under a key derived once from this passphrase.
CACHE_PASSPHRASE = 'fyegjitkyf[eqjnc.lf'
# Shallower transactions can still be reorganised out of the chain.
MIN_CACHE_CONFIRMATIONS = 7

VERBOSE_SUFFIX = '_verbose'
RAW_SUFFIX = '_non_verbose'


def cache_key(tx_id: str, verbose: bool) -> str:
    return tx_id + (VERBOSE_SUFFIX if verbose else RAW_SUFFIX)


def is_cacheable(value: Any) -> bool:
    '''Only decoded transactions that are deep enough to be final are cached.'''
    if not isinstance(value, dict):
        return False
    confirmations = value.get("confirmations")
    return isinstance(confirmations, int) and confirmations >= MIN_CACHE_CONFIRMATIONS


class TransactionCache:
    '''A persistent encrypted store of final transaction lookup results.'''

    def __init__(self, db_path: str, passphrase: str=CACHE_PASSPHRASE) -> None:
        self._logger = logs.get_logger("tx-cache")
        self._state = threading.local()
        self._db_path = db_path
        self._secret = sha256d(passphrase)

        db = self._get_db()
        self._create(db)
        db.commit()

    @classmethod
    def from_config(cls, config: SimpleConfig) -> TransactionCache:
        return cls(config.file_path(CACHE_FILENAME))

    def _get_db(self) -> sqlite3.Connection:
        if not hasattr(self._state, "db"):
            self._state.db = sqlite3.connect(self._db_path)
        return self._state.db

    def _create(self, db: sqlite3.Connection) -> None:
        db.execute("CREATE TABLE IF NOT EXISTS Cache ("+
                        "Key TEXT PRIMARY KEY, "+
                        "Value TEXT NOT NULL)")

    def close(self) -> None:
        # This only closes the database instance held on the current thread.
        if hasattr(self._state, "db"):
            self._state.db.close()
            del self._state.db

    def _decode(self, key: str, text: str) -> Any:
        try:
            return json.loads(pw_decode(text, self._secret))
        except (InvalidPassword, ValueError) as e:
            raise CacheDecodeError(f"unreadable cache entry '{key}'") from e

    def get(self, tx_id: str, verbose: bool) -> Any | None:
        key = cache_key(tx_id, verbose)
        db = self._get_db()
        row = db.execute("SELECT Value FROM Cache WHERE Key=?", [key]).fetchone()
        if row is None:
            return None
        try:
            return self._decode(key, row[0])
        except CacheDecodeError:
            self._logger.exception("treating corrupt cache entry as a miss")
            return None

    def get_many(self, tx_ids: Iterable[str], verbose: bool) -> dict[str, Any]:
        results: dict[str, Any] = {}
        for tx_id in tx_ids:
            value = self.get(tx_id, verbose)
            if value is not None:
                results[tx_id] = value
        return results

    def put_many(self, values: dict[str, Any], verbose: bool) -> int:
        '''Write every final entry in one transaction, returns how many were written.'''
        rows = [ (cache_key(tx_id, verbose), pw_encode(json.dumps(value), self._secret))
            for tx_id, value in values.items() if is_cacheable(value) ]
        if not rows:
            return 0
        db = self._get_db()
        with db:
            db.executemany("INSERT OR REPLACE INTO Cache (Key, Value) VALUES (?, ?)", rows)
        self._logger.debug("cached %d of %d transactions", len(rows), len(values))
        return len(rows)

    def delete(self, tx_id: str, verbose: bool) -> None:
        db = self._get_db()
        with db:
            db.execute("DELETE FROM Cache WHERE Key=?", [cache_key(tx_id, verbose)])
