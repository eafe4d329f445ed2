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

'''Client for the support server that coordinates support tickets for transactions.'''

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from .logs import logs


logger = logs.get_logger("support-server")

REQUEST_TIMEOUT = 30.0

FAILED_RESPONSE = { "status": False }


def _failed_ticket_response() -> dict[str, Any]:
    return { "status": False, "tickets": [] }


class SupportServerClient:
    '''Talks plain HTTP to the support server at `host` ("hostname[:port]").

    None of the methods raise on transport or decoding failures, they return a response with a
    false "status" instead.
    '''

    def __init__(self, host: str, session: aiohttp.ClientSession | None=None) -> None:
        self._host = host
        self._session = session

    def _url(self, path: str) -> str:
        return f"http://{self._host}{path}"

    async def _request(self, method: str, path: str, payload: Any=None) -> Any:
        url = self._url(path)
        headers = { 'Content-Type': 'application/json' }
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
        owns_session = self._session is None
        session = aiohttp.ClientSession(timeout=timeout) if owns_session else self._session
        assert session is not None
        try:
            async with session.request(method, url, headers=headers, json=payload) as response:
                body = await response.read()
            if response.status >= 400:
                logger.warning("%s %s failed with status %s: %s", method, url,
                    response.status, response.reason)
            return json.loads(body)
        finally:
            if owns_session:
                await session.close()

    async def create_support_request(self, tx_hex: str, address: str,
            reward: int | float) -> dict[str, Any]:
        try:
            return await self._request('POST', '/support/request',
                { "tx": tx_hex, "address": address, "reward": reward })
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError):
            logger.exception("error creating support request")
            return dict(FAILED_RESPONSE)

    async def get_support_request_status(self, tx_hash: str) -> dict[str, Any]:
        try:
            return await self._request('GET', f'/support/request/{tx_hash}')
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError):
            logger.exception("error fetching support request %s", tx_hash)
            return _failed_ticket_response()

    async def get_available_difficulties(self) -> dict[str, Any]:
        try:
            return await self._request('GET', '/support/difficulties')
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError):
            logger.exception("error fetching support difficulties")
            return _failed_ticket_response()
