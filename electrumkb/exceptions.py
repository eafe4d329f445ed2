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

from .i18n import _


class ConnectivityError(Exception):
    '''The remote server could not be reached or stopped responding.'''


class ConnectionFailedError(ConnectivityError):
    pass


class ConnectionTimeoutError(ConnectivityError):
    def __str__(self):
        return _("Timed out waiting for the server connection")


class ConnectionsDisabledError(ConnectivityError):
    def __str__(self):
        return _("Server connections are disabled")


class FatalConnectivityError(ConnectivityError):
    '''Raised once the reconnection attempts for an outage are exhausted.'''

    def __init__(self, peer, attempts: int) -> None:
        super().__init__(peer, attempts)
        self.peer = peer
        self.attempts = attempts

    def __str__(self):
        return _("Unable to connect to {server}").format(server=str(self.peer))


class ProtocolError(Exception):
    '''The server returned something that does not match the protocol.'''


class TransactionDecodeError(ValueError):
    pass


class InvalidAddressError(ValueError):
    pass


class CacheDecodeError(Exception):
    pass


class OtpDecryptionError(Exception):
    def __str__(self):
        if self.args:
            return str(self.args[0])
        return _("Failed to decrypt OTP")


class NoMatchingWalletError(Exception):
    def __str__(self):
        return _("No matching wallet found")



class NotConnectedError(ConnectivityError):
    def __str__(self):
        return _("Electrum client is not connected")
