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

from typing import Dict

from .util import read_json_resource


def read_json_dict(filename: str) -> Dict[str, Dict[str, str]]:
    return read_json_resource(filename)


class KBMainnet(object):
    ADDRTYPE_P2PKH = 0x2d
    ADDRTYPE_P2SH = 0x05
    SEGWIT_HRP = "kc"
    DEFAULT_SERVERS = read_json_dict('servers.json')
    NAME = 'mainnet'
    WIF_PREFIX = 0x80


class KBTestnet(object):
    ADDRTYPE_P2PKH = 0x6b
    ADDRTYPE_P2SH = 0xc4
    SEGWIT_HRP = "tk"
    DEFAULT_SERVERS = read_json_dict('servers_testnet.json')
    NAME = 'testnet'
    WIF_PREFIX = 0xef


class KBRegTestnet(object):
    ADDRTYPE_P2PKH = 0x6b
    ADDRTYPE_P2SH = 0xc4
    SEGWIT_HRP = "kncrt"
    DEFAULT_SERVERS = read_json_dict('servers_regtest.json')
    NAME = 'regtest'
    WIF_PREFIX = 0xef


class _CurrentNetMeta(type):

    def __getattr__(cls, attr):
        return getattr(cls._net, attr)


class Net(metaclass=_CurrentNetMeta):
    '''The current selected network.

    Use like so:

        from electrumkb.networks import Net, KBTestnet
        Net.set_to(KBTestnet)
    '''

    _net = KBMainnet

    @classmethod
    def set_to(cls, net_class):
        cls._net = net_class

    @classmethod
    def is_mainnet(cls) -> bool:
        return cls._net is KBMainnet

