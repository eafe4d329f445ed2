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

from copy import deepcopy
import json
import os
import stat
import threading
from typing import Any, Callable, cast

from .logs import logs
from .util import make_dir, user_dir as platform_user_dir


logger = logs.get_logger("config")

FINAL_CONFIG_VERSION = 1

# Server override and connection preferences.
ELECTRUM_HOST = 'electrum_host'
ELECTRUM_TCP_PORT = 'electrum_tcp_port'
ELECTRUM_SSL_PORT = 'electrum_ssl_port'
ELECTRUM_DISABLED = 'electrum_disabled'


class SimpleConfig:
    """
    The SimpleConfig class is responsible for handling operations involving
    configuration files.

    There are two different sources of possible configuration values:
        1. Command line options.
        2. User configuration (in the user's config directory)
    They are taken in order (1. overrides config options set in 2.)
    """

    def __init__(self, options: dict[str, Any]|None=None,
            read_user_config_function: Callable[[str], dict[str, Any]]|None=None,
            read_user_dir_function: Callable[[], str]|None=None) -> None:
        if options is None:
            options = {}

        # This lock needs to be acquired for updating and reading the config in
        # a thread-safe way.
        self.lock = threading.RLock()

        # The following two functions are there for dependency injection when
        # testing.
        if read_user_config_function is None:
            read_user_config_function = read_user_config
        self.user_dir = read_user_dir_function or platform_user_dir

        # The command line options
        self.cmdline_options = deepcopy(options)
        # don't allow to be set on CLI:
        self.cmdline_options.pop('config_version', None)

        self.user_config: dict[str, Any] = {}
        self.path = self.electrum_path()
        self.user_config = read_user_config_function(self.path)
        if not self.user_config:
            self.user_config = {'config_version': FINAL_CONFIG_VERSION}

    def electrum_path(self) -> str:
        path = cast(str, self.get('electrum_kb_path'))
        if path is None:
            path = self.user_dir()

        make_dir(path)
        for network_name in ('testnet', 'regtest'):
            if self.get(network_name):
                path = os.path.join(path, network_name)
                make_dir(path)
        logger.debug("electrum-kb directory '%s'", path)
        return os.path.abspath(path)

    def file_path(self, file_name: str) -> str:
        return os.path.join(self.path, file_name)

    def set_key(self, key: str, value: Any, save: bool=True) -> None:
        if not self.is_modifiable(key):
            logger.warning("Not changing config key '%s' set on the command line", key)
            return
        with self.lock:
            if value is not None:
                self.user_config[key] = value
            else:
                self.user_config.pop(key, None)
            if save:
                self.save_user_config()

    def get(self, key: str, default: Any=None) -> Any|None:
        with self.lock:
            out = self.cmdline_options.get(key)
            if out is None:
                out = self.user_config.get(key, default)
        return out

    def is_modifiable(self, key: str) -> bool:
        return key not in self.cmdline_options

    def save_user_config(self) -> None:
        if not self.path:
            return
        path = os.path.join(self.path, "config")
        s = json.dumps(self.user_config, indent=4, sort_keys=True)
        with open(path, "w", encoding='utf-8') as f:
            f.write(s)
        os.chmod(path, stat.S_IREAD | stat.S_IWRITE)

    def get_server_override(self) -> tuple[str | None, int | None, int | None]:
        '''Returns the user configured (host, tcp port, ssl port), with absent values as None.'''
        host = self.get(ELECTRUM_HOST) or None
        return host, _port_or_none(self.get(ELECTRUM_TCP_PORT)), \
            _port_or_none(self.get(ELECTRUM_SSL_PORT))

    def set_server_override(self, host: str | None, tcp_port: int | None,
            ssl_port: int | None) -> None:
        with self.lock:
            self.set_key(ELECTRUM_HOST, host, False)
            self.set_key(ELECTRUM_TCP_PORT, tcp_port, False)
            self.set_key(ELECTRUM_SSL_PORT, ssl_port, False)
            self.save_user_config()

    def is_connection_disabled(self) -> bool:
        return bool(self.get(ELECTRUM_DISABLED, False))

    def set_connection_disabled(self, flag: bool) -> None:
        self.set_key(ELECTRUM_DISABLED, bool(flag))


def _port_or_none(value: Any) -> int | None:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("ignoring invalid port value %r", value)
        return None


def read_user_config(path: str) -> dict[str, Any]:
    """Parse and return the user config settings as a dictionary."""
    if not path:
        return {}
    config_path = os.path.join(path, "config")
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding='utf-8') as f:
            data = f.read()
        result = json.loads(data)
    except (OSError, ValueError):
        logger.exception("Cannot read config file %s.", config_path)
        return {}
    if not type(result) is dict:
        return {}
    return result
