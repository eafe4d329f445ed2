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

'''Logging for the client, every logger lives under the "electrumkb" namespace.'''

import logging
from typing import Union

LOGGER_PREFIX = "electrumkb"
LOG_FORMAT = "%(asctime)s:%(levelname)s:%(name)s:%(message)s"


class Logs(object):
    '''The console handler is installed on creation, file outputs are added on request.'''

    def __init__(self) -> None:
        self.root = logging.getLogger()
        self._formatter = logging.Formatter(LOG_FORMAT)
        self._file_handlers: dict[str, logging.FileHandler] = {}
        console = logging.StreamHandler()
        console.setFormatter(self._formatter)
        self.root.addHandler(console)

    def add_file_output(self, path: str) -> logging.FileHandler:
        '''Also write log records to `path`. Adding the same path again is a no-op.'''
        handler = self._file_handlers.get(path)
        if handler is None:
            handler = logging.FileHandler(path, encoding='utf-8')
            handler.setFormatter(self._formatter)
            self.root.addHandler(handler)
            self._file_handlers[path] = handler
        return handler

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(f"{LOGGER_PREFIX}.{name}")

    def set_level(self, level: Union[str, int]) -> None:
        '''Level can be a name such as "info" or a `logging` constant.'''
        if isinstance(level, str):
            level = level.upper()
        self.root.setLevel(level)


logs = Logs()
