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

from collections import defaultdict
import json
import os
import stat
import sys
import threading
from typing import Any, Callable, Dict, Iterable, List, Sequence, TypeVar

from ..logs import logs


T1 = TypeVar("T1")

package_dir = os.path.dirname(os.path.dirname(os.path.realpath(__file__)))


def semver_to_int(text: str | None) -> int:
    '''Converts a "major.minor.patch" version string to a comparable integer.

    Anything that is not exactly three numeric parts is treated as version 0.'''
    if not text:
        return 0
    parts = text.split('.')
    if len(parts) != 3:
        return 0
    try:
        major, minor, patch = (int(part) for part in parts)
    except ValueError:
        return 0
    return major * 1000000 + minor * 1000 + patch


def make_dir(path: str) -> None:
    # Make directory if it does not yet exist.
    if not os.path.exists(path):
        if os.path.islink(path):
            raise Exception('Dangling link: ' + path)
        os.makedirs(path)
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)


def user_dir() -> str:
    if sys.platform == 'win32':
        app_dir = os.environ.get("APPDATA") or os.environ.get("LOCALAPPDATA")
        return os.path.join(app_dir or ".", "ElectrumKB")
    if sys.platform == 'darwin':
        return os.path.join(os.environ.get("HOME", "."), "Library", "Application Support",
            "ElectrumKB")
    return os.path.join(os.environ.get("HOME", "."), ".electrum-kb")


def resource_path(*parts: str) -> str:
    return os.path.join(package_dir, "data", *parts)


def read_json_resource(filename: str) -> Any:
    with open(resource_path(filename), 'r', encoding='utf-8') as f:
        return json.loads(f.read())


def chunks(items: Sequence[T1], size: int) -> Iterable[List[T1]]:
    '''Break up items, an iterable, into chunks of length size.'''
    for i in range(0, len(items), size):
        yield list(items[i: i + size])


class TriggeredCallbacks:
    def __init__(self) -> None:
        self._callbacks: Dict[str, List[Callable[..., None]]] = defaultdict(list)
        self._callback_lock = threading.Lock()
        self._callback_logger = logs.get_logger("callback-logger")

    def register_callback(self, callback: Callable[..., None], events: List[str]) -> None:
        with self._callback_lock:
            for event in events:
                if callback in self._callbacks[event]:
                    self._callback_logger.error("Callback reregistered %s %s", event, callback)
                    continue
                self._callbacks[event].append(callback)

    def unregister_callback(self, callback: Callable[..., None]) -> None:
        with self._callback_lock:
            for callbacks in self._callbacks.values():
                if callback in callbacks:
                    callbacks.remove(callback)

    def trigger_callback(self, event: str, *args: Any) -> None:
        with self._callback_lock:
            callbacks = self._callbacks[event][:]
        for callback in callbacks:
            callback(event, *args)
