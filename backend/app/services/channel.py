"""
channel.py

Purpose:
  Boundary to the remote telemetry store. The device writes samples into a
  keyed hierarchical store (paths like `2_AC_Power_Facter/1_AC_Power_Choke`);
  the pipeline subscribes to paths and writes partial updates back.

Contract:
  - `subscribe(path, handler)` registers an explicit handler and returns an
    unsubscribe callable. The handler receives a `ChannelEvent` carrying the
    full current value of the subscribed path, once on registration (if the
    path holds data) and again whenever anything at, above or below it changes.
  - `update(path, fields)` merges only the given keys into the node at `path`.

`InMemoryChannel` is the in-process store used by the demo feed, the HTTP
ingest routes and the tests.
"""
from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelEvent:
    path: str
    value: Any


ChannelHandler = Callable[[ChannelEvent], None]
Unsubscribe = Callable[[], None]


class ChannelError(RuntimeError):
    """Write to the store failed."""


class TelemetryChannel(Protocol):
    def subscribe(self, path: str, handler: ChannelHandler) -> Unsubscribe:
        ...

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        ...


def split_path(path: str) -> Tuple[str, ...]:
    return tuple(p for p in str(path).split("/") if p)


def _related(a: Tuple[str, ...], b: Tuple[str, ...]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class InMemoryChannel:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._root: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._subs: List[Tuple[Tuple[str, ...], ChannelHandler]] = []
        self._lock = threading.RLock()
        self.writes: List[Tuple[str, Dict[str, Any]]] = []

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._get(split_path(path)))

    def _get(self, keys: Tuple[str, ...]) -> Any:
        node: Any = self._root
        for k in keys:
            if not isinstance(node, dict) or k not in node:
                return None
            node = node[k]
        return node

    # -----------------------------
    # Subscriptions
    # -----------------------------
    def subscribe(self, path: str, handler: ChannelHandler) -> Unsubscribe:
        keys = split_path(path)
        entry = (keys, handler)
        with self._lock:
            self._subs.append(entry)
            current = copy.deepcopy(self._get(keys))

        if current is not None:
            self._deliver(handler, ChannelEvent(path="/".join(keys), value=current))

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._subs.remove(entry)
                except ValueError:
                    pass

        return unsubscribe

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def _deliver(self, handler: ChannelHandler, event: ChannelEvent) -> None:
        try:
            handler(event)
        except Exception:
            logger.exception("Channel handler failed for %s", event.path)

    def _notify(self, changed: Tuple[str, ...]) -> None:
        with self._lock:
            targets = [
                (keys, handler, copy.deepcopy(self._get(keys)))
                for keys, handler in self._subs
                if _related(keys, changed)
            ]
        for keys, handler, value in targets:
            if value is None:
                continue
            self._deliver(handler, ChannelEvent(path="/".join(keys), value=value))

    # -----------------------------
    # Writes
    # -----------------------------
    def set(self, path: str, value: Any) -> None:
        keys = split_path(path)
        if not keys:
            raise ValueError("cannot overwrite the store root")
        with self._lock:
            node = self._root
            for k in keys[:-1]:
                nxt = node.get(k)
                if not isinstance(nxt, dict):
                    nxt = {}
                    node[k] = nxt
                node = nxt
            node[keys[-1]] = copy.deepcopy(value)
        self._notify(keys)

    def merge(self, path: str, fields: Mapping[str, Any]) -> None:
        keys = split_path(path)
        with self._lock:
            current = self._get(keys)
            merged = dict(current) if isinstance(current, dict) else {}
            merged.update(copy.deepcopy(dict(fields)))
        self.set(path, merged)

    async def update(self, path: str, fields: Mapping[str, Any]) -> None:
        self.writes.append((path, dict(fields)))
        self.merge(path, fields)
