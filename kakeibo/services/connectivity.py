"""
Connectivity Gate

DESIGN DECISION: Every mutation asks the gate "online right now?" and the
answer is a fresh reading of the signal, never a cached flag. A flag
captured before an await can be stale by the time the remote call is made,
so callers take one snapshot per mutation and act on it.

The signal is abstract: the platform's network monitor in production,
ManualConnectivitySignal in tests and headless runs.
"""

from abc import ABC, abstractmethod
from typing import Callable

import structlog


logger = structlog.get_logger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivitySignal(ABC):
    """Source of reachability readings and transition events."""

    @abstractmethod
    def is_reachable(self) -> bool:
        """Current reading of the network state."""
        pass

    @abstractmethod
    def subscribe(self, listener: ConnectivityListener) -> None:
        """Call `listener(online)` on every online/offline transition."""
        pass

    @abstractmethod
    def unsubscribe(self, listener: ConnectivityListener) -> None:
        pass


class ManualConnectivitySignal(ConnectivitySignal):
    """A signal flipped explicitly with set_online()."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[ConnectivityListener] = []

    def is_reachable(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Change state; listeners fire only on an actual transition."""
        if online == self._online:
            return
        self._online = online
        logger.info("connectivity_changed", online=online)
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: ConnectivityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)


class ConnectivityGate:
    """
    Single read point for connectivity.

    is_online() reads the signal on every call.
    """

    def __init__(self, signal: ConnectivitySignal):
        self._signal = signal

    @property
    def signal(self) -> ConnectivitySignal:
        return self._signal

    def is_online(self) -> bool:
        return self._signal.is_reachable()

    def subscribe(self, listener: ConnectivityListener) -> None:
        self._signal.subscribe(listener)

    def unsubscribe(self, listener: ConnectivityListener) -> None:
        self._signal.unsubscribe(listener)
