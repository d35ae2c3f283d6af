"""Driver resolution and runtime driver registration."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from .config import TextoConfig
from .drivers.base import Sender
from .drivers.telnyx import TelnyxSender
from .drivers.twilio import TwilioSender
from .errors import DriverAlreadyRegistered, UnsupportedDriver
from .types import Driver, normalize_driver

logger = logging.getLogger(__name__)

SenderFactory = Callable[[TextoConfig], Sender]

_BUILTIN_DRIVERS: frozenset[str] = frozenset(d.value for d in Driver)


class DriverManager:
    """Resolves driver names to :class:`~texto.drivers.base.Sender` instances.

    Factories registered with :meth:`extend` take precedence over the
    built-in drivers, which is how fakes and custom providers plug in.
    Each name can be registered once per manager.

    Built-in senders hold HTTP connection pools, so one instance is kept
    per driver configuration and reused until :meth:`close`. Registered
    factories are called on every resolution.

    Usage::

        with DriverManager(config) as drivers:
            texto = Texto(config, drivers, repository)
            texto.poll_statuses()
    """

    def __init__(self, config: TextoConfig) -> None:
        self._config = config
        self._extensions: dict[str, SenderFactory] = {}
        self._builtins: dict[tuple[Any, ...], Sender] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> TextoConfig:
        return self._config

    def close(self) -> None:
        """Close every cached built-in sender."""
        with self._lock:
            senders, self._builtins = list(self._builtins.values()), {}
        for sender in senders:
            sender.close()  # type: ignore[attr-defined]
        if senders:
            logger.debug("Closed %s texto sender(s)", len(senders))

    def __enter__(self) -> DriverManager:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def sender(self, driver: str | Driver | None = None, *, config: TextoConfig | None = None) -> Sender:
        """Resolve a sender for ``driver`` (or the configured default).

        Args:
            driver: Driver name; defaults to ``config.driver``.
            config: Effective configuration for this resolution, e.g. one
                carrying a per-call override. Defaults to the manager's.

        Raises:
            UnsupportedDriver: the name is neither registered nor built in.
        """
        effective = config or self._config
        name = normalize_driver(driver) if driver else effective.driver

        with self._lock:
            factory = self._extensions.get(name)
        if factory is not None:
            return factory(effective)

        settings: Any
        if name == Driver.TWILIO.value:
            sender_cls: Any = TwilioSender
            settings = effective.twilio
        elif name == Driver.TELNYX.value:
            sender_cls = TelnyxSender
            settings = effective.telnyx
        else:
            raise UnsupportedDriver(name)

        key = (name, settings, effective.retry)
        with self._lock:
            sender = self._builtins.get(key)
            if sender is None:
                sender = sender_cls(settings, effective.retry)
                self._builtins[key] = sender
        return sender

    def extend(self, name: str | Driver, factory: SenderFactory) -> None:
        """Register a factory for ``name``.

        Raises:
            DriverAlreadyRegistered: ``name`` was registered before.
        """
        key = normalize_driver(name)
        with self._lock:
            if key in self._extensions:
                raise DriverAlreadyRegistered(key)
            self._extensions[key] = factory
        logger.debug("Registered texto driver %s", key)

    def knows(self, name: str | Driver | None) -> bool:
        """Whether ``name`` resolves to a registered or built-in driver."""
        if not name:
            return False
        key = normalize_driver(name)
        with self._lock:
            registered = key in self._extensions
        return registered or key in _BUILTIN_DRIVERS
