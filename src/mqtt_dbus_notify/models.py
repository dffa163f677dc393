"""Shared data structures used across all components."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable


class OnceCell:
    """Holds the outcome of a computation run on first access.

    Concurrent first callers block on a lock so ``build`` runs exactly once.
    If ``build`` raises, the exception is kept and raised again on every
    later ``get`` without calling ``build`` a second time.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Any = None
        self._error: BaseException | None = None
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def get(self, build: Callable[[], Any]) -> Any:
        if not self._ready:
            with self._lock:
                if not self._ready:
                    try:
                        self._value = build()
                    except Exception as exc:
                        self._error = exc
                    self._ready = True
        if self._error is not None:
            raise self._error.with_traceback(None)
        return self._value


@dataclass
class SubscriptionRule:
    topic: str  # topic filter, may contain + and # wildcards
    title_template: str = ""
    body_template: str = ""
    icon: str = ""  # empty means the global default icon
    templates: OnceCell = field(
        default_factory=OnceCell, init=False, repr=False, compare=False
    )

    @property
    def uses_templates(self) -> bool:
        """True when at least one of title/body carries a template."""
        return bool(self.title_template or self.body_template)
