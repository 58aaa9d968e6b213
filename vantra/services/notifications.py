from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional

from vantra.models.common import gen_id


ToastKind = Literal["success", "error", "warning", "info"]
ToastEvent = Literal["add", "dismiss"]
DEFAULT_DURATION_MS = 4000


@dataclass
class Toast:
    kind: ToastKind
    message: str
    description: Optional[str] = None
    duration_ms: int = DEFAULT_DURATION_MS  # <= 0: stays until dismissed
    id: str = field(default_factory=gen_id)
    shown_at: float = 0.0


Listener = Callable[[ToastEvent, Toast], None]


class Notifier:
    """
    Non-blocking user messages. Listeners get every add and dismiss;
    `toasts` holds the visible ones and drops those past their duration.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._listeners: List[Listener] = []
        self._toasts: Dict[str, Toast] = {}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: ToastEvent, toast: Toast) -> None:
        for listener in list(self._listeners):
            listener(event, toast)

    def _expired(self, toast: Toast, now: float) -> bool:
        return toast.duration_ms > 0 and (now - toast.shown_at) * 1000 >= toast.duration_ms

    def prune(self) -> None:
        now = self._clock()
        for toast in [t for t in self._toasts.values() if self._expired(t, now)]:
            self.dismiss(toast.id)

    @property
    def toasts(self) -> List[Toast]:
        self.prune()
        return list(self._toasts.values())

    def add(self, kind: ToastKind, message: str, description: Optional[str] = None,
            duration_ms: int = DEFAULT_DURATION_MS) -> Toast:
        self.prune()
        toast = Toast(kind=kind, message=message, description=description,
                      duration_ms=duration_ms, shown_at=self._clock())
        self._toasts[toast.id] = toast
        self._emit("add", toast)
        return toast

    def dismiss(self, toast_id: str) -> None:
        toast = self._toasts.pop(toast_id, None)
        if toast is not None:
            self._emit("dismiss", toast)

    def success(self, message: str, description: Optional[str] = None) -> Toast:
        return self.add("success", message, description)

    def error(self, message: str, description: Optional[str] = None) -> Toast:
        return self.add("error", message, description)

    def warning(self, message: str, description: Optional[str] = None) -> Toast:
        return self.add("warning", message, description)

    def info(self, message: str, description: Optional[str] = None) -> Toast:
        return self.add("info", message, description)
