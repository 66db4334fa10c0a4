import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class ToastLevel(str, Enum):
    loading = "loading"
    success = "success"
    error = "error"


@dataclass(frozen=True)
class Toast:
    id: int
    level: ToastLevel
    title: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Sink = Callable[[Toast], None]


class NotificationCenter:
    """Keeps the most recent toasts; a resolved loading toast replaces itself."""

    def __init__(self, limit: int = 50) -> None:
        self.limit = limit
        self._toasts: "OrderedDict[int, Toast]" = OrderedDict()

    def __call__(self, toast: Toast) -> None:
        self._toasts[toast.id] = toast
        while len(self._toasts) > self.limit:
            self._toasts.popitem(last=False)

    def recent(self) -> list[Toast]:
        return list(self._toasts.values())

    def clear(self) -> None:
        self._toasts.clear()


class Notifier:
    def __init__(self, sinks: Iterable[Sink] = ()) -> None:
        self.sinks: list[Sink] = list(sinks)
        self._ids = itertools.count(1)

    def _emit(self, toast: Toast) -> Toast:
        logger.info(f"toast: level={toast.level.value} title={toast.title!r}")
        for sink in self.sinks:
            try:
                sink(toast)
            except Exception:
                logger.exception(f"toast_delivery_failed: id={toast.id}")
        return toast

    def success(self, title: str, description: Optional[str] = None) -> Toast:
        return self._emit(Toast(next(self._ids), ToastLevel.success, title, description))

    def error(self, title: str, description: Optional[str] = None) -> Toast:
        return self._emit(Toast(next(self._ids), ToastLevel.error, title, description))

    def loading(self, title: str) -> Toast:
        return self._emit(Toast(next(self._ids), ToastLevel.loading, title))

    def resolve(
        self,
        toast: Toast,
        level: ToastLevel,
        title: str,
        description: Optional[str] = None,
    ) -> Toast:
        return self._emit(
            replace(
                toast,
                level=level,
                title=title,
                description=description,
                created_at=datetime.now(timezone.utc),
            )
        )
