from typing import Optional

from .state import utc_now
from .storage import StorageInfo


class ReprocessDirective:
    """Per-invocation choice of when a handled item may be handled again.

    Starts at the configured default; the handler may override it with
    reprocess(minutes) or clear it with prevent_reprocess().
    """

    def __init__(self, minutes_until_reprocess: Optional[float] = None):
        self._minutes = minutes_until_reprocess

    def reprocess(self, minutes: float) -> None:
        self._minutes = minutes

    def prevent_reprocess(self) -> None:
        self._minutes = None

    @property
    def minutes(self) -> Optional[float]:
        return self._minutes


def should_process(info: StorageInfo) -> bool:
    if not info.exists:
        return True
    return info.reprocess_time is not None and info.reprocess_time < utc_now()
