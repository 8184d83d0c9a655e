import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Diagnostic:
    """A single operator-facing message with a one-line title and a detail body."""

    severity: str  # "error" or "warning"
    summary: str
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "severity": self.severity,
            "summary": self.summary,
            "detail": self.detail,
        }


@dataclass
class Diagnostics:
    """
    The mutable sink every lifecycle operation writes into.

    Any error entry fails the operation; warnings alone do not.
    """

    items: List[Diagnostic] = field(default_factory=list)

    def add_error(self, summary: str, detail: str = ""):
        self.items.append(Diagnostic("error", summary, detail))

    def add_warning(self, summary: str, detail: str = ""):
        self.items.append(Diagnostic("warning", summary, detail))

    def append(self, diagnostic: Diagnostic):
        self.items.append(diagnostic)

    def extend(self, other: "Diagnostics"):
        self.items.extend(other.items)

    @property
    def has_error(self) -> bool:
        return any(d.severity == "error" for d in self.items)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.items if d.severity == "error"]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.items if d.severity == "warning"]

    def __len__(self):
        return len(self.items)


@dataclass(frozen=True)
class TransportMetadata:
    """Status and correlation id of one HTTP exchange."""

    status_code: int
    transaction_id: str = ""


@dataclass
class CallContext:
    """
    Cancellation and deadline carried through every remote call.

    Setting ``cancel_event`` from another thread aborts retries and backoff
    waits at the next checkpoint.
    """

    cancel_event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None  # time.monotonic() value

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def sleep(self, seconds: float) -> bool:
        """Waits up to ``seconds``; returns False if cancelled or past the deadline."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if self.cancel_event.wait(seconds):
            return False
        return not self.expired

