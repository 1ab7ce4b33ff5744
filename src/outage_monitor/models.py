from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Subscriber:
    """Telegram subscriber model"""
    chat_id: int
    username: Optional[str]
    first_name: Optional[str]
    subscribed_at: datetime
    last_notified: Optional[datetime] = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        if self.first_name and self.username:
            return f"{self.first_name} (@{self.username})"
        if self.username:
            return f"@{self.username}"
        return self.first_name or str(self.chat_id)


@dataclass
class OutageRecord:
    """One row of the outage table"""
    district: str = ""
    place: str = ""
    addresses: str = ""
    date_from: str = ""
    date_to: str = ""
    energy: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutageRecord":
        return cls(
            district=data.get("district") or "",
            place=data.get("place") or "",
            addresses=data.get("addresses") or "",
            date_from=data.get("date_from") or "",
            date_to=data.get("date_to") or "",
            energy=data.get("energy") or "",
        )


@dataclass
class Snapshot:
    """One stored observation of the outage list"""
    id: Optional[int]
    checked_at: datetime
    result_count: int
    result_hash: str
    records: List[OutageRecord] = field(default_factory=list)


class SubscribeResult(str, Enum):
    CREATED = "created"
    REACTIVATED = "reactivated"
    ALREADY_ACTIVE = "already_active"


class OperationKind(str, Enum):
    BROADCAST = "broadcast"
    UNSUBSCRIBE_ALL = "unsubscribe_all"


@dataclass
class PendingOperation:
    """Bulk admin action waiting for confirmation"""
    kind: OperationKind
    operator_id: int
    created_at: datetime
    payload: Optional[str] = None
    expected_count: int = 0


class RequestStatus(str, Enum):
    PENDING = "pending"
    CONFLICT = "conflict"


class ConfirmStatus(str, Enum):
    CONFIRMED = "confirmed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"


@dataclass
class ConfirmResult:
    status: ConfirmStatus
    operation: Optional[PendingOperation] = None
    tally: Optional["BulkResult"] = None


@dataclass
class BulkResult:
    """Tally of a bulk delivery or bulk mutation"""
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: Dict[int, str] = field(default_factory=dict)
    expected_count: Optional[int] = None

    @property
    def percentage(self) -> int:
        if not self.total:
            return 0
        return round(self.success_count * 100 / self.total)


class IntervalOutcome(str, Enum):
    ACCEPTED = "accepted"
    UNCHANGED = "unchanged"
    REJECTED = "rejected"


@dataclass
class IntervalChange:
    outcome: IntervalOutcome
    old_hours: int
    new_hours: Optional[int] = None
    notified: Optional[BulkResult] = None


@dataclass
class SearchFilters:
    """Typed filters for the outage audit table"""
    district: Optional[str] = None
    place: Optional[str] = None
    date_from: Optional[date] = None
    limit: int = 10

    def is_empty(self) -> bool:
        return not (self.district or self.place or self.date_from)


@dataclass
class CycleResult:
    """Outcome of one observe, detect and notify cycle"""
    fetched: int = 0
    current: int = 0
    changed: bool = False
    tally: Optional[BulkResult] = None
    report_path: Optional[str] = None
    error: Optional[str] = None
