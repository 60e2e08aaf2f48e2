"""
Rule, condition and owner settings records as the store hands them out.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RuleType(str, Enum):
    FILTER = "filter"
    STRATEGY = "strategy"
    MANUAL = "manual"
    DISCOVERY = "discovery"
    AUTONOMOUS_STRATEGY = "autonomous_strategy"


@dataclass
class Rule:
    id: int
    owner_id: str
    name: str
    type: RuleType = RuleType.FILTER
    active: bool = False
    description: Optional[str] = None
    trade_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_profit: float = 0.0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    last_check_at: Optional[str] = None

    @property
    def success_rate(self) -> float:
        finished = self.success_count + self.failure_count
        if not finished:
            return 0.0
        return self.success_count / finished * 100

    @property
    def is_autonomous(self) -> bool:
        return self.type == RuleType.AUTONOMOUS_STRATEGY

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Rule":
        data = dict(data)
        data["id"] = int(data["id"])
        data["type"] = RuleType(data.get("type", RuleType.FILTER.value))
        data["active"] = bool(data.get("active", False))
        return cls(**data)


@dataclass
class Condition:
    """A typed constraint attached to a rule. `value` is the serialized form."""
    id: int
    rule_id: int
    type_key: str
    value: str
    secondary_value: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        data = dict(data)
        data["id"] = int(data["id"])
        data["rule_id"] = int(data["rule_id"])
        return cls(**data)


@dataclass
class OwnerSettings:
    owner_id: str
    autonomous_enabled: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "OwnerSettings":
        return cls(owner_id=str(data["owner_id"]), autonomous_enabled=bool(data.get("autonomous_enabled", False)))


@dataclass(frozen=True)
class CallbackAction:
    """Decoded user action. Every field except `verb` is optional and kept as text."""
    verb: str
    type_key: Optional[str] = None
    value: Optional[str] = None
    rule_type: Optional[str] = None
    condition_id: Optional[str] = None
    rule_id: Optional[str] = None
    page: Optional[str] = None
    address: Optional[str] = None
    amount: Optional[str] = None

    def __post_init__(self):
        for name in ("value", "rule_type", "condition_id", "rule_id", "page", "address", "amount"):
            current = getattr(self, name)
            if isinstance(current, Enum):
                object.__setattr__(self, name, current.value)
            elif current is not None and not isinstance(current, str):
                object.__setattr__(self, name, str(current))


@dataclass
class RulesStats:
    total: int
    active: int
    total_trades: int
    total_profit: float
    avg_success_rate: float
    top_rules: List[Tuple[str, float]]

    @property
    def inactive(self) -> int:
        return self.total - self.active
