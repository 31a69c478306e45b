"""Typed models shared by the parser, stores, aggregator and API."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

BENIGN = 'BENIGN'

# Order matters: breakdowns always enumerate categories in this order.
ATTACK_CATEGORIES: Tuple[str, ...] = ('Bot', 'BruteForce', 'DoS', 'Infiltration', 'PortScan', 'WebAttack')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowRecord(BaseModel):
    """One observed network flow with its classification label."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    src_ip: str = ''
    dst_ip: str = ''
    src_port: int = 0
    dst_port: int = 0
    protocol: str = ''
    flow_duration: float = 0.0
    flow_bytes: float = 0.0
    flow_packets: float = 0.0
    label: str = BENIGN

    @field_validator('label', mode='before')
    @classmethod
    def _default_label(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return BENIGN
        return str(value).strip()

    @field_validator('timestamp')
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_attack(self) -> bool:
        return self.label != BENIGN


class ServiceStatus(BaseModel):
    """Service-level counters reported by the detection server's control endpoint."""

    model_config = ConfigDict(frozen=True)

    running: bool = False
    per_category_counts: Dict[str, int] = Field(
        default_factory=lambda: {name: 0 for name in ATTACK_CATEGORIES}
    )
    # Categories the server actually reported; the rest are defaulted zeros.
    reported_categories: Tuple[str, ...] = ()
    total_traffic: int = 0
    attack_traffic: int = 0
    attack_percentage: Optional[float] = None
    attacks_info: Tuple[FlowRecord, ...] = ()

    def category_count(self, name: str) -> Optional[int]:
        """Return the server-reported count for a category, or None when it was not reported."""
        if name not in self.reported_categories:
            return None
        return self.per_category_counts.get(name, 0)


class AttackEvent(BaseModel):
    """A single attack-detected push notification. Never stored."""

    model_config = ConfigDict(frozen=True)

    type: str = ''
    message: str = ''
    source: str = ''
    timestamp: str = ''

    @classmethod
    def from_payload(cls, payload: Any) -> 'AttackEvent':
        if isinstance(payload, AttackEvent):
            return payload
        if not isinstance(payload, dict):
            return cls(message='' if payload is None else str(payload))
        values = {}
        for key in ('type', 'message', 'source', 'timestamp'):
            value = payload.get(key)
            values[key] = '' if value is None else str(value)
        return cls(**values)


class SourceSummary(BaseModel):
    """Attack activity attributed to one source IP."""

    model_config = ConfigDict(frozen=True)

    ip: str
    count: int
    attack_type_count: int
    attack_types: List[str]


class StatisticsSnapshot(BaseModel):
    """Read-only statistical rollup recomputed on every request."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    attack_count: int = 0
    benign_count: int = 0
    attack_percentage: float = 0.0
    benign_percentage: float = 0.0
    attack_type_breakdown: Dict[str, int] = Field(default_factory=dict)
    top_sources: List[SourceSummary] = Field(default_factory=list)
    protocol_breakdown: Dict[str, int] = Field(default_factory=dict)
    recent_attacks: List[FlowRecord] = Field(default_factory=list)
