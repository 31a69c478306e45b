"""Statistical rollups over the flow store and the latest service status."""
from collections import Counter
from typing import Dict, Iterable, List, Optional, Union

from ids_monitor.schemas import ATTACK_CATEGORIES, FlowRecord, ServiceStatus, SourceSummary, StatisticsSnapshot
from ids_monitor.store import FlowStore

TOP_SOURCES_LIMIT = 10


def _records(store: Union[FlowStore, Iterable[FlowRecord]]) -> List[FlowRecord]:
    if isinstance(store, FlowStore):
        return list(store.query())
    return list(store)


def attack_type_breakdown(records: Iterable[FlowRecord], status: Optional[ServiceStatus] = None) -> Dict[str, int]:
    """
    Per-label attack counts. The fixed categories always come first, in order,
    using the server-reported count when there is one; any other attack labels
    seen locally follow in first-seen order.
    """
    local = Counter(r.label for r in records if r.is_attack)
    breakdown = {}
    for name in ATTACK_CATEGORIES:
        reported = status.category_count(name) if status is not None else None
        breakdown[name] = reported if reported is not None else local.get(name, 0)
    for label, count in local.items():
        breakdown.setdefault(label, count)
    return breakdown


def top_sources(records: Iterable[FlowRecord], limit: int = TOP_SOURCES_LIMIT) -> List[SourceSummary]:
    """Group attack records by source IP, most active first; ties keep first-seen order."""
    groups: Dict[str, list] = {}
    for record in records:
        if not record.is_attack:
            continue
        entry = groups.setdefault(record.src_ip, [0, {}])
        entry[0] += 1
        entry[1].setdefault(record.label, None)

    # sorted() is stable, so equal counts stay in insertion order
    ranked = sorted(groups.items(), key=lambda item: item[1][0], reverse=True)
    return [
        SourceSummary(ip=ip, count=count, attack_type_count=len(labels), attack_types=list(labels))
        for ip, (count, labels) in ranked[:max(limit, 0)]
    ]


def protocol_breakdown(records: Iterable[FlowRecord]) -> Dict[str, int]:
    return dict(Counter(r.protocol for r in records))


def snapshot(
    store: Union[FlowStore, Iterable[FlowRecord]],
    status: Optional[ServiceStatus] = None,
    top_limit: int = TOP_SOURCES_LIMIT,
) -> StatisticsSnapshot:
    """
    Compute a StatisticsSnapshot from the store contents and, when available,
    the latest ServiceStatus. Server-reported counters take precedence over
    locally recomputed ones. Pure: neither input is modified.
    """
    records = _records(store)
    attacks = [r for r in records if r.is_attack]

    if status is not None:
        total = status.total_traffic
        attack_count = min(status.attack_traffic, total)
    else:
        total = len(records)
        attack_count = len(attacks)
    benign_count = total - attack_count

    if total == 0:
        attack_percentage = benign_percentage = 0.0
    else:
        if status is not None and status.attack_percentage is not None:
            attack_percentage = status.attack_percentage
        else:
            attack_percentage = 100.0 * attack_count / total
        attack_percentage = min(max(float(attack_percentage), 0.0), 100.0)
        benign_percentage = 100.0 - attack_percentage

    recent = list(status.attacks_info) if status is not None else []

    return StatisticsSnapshot(
        total=total,
        attack_count=attack_count,
        benign_count=benign_count,
        attack_percentage=attack_percentage,
        benign_percentage=benign_percentage,
        attack_type_breakdown=attack_type_breakdown(records, status),
        top_sources=top_sources(attacks, top_limit),
        protocol_breakdown=protocol_breakdown(recent if status is not None else attacks),
        recent_attacks=recent,
    )
