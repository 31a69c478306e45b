"""Network IDS monitoring pipeline.

This package contains the ingestion, aggregation and notification core:
- Flow record parsing from tabular or structured payloads (parser.py)
- The in-memory flow store and service-status holder (store.py)
- Statistics snapshots and top-offender rankings (statistics.py)
- Data refresh and status pollers (pollers.py)
- The attack-event channel and its Socket.IO feed (events.py)
- The pipeline object tying them together (pipeline.py)
- A read-only FastAPI surface over the pipeline (api.py)
"""
from ids_monitor.errors import FetchError, MonitorError, ParseError, StaleResponse
from ids_monitor.events import AttackEventChannel, SocketIOAttackFeed, Subscription
from ids_monitor.parser import parse_records, parse_status
from ids_monitor.pipeline import MonitoringPipeline
from ids_monitor.pollers import DataRefreshPoller, StatusPoller
from ids_monitor.schemas import (
    ATTACK_CATEGORIES,
    BENIGN,
    AttackEvent,
    FlowRecord,
    ServiceStatus,
    SourceSummary,
    StatisticsSnapshot,
)
from ids_monitor.statistics import snapshot
from ids_monitor.store import FlowStore, StatusHolder

__all__ = [
    'ATTACK_CATEGORIES',
    'BENIGN',
    'AttackEvent',
    'AttackEventChannel',
    'DataRefreshPoller',
    'FetchError',
    'FlowRecord',
    'FlowStore',
    'MonitorError',
    'MonitoringPipeline',
    'ParseError',
    'ServiceStatus',
    'SocketIOAttackFeed',
    'SourceSummary',
    'StaleResponse',
    'StatisticsSnapshot',
    'StatusHolder',
    'StatusPoller',
    'Subscription',
    'parse_records',
    'parse_status',
    'snapshot',
]
