"""
Read-only HTTP surface over a running MonitoringPipeline.

Exposes the statistics snapshot, filtered flow queries and the latest service
status as JSON for dashboards. No rendering happens here.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException

from ids_monitor.pipeline import MonitoringPipeline
from ids_monitor.schemas import FlowRecord, ServiceStatus, StatisticsSnapshot
from ids_monitor.store import in_time_range, matching, of_kind, with_label

logger = logging.getLogger(__name__)


def create_app(pipeline: MonitoringPipeline) -> FastAPI:
    app = FastAPI(title='IDS Monitor', description='Flow statistics and attack monitoring')
    app.state.pipeline = pipeline

    def _require_data() -> None:
        # Only a failed first load blocks readers; later failures serve stale data.
        error = pipeline.data_poller.blocking_error
        if error:
            raise HTTPException(status_code=503, detail=error)

    @app.get('/health')
    def health():
        poller = pipeline.data_poller
        status = pipeline.service_status()
        return {
            'records': len(pipeline.store),
            'last_updated': poller.last_updated.isoformat() if poller.last_updated else None,
            'loading': poller.loading,
            'error': poller.error,
            'service_running': status.running if status is not None else None,
            'attack_subscribers': pipeline.events.subscriber_count,
        }

    @app.get('/stats', response_model=StatisticsSnapshot)
    def stats():
        _require_data()
        return pipeline.statistics()

    @app.get('/flows', response_model=List[FlowRecord])
    def flows(
        label: Optional[str] = None,
        kind: str = 'all',
        q: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ):
        """
        Query the current record set.

        ``label`` selects an exact label and takes precedence over ``kind``
        (``all``, ``benign``, ``attacks`` or a label). ``q`` is a free-text
        search; ``start``/``end`` bound the timestamp inclusively.
        """
        _require_data()
        records = pipeline.store.query()
        records = with_label(records, label) if label is not None else of_kind(records, kind)
        if q:
            records = matching(records, q)
        if start is not None or end is not None:
            records = in_time_range(records, start or datetime.min, end or datetime.max)
        return records

    @app.get('/service-status', response_model=ServiceStatus)
    def service_status():
        status = pipeline.service_status()
        if status is None:
            raise HTTPException(status_code=503, detail='Service status not available yet')
        return status

    @app.get('/attacks/recent', response_model=List[FlowRecord])
    def recent_attacks():
        status = pipeline.service_status()
        return list(status.attacks_info) if status is not None else []

    @app.post('/refresh')
    def refresh():
        refreshed = pipeline.refresh()
        poller = pipeline.data_poller
        logger.info(f'Manual refresh requested, applied={refreshed}')
        return {
            'refreshed': refreshed,
            'records': len(pipeline.store),
            'error': poller.error,
        }

    return app
