"""
Tests for the read-only HTTP API.
"""
import sys
from pathlib import Path
sys.path.append(str(Path(__file__).parent.parent))

import pytest
from fastapi.testclient import TestClient

from ids_monitor.api import create_app
from ids_monitor.errors import FetchError
from ids_monitor.pipeline import MonitoringPipeline

PAYLOAD = (
    "Timestamp,Source IP,Destination IP,Source Port,Destination Port,Protocol,Label\n"
    "2024-01-01T00:00:00Z,10.0.0.1,10.0.0.2,443,55000,TCP,BENIGN\n"
    "2024-01-01T00:00:01Z,10.0.0.3,10.0.0.2,22,55001,TCP,BruteForce\n"
    "2024-01-01T00:00:02Z,10.0.0.3,10.0.0.9,22,55002,UDP,DoS\n"
)

STATUS = {
    'running': True,
    'stats': {
        'total_traffic': 3,
        'attack_traffic': 2,
        'attacks_info': [{'src_ip': '10.0.0.3', 'protocol': 'TCP', 'label': 'BruteForce'}],
    },
}


@pytest.fixture
def pipeline():
    pipeline = MonitoringPipeline(data_fetcher=lambda: PAYLOAD, status_fetcher=lambda: STATUS)
    pipeline.data_poller.poll_once()
    return pipeline


@pytest.fixture
def client(pipeline):
    return TestClient(create_app(pipeline))


def test_health(client):
    r = client.get('/health')
    assert r.status_code == 200
    data = r.json()
    assert data['records'] == 3
    assert data['error'] is None
    assert data['last_updated'] is not None
    assert data['service_running'] is None


def test_stats(client):
    r = client.get('/stats')
    assert r.status_code == 200
    data = r.json()
    assert data['total'] == 3
    assert data['attack_count'] == 2
    assert data['top_sources'][0]['ip'] == '10.0.0.3'
    assert data['top_sources'][0]['attack_types'] == ['BruteForce', 'DoS']


def test_flows_filters(client):
    assert len(client.get('/flows').json()) == 3
    assert len(client.get('/flows', params={'kind': 'attacks'}).json()) == 2
    assert len(client.get('/flows', params={'kind': 'benign'}).json()) == 1
    assert [f['label'] for f in client.get('/flows', params={'label': 'DoS'}).json()] == ['DoS']
    assert len(client.get('/flows', params={'q': 'udp'}).json()) == 1

    r = client.get('/flows', params={'start': '2024-01-01T00:00:01Z', 'end': '2024-01-01T00:00:02Z'})
    assert [f['src_port'] for f in r.json()] == [22, 22]


def test_service_status_before_and_after_poll(client, pipeline):
    assert client.get('/service-status').status_code == 503
    assert client.get('/attacks/recent').json() == []

    pipeline.status_poller.poll_once()
    r = client.get('/service-status')
    assert r.status_code == 200
    assert r.json()['running'] is True
    recent = client.get('/attacks/recent').json()
    assert [a['label'] for a in recent] == ['BruteForce']

    stats = client.get('/stats').json()
    assert stats['total'] == 3
    assert stats['protocol_breakdown'] == {'TCP': 1}


def test_initial_failure_blocks_readers():
    def failing():
        raise FetchError('collector offline')

    pipeline = MonitoringPipeline(data_fetcher=failing, status_fetcher=failing)
    pipeline.data_poller.poll_once()
    client = TestClient(create_app(pipeline))

    assert client.get('/stats').status_code == 503
    assert client.get('/flows').status_code == 503
    assert 'collector offline' in client.get('/health').json()['error']


def test_manual_refresh(client):
    r = client.post('/refresh')
    assert r.status_code == 200
    assert r.json() == {'refreshed': True, 'records': 3, 'error': None}
