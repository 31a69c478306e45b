"""
Runner that starts the monitoring pipeline and its read API.

The pipeline polls the data source and the detection server's /status
endpoint and listens for attack_detected events; the FastAPI app is served by
uvicorn in a background thread.

Usage:
    python run.py --config config/config.yaml
"""
import argparse
import logging
import signal
import sys
import threading
import time

from ids_monitor.api import create_app
from ids_monitor.pipeline import MonitoringPipeline
from ids_monitor.utils import load_config, setup_logging

logger = logging.getLogger('ids_monitor.run')


def start_uvicorn_in_thread(app, host: str = '127.0.0.1', port: int = 8000, log_level: str = 'info'):
    """Start uvicorn.Server in a background thread and return the Server object."""
    import uvicorn

    config = uvicorn.Config(app, host=host, port=port, log_level=log_level, loop='asyncio')
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, name='uvicorn-thread', daemon=True)
    thread.start()

    # wait briefly for server to start
    timeout = 10
    start = time.time()
    while time.time() - start < timeout:
        if getattr(server, 'started', False):
            break
        time.sleep(0.1)

    return server


def log_attack(event):
    logger.warning(f'ATTACK {event.type}: {event.message} (source={event.source}, at={event.timestamp})')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Run the IDS monitoring pipeline and its read API')
    parser.add_argument('--config', default=None, help='Path to config YAML (default: config/config.yaml)')
    parser.add_argument('--host', default=None, help='API host (overrides config)')
    parser.add_argument('--port', type=int, default=None, help='API port (overrides config)')
    parser.add_argument('--no-api', action='store_true', help='Do not serve the HTTP API')
    parser.add_argument('--no-events', action='store_true', help='Do not connect to the attack event channel')
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config['log_level'], config['log_file'])

    pipeline = MonitoringPipeline(config)
    pipeline.subscribe_attacks(log_attack)
    pipeline.start(events=not args.no_events)

    server = None
    if not args.no_api:
        host = args.host or config['api_host']
        port = args.port or int(config['api_port'])
        server = start_uvicorn_in_thread(create_app(pipeline), host=host, port=port, log_level=str(config['log_level']).lower())
        if not getattr(server, 'started', False):
            logger.warning('uvicorn server did not report started state immediately. Check logs.')
        else:
            logger.info(f'API available at http://{host}:{port}')

    stop_event = threading.Event()

    def _shutdown(signum=None, frame=None):
        logger.info('Shutting down...')
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.wait(0.5):
            pass
    finally:
        if server is not None:
            server.should_exit = True
        pipeline.stop()
        logger.info('Shutdown complete.')
    return 0


if __name__ == '__main__':
    sys.exit(main())
