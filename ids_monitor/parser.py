"""
Conversion of raw upstream payloads into typed models.

Tabular payloads (header row + comma-delimited data rows) are read with pandas,
structured payloads (sequences of mappings) are used as they are. Both go
through the same field table, which maps every canonical FlowRecord field to
the header aliases it accepts and the coercion applied to the raw value.
"""
import csv
import io
import logging
import math
import warnings
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from ids_monitor.errors import ParseError
from ids_monitor.schemas import ATTACK_CATEGORIES, BENIGN, FlowRecord, ServiceStatus, utcnow

logger = logging.getLogger(__name__)

Payload = Union[str, bytes, Mapping[str, Any], Sequence[Mapping[str, Any]]]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def to_int(value: Any) -> int:
    """Coerce a port-like value; unreadable values become 0, out-of-range values are kept."""
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def to_measure(value: Any) -> float:
    """Coerce a non-negative flow measure (duration, bytes, packets)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(number, 0.0)


def to_timestamp(value: Any) -> Optional[datetime]:
    """Parse a timestamp. Numeric values, including numeric text, are epoch seconds."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            pass
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    parsed = pd.to_datetime(str(value).strip(), utc=True, errors='coerce')
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


# canonical field -> (accepted aliases in priority order, coercion, default)
FIELD_MAP: Tuple[Tuple[str, Tuple[str, ...], Callable[[Any], Any], Any], ...] = (
    ('timestamp', ('Timestamp', 'timestamp', 'time'), to_timestamp, utcnow),
    ('src_ip', ('Source IP', 'src_ip'), to_text, ''),
    ('dst_ip', ('Destination IP', 'dst_ip'), to_text, ''),
    ('src_port', ('Source Port', 'src_port'), to_int, 0),
    ('dst_port', ('Destination Port', 'dst_port'), to_int, 0),
    ('protocol', ('Protocol', 'protocol'), to_text, ''),
    ('flow_duration', ('Flow Duration', 'flow_duration'), to_measure, 0.0),
    ('flow_bytes', ('Total Fwd Packets', 'flow_bytes', 'traffic_size'), to_measure, 0.0),
    ('flow_packets', ('Total Backward Packets', 'flow_packets'), to_measure, 0.0),
    ('label', ('Label', 'label'), to_text, BENIGN),
)


def _pick(row: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the value of the first alias present with a non-empty value."""
    for alias in aliases:
        value = row.get(alias)
        if not _is_missing(value):
            return value
    return None


def build_record(row: Mapping[str, Any]) -> FlowRecord:
    """Build a FlowRecord from one field map, applying aliases, coercions and defaults."""
    row = {str(key).strip(): value for key, value in row.items()}
    fields: Dict[str, Any] = {}
    for name, aliases, coerce, default in FIELD_MAP:
        raw = _pick(row, aliases)
        value = coerce(raw) if raw is not None else None
        if value is None or value == '':
            value = default() if callable(default) else default
        fields[name] = value
    return FlowRecord(**fields)


def _read_table(text: str) -> List[Dict[str, Any]]:
    # Leading blank lines are not a header.
    text = text.lstrip('\ufeff').lstrip()
    header_line = text.split('\n', 1)[0].strip()
    if not header_line.replace(',', '').strip():
        raise ParseError('payload has no header row')

    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', pd.errors.ParserWarning)
            # index_col=False: rows longer than the header are truncated to it
            # instead of shifting a column into the index.
            frame = pd.read_csv(
                io.StringIO(text),
                dtype=object,
                keep_default_na=False,
                index_col=False,
                skipinitialspace=True,
                # Quotes are ordinary characters.
                quoting=csv.QUOTE_NONE,
                engine='python',
            )
    except pd.errors.EmptyDataError as e:
        raise ParseError('payload has no header row') from e
    except (pd.errors.ParserError, ValueError) as e:
        raise ParseError(f'unreadable tabular payload: {e}') from e

    rows = frame.to_dict(orient='records')
    # Short rows come back padded with NaN since empty cells stay ''.
    short = sum(1 for row in rows if any(not isinstance(v, str) and _is_missing(v) for v in row.values()))
    truncated = any(issubclass(w.category, pd.errors.ParserWarning) for w in caught)
    if short or truncated:
        logger.debug(f'Aligned malformed rows: {short} short, long rows truncated={truncated}')
    return rows


def _structured_rows(payload: Any) -> List[Mapping[str, Any]]:
    if isinstance(payload, Mapping):
        for key in ('records', 'data'):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            raise ParseError('structured payload has no record list')
    rows = []
    skipped = 0
    for row in payload:
        if isinstance(row, Mapping):
            rows.append(row)
        else:
            skipped += 1
    if skipped:
        logger.debug(f'Skipped {skipped} non-mapping rows in structured payload')
    return rows


def parse_records(payload: Payload) -> List[FlowRecord]:
    """
    Parse a raw payload into FlowRecords, one per data row, order preserved.

    Args:
        payload: CSV text (or bytes) with a header row, a list of row mappings,
            or an object carrying such a list under ``records`` or ``data``.

    Returns:
        List of FlowRecord objects.

    Raises:
        ParseError: when the payload has no usable header row or is not a
            recognised payload shape. Row-level problems never raise.
    """
    if payload is None:
        raise ParseError('empty payload')
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8', errors='replace')
    if isinstance(payload, str):
        rows = _read_table(payload)
    elif isinstance(payload, (Mapping, list, tuple)):
        rows = _structured_rows(payload)
    else:
        raise ParseError(f'unsupported payload type: {type(payload).__name__}')
    return [build_record(row) for row in rows]


def _to_count(value: Any) -> int:
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def parse_status(payload: Any) -> ServiceStatus:
    """Parse the ``GET /status`` response body into a ServiceStatus."""
    if not isinstance(payload, Mapping):
        raise ParseError('status payload must be a JSON object')
    stats = payload.get('stats') or {}
    if not isinstance(stats, Mapping):
        raise ParseError('status payload has a malformed stats object')

    counts = {}
    reported = []
    for name in ATTACK_CATEGORIES:
        if name in stats and stats[name] is not None:
            reported.append(name)
        counts[name] = _to_count(stats.get(name))

    percentage = stats.get('attack_percentage')
    try:
        percentage = float(percentage) if percentage is not None else None
    except (TypeError, ValueError):
        percentage = None
    if percentage is not None and not math.isfinite(percentage):
        percentage = None

    attacks_info = stats.get('attacks_info') or []
    if not isinstance(attacks_info, list):
        attacks_info = []

    return ServiceStatus(
        running=bool(payload.get('running', False)),
        per_category_counts=counts,
        reported_categories=tuple(reported),
        total_traffic=_to_count(stats.get('total_traffic')),
        attack_traffic=_to_count(stats.get('attack_traffic')),
        attack_percentage=percentage,
        attacks_info=tuple(parse_records(attacks_info)),
    )
