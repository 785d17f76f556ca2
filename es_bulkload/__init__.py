"""
es_bulkload — NDJSON → Elasticsearch 벌크 적재 패키지

CLI:
    python load_ndjson.py --index books --server http://es01:9200 data.ndjson.gz -z

Python:
    from es_bulkload import LoadConfig, run_load
    run_load(LoadConfig(index_name="books", workers=8, id_field="id"), "data.ndjson")

구성 요소 (async):
    from es_bulkload import Transport, IndexAdmin, bulk_settings, dispatch
    transport = Transport(config)
    admin = IndexAdmin(transport, config.index_name)
    async with bulk_settings(admin, config):
        await dispatch(lines, config, transport, RunStats())
"""

from .builder import BulkAction, MalformedLineError, build_payload, make_action
from .config import LoadConfig, parse_basic_auth
from .indexer import IndexAdmin, load_mapping
from .lifecycle import ServerSettingsSnapshot, bulk_settings
from .log import get_logger, setup_logging
from .pipeline import Worker, dispatch, iter_lines, run_load, run_load_async
from .retry import RetryConfig, async_with_retry
from .selector import ServerSelector
from .stats import RunStats
from .transport import BulkItemError, Transport, TransportFailure, build_es_client

__version__ = "0.6.3"

__all__ = [
    "LoadConfig", "parse_basic_auth",
    "BulkAction", "MalformedLineError", "make_action", "build_payload",
    "ServerSelector", "RetryConfig", "async_with_retry",
    "Transport", "TransportFailure", "BulkItemError", "build_es_client",
    "IndexAdmin", "load_mapping",
    "ServerSettingsSnapshot", "bulk_settings",
    "Worker", "dispatch", "iter_lines", "run_load", "run_load_async",
    "RunStats", "setup_logging", "get_logger",
]
