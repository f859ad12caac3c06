"""Activity trail for permission changes and BFF requests."""

from .events import PermissionActivity
from .logger import ActivityLogger
from .middleware import RequestLoggingMiddleware
from .sinks import (
    ActivitySink,
    CompositeActivitySink,
    ElasticsearchActivitySink,
    FileActivitySink,
    get_default_sink,
)

__all__ = [
    "ActivityLogger",
    "ActivitySink",
    "CompositeActivitySink",
    "ElasticsearchActivitySink",
    "FileActivitySink",
    "PermissionActivity",
    "RequestLoggingMiddleware",
    "get_default_sink",
]
