"""
Worker module.
Contains the worker pool, retry policy and processing functions.
"""

from assetpipe.worker.policy import Resolution, RetryPolicy
from assetpipe.worker.pool import DrainReport, WorkerPool
from assetpipe.worker.processors import (
    ProcessFn,
    build_process_fn,
    get_processor,
    list_processors,
    register_processor,
    result_key_for,
)

__all__ = [
    "WorkerPool",
    "DrainReport",
    "RetryPolicy",
    "Resolution",
    "ProcessFn",
    "build_process_fn",
    "get_processor",
    "list_processors",
    "register_processor",
    "result_key_for",
]
