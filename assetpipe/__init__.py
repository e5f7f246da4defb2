"""
Asynchronous Asset-Processing Pipeline

Producers stage objects and enqueue jobs; a pool of workers leases jobs,
processes them, and resolves every delivery with ack, retry or dead-letter,
using an idempotency ledger for at-least-once safety.
"""

__version__ = "1.0.0"
