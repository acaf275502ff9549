"""
hecship: Buffered exporter shipping completed HTTP transactions to a
Splunk HTTP Event Collector.

Records arrive from an upstream stream, are admitted through a filter,
batched in memory and flushed on a fixed-rate timer as enriched JSON
events.
"""

__version__ = "0.1.0"
