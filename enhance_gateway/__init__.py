"""
Enhancement Gateway

Admission-controlled document enhancement service: rate limiting and
circuit breaking shared across instances, content-addressed deduplication,
durable background jobs and signed webhook notifications.
"""

__version__ = "1.0.0"
