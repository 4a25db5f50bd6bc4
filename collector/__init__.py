"""
Collector Django application.

This app aggregates third-party video listing sources into a single
deduplicated, classified catalog and runs resumable bulk collection tasks.
"""
