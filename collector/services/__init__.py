"""
Services module for the collection pipeline.

Contains:
- response_parser: Decoding of JSON/XML source listings
- classifier: Raw source category to canonical category resolution
- normalizer: Title, year, area and play URL cleanup
- pipeline: Classify and normalize one parsed item
- deduplicator: Dedup keys and cross-source merging
- catalog_store: Persistence and querying of catalog entries
- source_registry: Source lookup, health probes and category sync
- cache: In-process lookup cache and the aggregate query cache
- aggregator: Federated fan-out queries with a short-lived cache
- task_engine: Resumable collection tasks with checkpoints
- url_validator: Play URL validation and broken link reports
"""
