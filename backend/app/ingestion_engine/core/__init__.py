"""
Ingestion engine core components.

- mapping: canonical schema, mapping rules, validated configurations
- field_mapper: payload -> canonical attributes
- token_manager: OAuth token lifecycle
- deduplicator: create-or-merge
- orchestrator: per-event pipeline
"""

__all__ = ["deduplicator", "field_mapper", "keyed_lock", "mapping", "orchestrator", "token_manager", "types"]
