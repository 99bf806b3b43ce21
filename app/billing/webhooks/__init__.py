"""
Gateway webhook intake.

- payloads: strict internal representation of a validated webhook
- intake: idempotency guard, event store and the processing pipeline
- handlers: per-event-type handlers and the dispatch registry
- views: the HTTP endpoint
"""
