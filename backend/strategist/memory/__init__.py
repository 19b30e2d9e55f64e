"""Long-term memory and profile state.

- Query builder: shapes a chat message into an embedding query
- Importance: scoring and metadata for stored memories
- Store: pgvector-backed memory rows with similarity dedup
- Extractor: pulls durable facts out of a finished turn
- Profile merge: capped, versioned merges into the user row
"""
