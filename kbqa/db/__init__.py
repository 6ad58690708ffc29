# =============================================================================
# Database Package
# =============================================================================
# Provides the SQLAlchemy engine, session scope, and ORM models.
#
# Key exports:
#   - build_engine / build_session_factory / session_scope / create_schema
#   - Base: SQLAlchemy declarative base for ORM models
#   - Document, Chunk, Embedding, QueryRecord: ORM models
#   - DocumentStatus: the ingestion state machine
# =============================================================================
