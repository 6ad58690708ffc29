# =============================================================================
# Knowledge-Base Q&A Engine
# =============================================================================
# Answers natural-language questions from uploaded documents only, with
# citations. Two halves:
#   ingestion  — parse → chunk → embed → persist, with status tracking
#   retrieval  — scope → embed question → rank → synthesise → record
#
# Package structure:
#   kbqa/
#   ├── agents/       → LangGraph query graph (scope, retrieve, answer, record)
#   ├── db/           → Engine, session scope, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── pipeline/     → Document ingestion orchestrator
#   ├── services/     → Parsing, chunking, embedding, access control,
#   │                    similarity search, synthesis, persistence
#   ├── config.py     → Settings object, passed explicitly to components
#   ├── errors.py     → Error taxonomy
#   └── service.py    → External invocation points
# =============================================================================

__version__ = "0.1.0"
