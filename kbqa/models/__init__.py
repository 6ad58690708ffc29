# Pydantic request/response schemas for KnowledgeBaseService.
