# =============================================================================
# Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Inputs to the KnowledgeBaseService invocation points. Field names are
# snake_case in Python and camelCase on the wire (alias_generator=to_camel);
# either spelling is accepted when validating.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialised with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadRequest(CamelModel):
    """
    Register a new document.

    Example:
        {
            "ownerId": "user-123",
            "filename": "handbook.pdf",
            "mediaType": "application/pdf",
            "employeeVisible": true
        }
    """

    owner_id: str = Field(..., min_length=1, description="Uploading user's id")
    filename: str = Field(..., min_length=1, max_length=500)
    media_type: str = Field(..., description="Declared media type of the payload")
    payload: bytes = Field(..., repr=False, description="Raw file bytes")
    employee_visible: bool = Field(
        default=False,
        description="Share with employees of this owner",
    )
    customer_visible: bool = Field(
        default=False,
        description="Expose in customer-mode search",
    )


class ProcessDocumentRequest(CamelModel):
    """
    Run the ingestion pipeline for an uploaded document.

    `payload` and `media_type` come from the caller; when payload is omitted
    the stored bytes and declared media type are used instead.
    """

    document_id: int | None = Field(default=None, description="Document to process")
    media_type: str | None = Field(default=None, description="Declared media type")
    payload: bytes | None = Field(default=None, repr=False)
    embed: bool = Field(
        default=True,
        description="False stores chunks only; call generate_embeddings later",
    )


class GenerateEmbeddingsRequest(CamelModel):
    """Embed the stored chunks of a document processed with embed=False."""

    document_id: int | None = Field(default=None)


class QueryRequest(CamelModel):
    """
    Ask a question.

    Example:
        {"question": "What is the refund policy?", "userId": "user-123"}
    """

    question: str = Field(
        ...,
        max_length=2000,
        description="Natural-language question",
        examples=["What is the refund policy?"],
    )
    user_id: str | None = Field(
        default=None,
        description="Requester id; may be omitted in customer mode",
    )
    employer_id: str | None = Field(
        default=None,
        description="Set for employees; selects employee mode",
    )
    customer_mode: bool = Field(
        default=False,
        description="Search customer-visible documents from every owner",
    )
