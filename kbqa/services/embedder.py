# =============================================================================
# Embedding Service — Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Generates vector embeddings through any OpenAI-compatible embeddings API
# (OpenAI, Alibaba Cloud DashScope, self-hosted gateways) by pointing the
# OpenAI SDK at a configurable base_url.
#
# One API call per text: one per chunk during ingestion, one per question
# at query time.
#
# embed_many() fans calls out over a bounded thread pool. Each text gets its
# own retry budget (tenacity); output order always matches input order. The
# first text that exhausts its budget cancels the pending calls and fails
# the whole batch.
#
# Pipeline position: Step 3 of ingestion (parse → chunk → embed → store).
# =============================================================================

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

import openai
from openai import OpenAI
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from kbqa.config import Settings
from kbqa.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class TextEmbedder(Protocol):
    """Anything that can turn text into fixed-length vectors."""

    def embed(self, text: str) -> list[float]:
        ...

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class Embedder:
    """
    OpenAI-compatible embedding client.

    The SDK client manages its own HTTP connection pool and is thread-safe,
    so one instance is shared by every worker thread.
    """

    def __init__(self, settings: Settings, client: OpenAI | None = None) -> None:
        self._model = settings.embedding_model
        self._dimensions = settings.embedding_dimensions
        self._request_dimensions = settings.embedding_request_dimensions
        self._max_workers = settings.embedding_max_workers
        self._max_attempts = settings.embedding_max_attempts
        self._retry_wait = settings.embedding_retry_wait_seconds

        if client is None:
            client_kwargs: dict = {"api_key": settings.embedding_api_key}
            if settings.embedding_base_url:
                client_kwargs["base_url"] = settings.embedding_base_url
            client = OpenAI(**client_kwargs)
            logger.info(
                "Initialized embedding client (model=%s, base_url=%s)",
                self._model,
                settings.embedding_base_url or "https://api.openai.com/v1",
            )
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str) -> list[float]:
        """
        Embed a single text with one API call (no retry).

        Raises:
            ExternalServiceError: On provider failure, an empty response, a
                vector whose length is not embedding_dimensions, or a vector
                with NaN or infinite components.
        """
        create_kwargs: dict = {"model": self._model, "input": [text]}
        if self._request_dimensions:
            create_kwargs["dimensions"] = self._dimensions

        try:
            response = self._client.embeddings.create(**create_kwargs)
        except openai.OpenAIError as exc:
            raise ExternalServiceError(f"Embedding request failed: {exc}") from exc

        if not response.data:
            raise ExternalServiceError("Embedding response contained no vectors")

        vector = list(response.data[0].embedding or [])
        if len(vector) != self._dimensions:
            raise ExternalServiceError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimensions}"
            )
        if not all(math.isfinite(x) for x in vector):
            raise ExternalServiceError("Embedding contains non-finite values")
        return vector

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed texts concurrently and return vectors in input order.

        Raises:
            ExternalServiceError: If any text fails after its retry budget.
        """
        if not texts:
            return []

        logger.info(
            "Embedding %d texts (model=%s, workers=%d, attempts=%d)",
            len(texts), self._model, self._max_workers, self._max_attempts,
        )

        with ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="embed",
        ) as pool:
            futures: list[Future[list[float]]] = [
                pool.submit(self._embed_with_retry, text) for text in texts
            ]
            try:
                return [future.result() for future in futures]
            except ExternalServiceError:
                for future in futures:
                    future.cancel()
                raise

    def _embed_with_retry(self, text: str) -> list[float]:
        retryer = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=30),
            retry=retry_if_exception_type(ExternalServiceError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(self.embed, text)
