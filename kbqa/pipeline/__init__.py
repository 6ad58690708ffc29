# Ingestion pipeline: parse → chunk → embed → store, with status tracking.
