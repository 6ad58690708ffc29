# Services: parsing, chunking, embedding, storage, retrieval and generation.
