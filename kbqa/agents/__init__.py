# Query engine: LangGraph graph from access scope to recorded answer.
