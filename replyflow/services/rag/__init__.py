"""Knowledge-base retrieval: chunking, embedding, indexing and search."""
