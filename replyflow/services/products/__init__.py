"""Product catalog retrieval and indexing."""
