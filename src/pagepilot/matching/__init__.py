"""Website pattern matching and task relevance scoring."""
