"""Domain services: PDF extraction, chunking, similarity search, question generation and chat."""
