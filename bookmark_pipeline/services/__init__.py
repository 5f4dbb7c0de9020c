"""Domain services: summary, chunking, embedding, entity extraction and enrichment."""
