"""Message history and HTTP message ingestion for channels."""
