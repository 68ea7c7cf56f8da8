"""Knowledge-base chat assistant: document ingestion, retrieval and streamed RAG answers."""

__version__ = "0.1.0"
