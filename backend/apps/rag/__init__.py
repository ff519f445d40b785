"""
RAG (Retrieval Augmented Generation) app.

Provides:
- Question embedding through the embedding gateway
- Owner-scoped chunk retrieval
- Prompt assembly from chat history and retrieved context
- Buffered and streamed answers
"""
