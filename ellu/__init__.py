"""
ELLU Studios Assistant - Source Package

Backend for the ELLU Studios fashion-design course chatbot:
- Multi-provider LLM support (OpenAI, Anthropic, Gemini)
- LangGraph retrieval-augmented generation over course transcripts
- ChromaDB vector store with OpenAI embeddings
- Runtime knowledge updates with backup and restore
- Conversation sessions with JSON/CSV/PDF export

Usage:
    from ellu.rag import create_rag_pipeline
    from ellu.knowledge import KnowledgeUpdateService

    pipeline = create_rag_pipeline()
    answer = pipeline.query("How do I add seam allowance?", language="en")
    print(answer.content)
"""

__version__ = "1.0.0"
__author__ = "ELLU Studios"
