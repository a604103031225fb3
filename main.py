"""
ELLU Studios Assistant - Main Entry Point

Usage:
    # Interactive chat
    python main.py --mode chat

    # Load the course files and rebuild the vector collection
    python main.py --mode populate

    # Knowledge base statistics
    python main.py --mode stats

    # Start API server
    python main.py --mode serve
"""

import os
import sys
import json
import argparse
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def setup_environment():
    """Setup environment and check prerequisites"""
    # Importing config loads .env and the logging configuration
    from config import settings

    has_key = any([
        os.getenv("OPENAI_API_KEY"),
        os.getenv("ANTHROPIC_API_KEY"),
        os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
    ])

    if not has_key:
        logger.warning("No LLM API key found!")
        logger.info("Set one of: OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY")

    if settings.langsmith.enabled:
        logger.info(f"LangSmith tracing enabled for project: {settings.langsmith.project_name}")


class ChatSession:
    """
    Terminal chat session over the RAG pipeline.

    Keeps the running history so follow-up questions see earlier turns.
    """

    def __init__(self, language: str = "auto", pipeline=None):
        from ellu.rag import create_rag_pipeline

        self.pipeline = pipeline or create_rag_pipeline()
        self.pipeline.initialize()
        self.language = language
        self.history: List[Dict[str, str]] = []
        self.total_tokens = 0
        self.total_cost = 0.0

    def chat(self, user_message: str):
        answer = self.pipeline.query(
            user_message,
            language=self.language,
            conversation_history=self.history,
        )
        self.history.append({"role": "user", "content": user_message})
        self.history.append({"role": "assistant", "content": answer.content})
        self.total_tokens += answer.token_usage.total_tokens
        self.total_cost += answer.token_usage.cost.total_cost
        return answer

    def clear_history(self):
        self.history = []

    def get_usage_summary(self) -> str:
        turns = len(self.history) // 2
        return f"{turns} exchanges, {self.total_tokens} tokens, ${self.total_cost:.5f}"


def run_chat(language: str = "auto"):
    """Run interactive chat mode"""
    from ellu.handlers import ElluError

    print("=" * 60)
    print("ELLU Studios Course Assistant - Interactive Chat")
    print("=" * 60)
    print("\nType 'quit' to exit, 'clear' to reset, 'usage' to see token usage")
    print("-" * 60)

    session = ChatSession(language=language)

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() == "quit":
            print("\nGoodbye!")
            break
        if user_input.lower() == "clear":
            session.clear_history()
            print("History cleared.")
            continue
        if user_input.lower() == "usage":
            print(session.get_usage_summary())
            continue

        try:
            answer = session.chat(user_input)
        except ElluError as e:
            print(f"\nError: {e}")
            continue

        print(f"\nAssistant: {answer.content}")
        for source in answer.sources[:3]:
            print(f"  - {source.title} / {source.section} ({source.relevance_score:.2f})")


def run_populate(clear: bool = True) -> Dict[str, int]:
    """Load the course files and (re)build the vector collection"""
    from config import settings
    from ellu.rag import KnowledgeBase
    from ellu.rag.vector_store import CourseVectorStore

    rt = settings.retrieval
    knowledge_base = KnowledgeBase(
        courses_directory=rt.courses_directory,
        state_file=rt.state_file,
        chunk_size=rt.chunk_size,
        chunk_overlap=rt.chunk_overlap,
    )
    chunk_count = knowledge_base.load_documents()
    if chunk_count == 0:
        logger.error(f"No course chunks found in {rt.courses_directory}")
        return {"chunks": 0, "vectors": 0}

    store = CourseVectorStore()
    if clear:
        vectors = store.rebuild(knowledge_base.get_all_chunks())
    else:
        vectors = store.add_chunks(knowledge_base.get_all_chunks())

    logger.info(f"Indexed {vectors} vectors from {chunk_count} chunks into {store.collection_name}")
    return {"chunks": chunk_count, "vectors": vectors}


def run_stats():
    """Print knowledge base and vector store statistics"""
    from config import settings
    from ellu.rag import KnowledgeBase

    rt = settings.retrieval
    knowledge_base = KnowledgeBase(
        courses_directory=rt.courses_directory,
        state_file=rt.state_file,
        chunk_size=rt.chunk_size,
        chunk_overlap=rt.chunk_overlap,
    )
    knowledge_base.load_documents()
    stats = knowledge_base.get_statistics()
    stats["courses"] = {
        course_type: sorted({c.title for c in knowledge_base.get_chunks_by_type(course_type)})
        for course_type in stats["course_types"]
    }

    try:
        from ellu.rag.vector_store import CourseVectorStore
        stats["vector_store"] = CourseVectorStore().get_collection_info()
    except Exception as e:
        logger.warning(f"Vector store unavailable: {e}")
        stats["vector_store"] = None

    print(json.dumps(stats, indent=2, ensure_ascii=False))
    return stats


def run_serve(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start API server"""
    import uvicorn

    logger.info(f"Starting server at http://{host}:{port}")
    uvicorn.run("api:app", host=host, port=port, reload=reload)


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="ELLU Studios Course Assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py --mode chat --language de
    python main.py --mode populate
    python main.py --mode stats
    python main.py --mode serve --port 8000
        """
    )

    parser.add_argument(
        "--mode",
        choices=["serve", "chat", "populate", "stats"],
        default="chat",
        help="Operation mode"
    )
    parser.add_argument(
        "--language",
        choices=["en", "de", "auto"],
        default="auto",
        help="Answer language for chat mode"
    )
    parser.add_argument(
        "--no-clear",
        action="store_true",
        help="Populate without clearing the collection first"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Server host"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", 8000)),
        help="Server port"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload the server on code changes"
    )

    args = parser.parse_args(argv)

    setup_environment()

    if args.mode == "chat":
        run_chat(args.language)
    elif args.mode == "populate":
        result = run_populate(clear=not args.no_clear)
        if result["chunks"] == 0:
            sys.exit(1)
    elif args.mode == "stats":
        run_stats()
    elif args.mode == "serve":
        run_serve(args.host, args.port, args.reload)


if __name__ == "__main__":
    main()
