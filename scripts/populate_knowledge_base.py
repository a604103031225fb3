#!/usr/bin/env python3
"""
Populate the vector store from the course transcripts

1. Load data/courses/*.md (or the saved knowledge state) into chunks
2. Clear the Chroma collection
3. Upload every chunk with its embedding
4. Run a sample query to verify retrieval

Usage:
    # Full rebuild
    python scripts/populate_knowledge_base.py

    # Keep existing vectors and upsert on top
    python scripts/populate_knowledge_base.py --no-clear

    # Rebuild from the course files, ignoring the saved knowledge state
    python scripts/populate_knowledge_base.py --from-courses

    # Verify with a custom query
    python scripts/populate_knowledge_base.py --verify "How do I true a dart?"
"""

import sys
import time
import argparse
import logging
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import settings
from ellu.rag import KnowledgeBase
from ellu.rag.vector_store import CourseVectorStore

logger = logging.getLogger(__name__)


def populate(clear: bool = True, from_courses: bool = False) -> CourseVectorStore:
    rt = settings.retrieval
    knowledge_base = KnowledgeBase(
        courses_directory=rt.courses_directory,
        state_file=None if from_courses else rt.state_file,
        chunk_size=rt.chunk_size,
        chunk_overlap=rt.chunk_overlap,
    )

    chunk_count = knowledge_base.load_documents()
    if chunk_count == 0:
        logger.error(f"No document chunks found in {rt.courses_directory}")
        sys.exit(1)

    stats = knowledge_base.get_statistics()
    logger.info(f"Loaded {chunk_count} chunks from {stats['total_sources']} sources")
    for course_type, count in sorted(stats["course_types"].items()):
        logger.info(f"  {course_type}: {count} chunks")

    store = CourseVectorStore()
    before = store.count()
    if before and clear:
        logger.info(f"Collection holds {before} vectors, clearing for a clean upload")

    start = time.time()
    chunks = knowledge_base.get_all_chunks()
    written = store.rebuild(chunks) if clear else store.add_chunks(chunks)
    elapsed = time.time() - start

    info = store.get_collection_info()
    logger.info(f"Uploaded {written} vectors in {elapsed:.2f}s")
    logger.info(f"Collection {info['name']} now holds {info['count']} vectors")
    return store


def verify(store: CourseVectorStore, query: str):
    results = store.search(query, limit=3, min_relevance=0.0)
    if not results:
        logger.warning(f"No results for verification query: {query}")
        return

    print(f"\nTop results for: {query}")
    for chunk, score in results:
        print(f"  [{score:.2f}] {chunk.title} / {chunk.section}")


def main():
    parser = argparse.ArgumentParser(
        description="Populate the ChromaDB collection from the course transcripts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--no-clear",
        action="store_true",
        help="Upsert without clearing the collection first"
    )
    parser.add_argument(
        "--from-courses",
        action="store_true",
        help="Ignore the saved knowledge state and chunk the course files"
    )
    parser.add_argument(
        "--verify",
        type=str,
        default="What is seam allowance?",
        help="Query used to verify retrieval after upload"
    )

    args = parser.parse_args()

    store = populate(clear=not args.no_clear, from_courses=args.from_courses)
    verify(store, args.verify)


if __name__ == "__main__":
    main()
