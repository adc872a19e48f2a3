"""
Vector Index Builder for the Portfolio RAG Service

Loads portfolio documents, chunks them, optionally prepends an LLM-generated
context to each chunk, embeds the result and upserts it to the vector index in
batches. Record ids are ``<source_id>_<chunk_index>``, so re-running overwrites
existing records instead of duplicating them.

Usage:
    # Command-line
    python -m rag.index_builder                 # no-op if the index already has records
    python -m rag.index_builder --force         # delete everything, then re-ingest
    SKIP_CONTEXT=true python -m rag.index_builder --clear

    # Programmatic
    pipeline = IngestionPipeline(config, embedder, BatchIndexer(index), augmenter)
    report = await pipeline.run(force=True)

Exit codes: 0 on success or intentional skip, 1 on configuration or fatal error.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

import httpx

from rag.chunking import chunk_text
from rag.config import IngestionConfig
from rag.contextual import ContextualAugmenter
from rag.embeddings import build_embedding_client
from rag.errors import IngestionConfigError, IngestionError
from rag.prompt_builder import PromptProfile
from rag.sources import SourceDocument, fetch_github_readmes, load_local_sources
from rag.vector_index import IndexStats, VectorRecord, build_vector_index

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    documents: int = 0
    chunks: int = 0
    vectors_upserted: int = 0
    skipped: bool = False


class BatchIndexer:
    """
    Upserts records in fixed-size batches to stay under request payload limits.

    Attributes:
        index: Vector index backend (PineconeIndex or LocalFaissIndex)
        batch_size: Records per upsert call
    """

    def __init__(self, index, batch_size: int = 100):
        self.index = index
        self.batch_size = batch_size

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        total = 0
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            await self.index.upsert(batch)
            total += len(batch)
            logger.info(
                f"Upserted batch {start // self.batch_size + 1} ({total}/{len(records)} vectors)"
            )
        return total

    async def clear_all(self):
        await self.index.delete_all()
        logger.info("Cleared all vectors")

    async def describe_stats(self) -> IndexStats:
        return await self.index.describe_stats()


def _has_model(models: List[str], wanted: str) -> bool:
    base = wanted.split(":")[0]
    return any(name == wanted or name.split(":")[0] == base for name in models)


async def check_ollama(base_url: str, embed_model: Optional[str] = None, context_model: Optional[str] = None,
                       http_client: Optional[httpx.AsyncClient] = None) -> Optional[List[str]]:
    """
    List the models of the local Ollama server and warn about missing ones.

    Returns:
        Installed model names, or None if Ollama is not reachable
    """
    client = http_client or httpx.AsyncClient(timeout=5.0)
    try:
        response = await client.get(f"{base_url.rstrip('/')}/api/tags")
        response.raise_for_status()
        models = [m.get("name", "") for m in response.json().get("models", [])]
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Ollama not reachable at {base_url}: {e}")
        return None
    finally:
        if http_client is None:
            await client.aclose()

    logger.info(f"Ollama running. Models: {', '.join(models) or '(none)'}")
    if embed_model and not _has_model(models, embed_model):
        logger.warning(f"{embed_model} not found. Run: ollama pull {embed_model}")
    if context_model and not _has_model(models, context_model):
        logger.warning(f"{context_model} not found. Run: ollama pull {context_model} (or set SKIP_CONTEXT=true)")
    return models


class IngestionPipeline:
    """
    Sequential ingestion job: load -> chunk -> augment -> embed -> upsert.

    Attributes:
        config: Ingestion configuration
        embedder: Embedding client (same dimension as the index)
        indexer: BatchIndexer over the target index
        augmenter: ContextualAugmenter, or None to embed raw chunks
    """

    def __init__(self, config: IngestionConfig, embedder, indexer: BatchIndexer,
                 augmenter: Optional[ContextualAugmenter] = None, owner_name: Optional[str] = None):
        self.config = config
        self.embedder = embedder
        self.indexer = indexer
        self.augmenter = augmenter
        self.owner_name = owner_name

    async def load_documents(self) -> List[SourceDocument]:
        documents = load_local_sources(self.config.data_dir, self.owner_name)
        if self.config.github_owner and self.config.github_repos:
            documents += await fetch_github_readmes(
                self.config.github_owner, self.config.github_repos, self.config.github_token
            )
        return documents

    async def build_records(self, document: SourceDocument) -> List[VectorRecord]:
        chunks = chunk_text(document.text, self.config.chunk_max_chars, self.config.chunk_overlap)
        logger.info(f"Processing {document.source_id}: {len(chunks)} chunks")

        timestamp = date.today().isoformat()
        records = []
        for chunk in chunks:
            text = chunk.text
            if self.augmenter is not None:
                logger.debug(f"  chunk {chunk.chunk_index + 1}/{chunk.total_chunks} context...")
                text = await self.augmenter.augment(document.text, chunk)

            vector = await self.embedder.embed(text)
            records.append(VectorRecord(
                id=f"{document.source_id}_{chunk.chunk_index}",
                values=vector,
                metadata={
                    "text": text,
                    "source": document.source_id,
                    "type": document.source_type,
                    "chunkIndex": chunk.chunk_index,
                    "totalChunks": chunk.total_chunks,
                    "timestamp": timestamp,
                    **document.metadata,
                },
            ))
        return records

    async def run(self, force: bool = False, clear: bool = False) -> IngestionReport:
        """
        Run one ingestion.

        Args:
            force: Re-ingest even if the index already has records (implies clear)
            clear: Delete all records before ingesting

        Returns:
            IngestionReport (``skipped`` when the index was left untouched)
        """
        clear = clear or force

        stats = await self.indexer.describe_stats()
        if stats.dimension and stats.dimension != self.embedder.dimension:
            raise IngestionConfigError(
                f"Index dimension {stats.dimension} does not match embedding dimension {self.embedder.dimension}"
            )

        if stats.total_records > 0 and not clear:
            logger.info(f"Index already has {stats.total_records} vectors. Use --force to re-ingest.")
            return IngestionReport(skipped=True)

        if clear:
            await self.indexer.clear_all()

        documents = await self.load_documents()
        if not documents:
            logger.warning(f"No source documents found in {self.config.data_dir}")

        records: List[VectorRecord] = []
        for document in documents:
            records.extend(await self.build_records(document))

        logger.info(f"Upserting {len(records)} vectors...")
        upserted = await self.indexer.upsert(records)
        return IngestionReport(documents=len(documents), chunks=len(records), vectors_upserted=upserted)


async def run_ingestion(config: IngestionConfig, force: bool = False, clear: bool = False) -> IngestionReport:
    """Build the pipeline from configuration, run it and release its clients."""
    if config.embedding.provider == "ollama" or not config.skip_context:
        models = await check_ollama(
            config.ollama_base_url,
            embed_model=config.embedding.model if config.embedding.provider == "ollama" else None,
            context_model=None if config.skip_context else config.context_model,
        )
        if models is None and config.embedding.provider == "ollama":
            raise IngestionError("Ollama not running. Start it with: ollama serve")
        if models is None:
            logger.warning("Context generation unavailable, chunks will be embedded without context")

    embedder = build_embedding_client(config.embedding)
    index = build_vector_index(config.vector_index, config.embedding.dimension)
    augmenter = None
    if not config.skip_context:
        augmenter = ContextualAugmenter(
            base_url=config.ollama_base_url,
            model=config.context_model,
            timeout=config.context_timeout,
            max_document_chars=config.context_doc_chars,
        )

    profile = PromptProfile.load(os.getenv("RAG_PROFILE_PATH") or None)
    pipeline = IngestionPipeline(config, embedder, BatchIndexer(index, config.batch_size), augmenter,
                                 owner_name=profile.owner_name)
    try:
        return await pipeline.run(force=force, clear=clear)
    finally:
        await embedder.aclose()
        await index.aclose()
        if augmenter is not None:
            await augmenter.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI interface for ingestion."""
    parser = argparse.ArgumentParser(
        description="Ingest portfolio documents into the vector index"
    )
    parser.add_argument(
        '--force',
        action='store_true',
        help='Re-ingest even if the index already has records (implies --clear)'
    )
    parser.add_argument(
        '--clear',
        action='store_true',
        help='Delete all existing vectors before ingesting'
    )
    parser.add_argument(
        '--data-dir',
        type=str,
        default=None,
        help='Directory with PDFs, markdown and experience/projects/skills JSON'
    )

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )

    try:
        config = IngestionConfig.from_env()
        if args.data_dir:
            config.data_dir = args.data_dir
        config.validate()
    except (IngestionConfigError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    mode = "fast (no context generation)" if config.skip_context else "full (contextual retrieval)"
    logger.info(f"Portfolio RAG ingestion: mode={mode}, force={args.force}, clear={args.clear or args.force}")

    try:
        report = asyncio.run(run_ingestion(config, force=args.force, clear=args.clear))
    except IngestionConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        return 1

    if report.skipped:
        return 0

    logger.info(
        f"Ingestion complete: {report.documents} documents, {report.chunks} chunks, "
        f"{report.vectors_upserted} vectors upserted"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
