"""Product embedding indexing."""

from __future__ import annotations

import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import Product, ProductEmbedding
from replyflow.services.rag.embedder import Embedder, EmbeddingError

logger = logging.getLogger("products.indexing")


async def reindex_product(db: AsyncSession, product: Product, embedder: Embedder) -> ProductEmbedding | None:
    """Replace the product's embedding row with one built from its embedding text."""
    await db.execute(delete(ProductEmbedding).where(ProductEmbedding.product_id == product.id))

    text = product.embedding_text
    if not text:
        logger.warning("Product %s has no text to embed", product.id)
        await db.flush()
        return None

    try:
        vector = await embedder.embed_query(text)
    except EmbeddingError as exc:
        logger.warning("Embedding failed for product %s: %s — stored without vector", product.id, exc)
        vector = None

    row = ProductEmbedding(product_id=product.id, chunk_index=0, content=text, embedding=vector)
    db.add(row)
    await db.flush()
    logger.info("🛍️ Indexed product %s (vector=%s)", product.name, vector is not None)
    return row
