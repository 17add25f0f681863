"""Re-indexing routes for knowledge bases and products."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, HTTPException, status

from replyflow.deps import DBSession, Services
from replyflow.models import KnowledgeBase, Product
from replyflow.schemas import KnowledgeReindexOut, ProductReindexOut
from replyflow.services.products.indexing import reindex_product
from replyflow.services.rag.ingestion import reindex_knowledge_base

router = APIRouter(prefix="/api", tags=["indexing"])


@router.post("/knowledge-bases/{knowledge_base_id}/reindex")
async def reindex_kb(knowledge_base_id: uuid.UUID, db: DBSession, services: Services) -> KnowledgeReindexOut:
    kb = await db.get(KnowledgeBase, knowledge_base_id)
    if kb is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Knowledge base not found")
    stats = await reindex_knowledge_base(db, kb, services.embedder)
    return KnowledgeReindexOut(knowledge_base_id=kb.id, **stats)


@router.post("/products/{product_id}/reindex")
async def reindex_one_product(product_id: uuid.UUID, db: DBSession, services: Services) -> ProductReindexOut:
    product = await db.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    row = await reindex_product(db, product, services.embedder)
    return ProductReindexOut(
        product_id=product.id,
        indexed=row is not None,
        has_vector=row is not None and row.embedding is not None,
    )
