"""Product search for recommendation context.

Structured filters narrow the catalog first; within them, semantic
search over product embeddings is tried, then keyword matching, then
featured products when the query has no usable words.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import Product, ProductEmbedding
from replyflow.services.rag.embedder import Embedder, EmbeddingError
from replyflow.services.rag.retrieval import cosine_similarity

logger = logging.getLogger("products.retrieval")

MIN_KEYWORD_LENGTH = 3
KEYWORD_SCORE = 0.6
FEATURED_SCORE = 0.5

_AMOUNT = r"(?:\$|rm|usd|myr)?\s*(\d+(?:[.,]\d+)?)"
_MAX_PRICE_RE = re.compile(
    r"\b(?:under|below|less\s+than|cheaper\s+than)\s*" + _AMOUNT, re.IGNORECASE
)
_MIN_PRICE_RE = re.compile(
    r"\b(?:over|above|more\s+than)\s*" + _AMOUNT, re.IGNORECASE
)
_BETWEEN_RE = re.compile(
    r"\bbetween\s*" + _AMOUNT + r"\s*(?:and|-|to)\s*" + _AMOUNT, re.IGNORECASE
)
_IN_STOCK_RE = re.compile(r"\bin\s+stock\b|\bavailable\b", re.IGNORECASE)


@dataclass
class ProductMatch:
    product_id: uuid.UUID
    name: str
    description: str
    price: Decimal
    sale_price: Decimal | None
    formatted_price: str
    currency: str
    brand: str | None
    category: str | None
    stock_status: str
    is_on_sale: bool
    discount_percentage: int
    image: str | None
    relevance_score: float
    match_type: str  # semantic | keyword | featured
    specifications: dict[str, Any] = field(default_factory=dict)


def _amount(raw: str) -> float:
    return float(raw.replace(",", ""))


def extract_filters_from_query(query: str) -> dict[str, Any]:
    """Best-effort price/stock filters from free text. Never raises."""
    filters: dict[str, Any] = {}
    if not isinstance(query, str) or not query:
        return filters
    try:
        if m := _MAX_PRICE_RE.search(query):
            filters["max_price"] = _amount(m.group(1))
        if m := _MIN_PRICE_RE.search(query):
            filters["min_price"] = _amount(m.group(1))
        if m := _BETWEEN_RE.search(query):
            low, high = sorted((_amount(m.group(1)), _amount(m.group(2))))
            filters["min_price"] = low
            filters["max_price"] = high
        if _IN_STOCK_RE.search(query):
            filters["in_stock_only"] = True
    except ValueError:
        logger.debug("Could not parse price filters from %r", query[:100])
        return {}
    return filters


class ProductRetrievalService:
    def __init__(
        self,
        embedder: Embedder,
        *,
        public_base_url: str = "",
        similarity_threshold: float = 0.3,
    ) -> None:
        self._embedder = embedder
        self._public_base_url = public_base_url.rstrip("/")
        self._threshold = similarity_threshold

    async def has_active_products(self, db: AsyncSession, company_id: uuid.UUID) -> bool:
        stmt = select(Product.id).where(
            Product.company_id == company_id, Product.is_active.is_(True)
        ).limit(1)
        return (await db.execute(stmt)).first() is not None

    async def search(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        query: str,
        filters: dict[str, Any] | None = None,
        limit: int = 5,
    ) -> list[ProductMatch]:
        filters = filters or {}
        logger.info("Product search for company %s: %r filters=%s", company_id, query[:100], filters)
        base = self._base_query(company_id, filters)

        semantic = await self._semantic_scores(db, company_id, query, limit * 2)
        if semantic:
            ids = [pid for pid, _ in semantic]
            found = {p.id: p for p in (await db.execute(base.where(Product.id.in_(ids)))).scalars().all()}
            results = [
                self._format(found[pid], score, "semantic")
                for pid, score in semantic
                if pid in found
            ]
            results.sort(key=lambda r: r.relevance_score, reverse=True)
            if results:
                logger.info("Semantic product search: %d results", len(results[:limit]))
                return results[:limit]

        results = await self._keyword_search(db, base, query, limit)
        logger.info("Keyword product search: %d results", len(results))
        return results

    # ── Internals ───────────────────────────────────────────────

    @staticmethod
    def _base_query(company_id: uuid.UUID, filters: dict[str, Any]):
        stmt = select(Product).where(Product.company_id == company_id, Product.is_active.is_(True))
        if filters.get("category_id"):
            stmt = stmt.where(Product.category_id == filters["category_id"])
        if filters.get("min_price") is not None:
            stmt = stmt.where(Product.price >= filters["min_price"])
        if filters.get("max_price") is not None:
            stmt = stmt.where(Product.price <= filters["max_price"])
        if filters.get("in_stock_only"):
            stmt = stmt.where(Product.stock_status == "in_stock")
        elif filters.get("stock_status"):
            stmt = stmt.where(Product.stock_status == filters["stock_status"])
        if filters.get("brand"):
            stmt = stmt.where(Product.brand.ilike(f"%{filters['brand']}%"))
        return stmt

    async def _semantic_scores(
        self, db: AsyncSession, company_id: uuid.UUID, query: str, limit: int
    ) -> list[tuple[uuid.UUID, float]]:
        try:
            query_vector = await self._embedder.embed_query(query)
        except EmbeddingError as exc:
            logger.warning("Product query embedding failed: %s", exc)
            return []

        stmt = (
            select(ProductEmbedding.product_id, ProductEmbedding.embedding)
            .join(Product, ProductEmbedding.product_id == Product.id)
            .where(
                Product.company_id == company_id,
                Product.is_active.is_(True),
                ProductEmbedding.embedding.is_not(None),
            )
        )
        best: dict[uuid.UUID, float] = {}
        for product_id, vector in (await db.execute(stmt)).all():
            if not vector:
                continue
            score = cosine_similarity(query_vector, vector)
            if score > best.get(product_id, float("-inf")):
                best[product_id] = score

        ranked = sorted(best.items(), key=lambda item: item[1], reverse=True)
        return [(pid, score) for pid, score in ranked if score >= self._threshold][:limit]

    async def _keyword_search(self, db: AsyncSession, base, query: str, limit: int) -> list[ProductMatch]:
        keywords = [w for w in query.lower().split() if len(w) >= MIN_KEYWORD_LENGTH]
        if not keywords:
            featured = (await db.execute(base.where(Product.is_featured.is_(True)).limit(limit))).scalars().all()
            if not featured:
                featured = (await db.execute(base.limit(limit))).scalars().all()
            return [self._format(p, FEATURED_SCORE, "featured") for p in featured]

        clauses = []
        for word in keywords:
            pattern = f"%{word}%"
            clauses.extend([
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.short_description.ilike(pattern),
                Product.brand.ilike(pattern),
            ])
        products = list((await db.execute(base.where(or_(*clauses)).limit(limit))).scalars().all())

        if len(products) < limit:
            pattern = f"%{query}%"
            stmt = base.where(
                or_(
                    Product.name.ilike(pattern),
                    Product.description.ilike(pattern),
                    Product.short_description.ilike(pattern),
                )
            )
            if products:
                stmt = stmt.where(Product.id.not_in([p.id for p in products]))
            extra = (await db.execute(stmt.limit(limit - len(products)))).scalars().all()
            products.extend(extra)

        return [self._format(p, KEYWORD_SCORE, "keyword") for p in products]

    def absolute_url(self, url: str | None) -> str | None:
        if url and url.startswith("/") and self._public_base_url:
            return f"{self._public_base_url}{url}"
        return url

    def _format(self, product: Product, score: float, match_type: str) -> ProductMatch:
        description = product.short_description or (product.description or "")[:200]
        return ProductMatch(
            product_id=product.id,
            name=product.name,
            description=description,
            price=product.price,
            sale_price=product.sale_price,
            formatted_price=product.formatted_price,
            currency=product.currency,
            brand=product.brand,
            category=product.category.name if product.category else None,
            stock_status=product.stock_status,
            is_on_sale=product.is_on_sale,
            discount_percentage=product.discount_percentage,
            image=self.absolute_url(product.primary_image),
            relevance_score=score,
            match_type=match_type,
            specifications=dict(product.specifications or {}),
        )
