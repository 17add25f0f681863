"""Tests for product filters, search and indexing."""

from __future__ import annotations

from decimal import Decimal

import pytest

from replyflow.models import Product, ProductCategory, ProductEmbedding
from replyflow.services.products.indexing import reindex_product
from replyflow.services.products.retrieval import ProductRetrievalService, extract_filters_from_query
from tests.fakes import FakeEmbedder


# ── Filters ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "query,expected",
    [
        ("tents under RM 500", {"max_price": 500.0}),
        ("anything above $1,200?", {"min_price": 1200.0}),
        ("between 300 and 100 please", {"min_price": 100.0, "max_price": 300.0}),
        ("is the stove in stock", {"in_stock_only": True}),
        ("hello there", {}),
        ("", {}),
    ],
)
def test_extract_filters_from_query(query, expected):
    assert extract_filters_from_query(query) == expected


def test_extract_filters_never_raises_on_bad_input():
    assert extract_filters_from_query(None) == {}


# ── Search ──────────────────────────────────────────────────────────


async def _product(db, company, name, price, **kwargs) -> Product:
    product = Product(company_id=company.id, name=name, price=Decimal(price), **kwargs)
    db.add(product)
    await db.flush()
    return product


@pytest.mark.asyncio
async def test_semantic_search_respects_threshold_and_order(db, company):
    tent = await _product(db, company, "Trail Tent", "350.00", images=["/uploads/tent.jpg"])
    stove = await _product(db, company, "Camp Stove", "80.00")
    lamp = await _product(db, company, "Lamp", "20.00")
    db.add_all([
        ProductEmbedding(product_id=tent.id, content="tent", embedding=[1.0, 0.0]),
        ProductEmbedding(product_id=stove.id, content="stove", embedding=[0.8, 0.6]),
        ProductEmbedding(product_id=lamp.id, content="lamp", embedding=[0.0, 1.0]),
    ])
    await db.flush()

    service = ProductRetrievalService(
        FakeEmbedder(default=[1.0, 0.0]), public_base_url="https://shop.example.com/", similarity_threshold=0.3
    )
    results = await service.search(db, company.id, "tent for two")

    assert [r.name for r in results] == ["Trail Tent", "Camp Stove"]
    assert results[0].match_type == "semantic"
    assert results[0].image == "https://shop.example.com/uploads/tent.jpg"


@pytest.mark.asyncio
async def test_filters_apply_before_ranking(db, company):
    tent = await _product(db, company, "Trail Tent", "350.00")
    stove = await _product(db, company, "Camp Stove", "80.00")
    db.add_all([
        ProductEmbedding(product_id=tent.id, content="tent", embedding=[1.0, 0.0]),
        ProductEmbedding(product_id=stove.id, content="stove", embedding=[0.9, 0.1]),
    ])
    await db.flush()

    results = await ProductRetrievalService(FakeEmbedder(default=[1.0, 0.0])).search(
        db, company.id, "gear", {"max_price": 100}
    )
    assert [r.name for r in results] == ["Camp Stove"]


@pytest.mark.asyncio
async def test_keyword_search_when_embeddings_unavailable(db, company):
    await _product(db, company, "Trail Tent", "350.00", description="Two person tent")
    await _product(db, company, "Camp Stove", "80.00")

    results = await ProductRetrievalService(FakeEmbedder(fail=True)).search(db, company.id, "tent")

    assert [r.name for r in results] == ["Trail Tent"]
    assert results[0].match_type == "keyword"


@pytest.mark.asyncio
async def test_featured_products_for_queries_without_keywords(db, company):
    await _product(db, company, "Plain", "10.00")
    await _product(db, company, "Star", "10.00", is_featured=True)

    results = await ProductRetrievalService(FakeEmbedder(fail=True)).search(db, company.id, "hi")

    assert [r.name for r in results] == ["Star"]
    assert results[0].match_type == "featured"


@pytest.mark.asyncio
async def test_sale_pricing_is_reported(db, company):
    await _product(db, company, "Jacket", "200.00", sale_price=Decimal("150.00"), currency="MYR")
    [match] = await ProductRetrievalService(FakeEmbedder(fail=True)).search(db, company.id, "jacket")
    assert match.is_on_sale
    assert match.discount_percentage == 25
    assert match.formatted_price == "MYR 150.00"


@pytest.mark.asyncio
async def test_has_active_products(db, company):
    service = ProductRetrievalService(FakeEmbedder())
    assert not await service.has_active_products(db, company.id)
    await _product(db, company, "Hidden", "1.00", is_active=False)
    assert not await service.has_active_products(db, company.id)
    await _product(db, company, "Shown", "1.00")
    assert await service.has_active_products(db, company.id)


# ── Indexing ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_reindex_product_embeds_flattened_text(db, company):
    category = ProductCategory(company_id=company.id, name="Shelter")
    db.add(category)
    product = await _product(
        db, company, "Trail Tent", "350.00",
        category=category, brand="Acme", specifications={"weight": "2kg"}, tags=["camping"],
    )
    embedder = FakeEmbedder(default=[0.1, 0.2])

    row = await reindex_product(db, product, embedder)

    assert row is not None
    assert row.embedding == [0.1, 0.2]
    assert "Brand: Acme" in row.content
    assert "Category: Shelter" in row.content
    assert "weight: 2kg" in row.content
    assert embedder.calls == [[row.content]]


@pytest.mark.asyncio
async def test_reindex_product_without_vector_on_embedding_failure(db, company):
    product = await _product(db, company, "Trail Tent", "350.00")
    row = await reindex_product(db, product, FakeEmbedder(fail=True))
    assert row is not None
    assert row.embedding is None
