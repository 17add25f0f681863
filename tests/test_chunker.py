"""Tests for paragraph-first chunking."""

from __future__ import annotations

from replyflow.services.rag.chunker import chunk_text, split_text


def test_empty_text_has_no_chunks():
    assert split_text("") == []
    assert split_text("   \n\n  ") == []


def test_small_paragraphs_are_packed_together():
    chunks = split_text("First para.\n\nSecond para.", max_chars=100)
    assert chunks == ["First para.\n\nSecond para."]


def test_long_paragraph_splits_on_sentences():
    paragraph = " ".join(f"Sentence number {i} is here." for i in range(20))
    chunks = split_text(paragraph, max_chars=120)
    assert len(chunks) > 1
    assert all(len(c) <= 140 for c in chunks)
    assert all(c.endswith(".") for c in chunks)


def test_chunking_is_deterministic_and_indexed():
    text = "Alpha.\n\n" + "Beta gamma. " * 50
    first = chunk_text(text, max_chars=200)
    second = chunk_text(text, max_chars=200)
    assert [c.text for c in first] == [c.text for c in second]
    assert [c.chunk_index for c in first] == list(range(len(first)))
