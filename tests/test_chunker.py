"""
Tests for Document Chunker Module

Run with: pytest tests/test_chunker.py -v
"""

import pytest
from unittest.mock import Mock, patch

from support_rag.chunker import (
    DocumentChunker,
    SentenceBoundarySplitter,
    estimate_token_count,
)
from support_rag.exceptions import ValidationError
from support_rag.models import Document, DocumentChunk, DocumentType


class TestEstimateTokenCount:
    """Tests for token estimation."""

    def test_empty_string(self):
        assert estimate_token_count("") == 0

    def test_four_characters_per_token(self):
        assert estimate_token_count("a" * 400) == 100
        assert estimate_token_count("abc") == 0


class TestSentenceBoundarySplitter:
    """Tests for the sentence-aware splitting rule."""

    def test_short_text_is_single_chunk(self):
        splitter = SentenceBoundarySplitter(chunk_size=1000, chunk_overlap=200)

        assert splitter.split_text("  Hello there.  ") == ["Hello there."]

    def test_empty_text(self):
        splitter = SentenceBoundarySplitter(chunk_size=1000, chunk_overlap=200)

        assert splitter.split_text("") == []
        assert splitter.split_text("   \n  ") == []

    def test_no_punctuation_hard_cuts(self):
        """Test 5000 characters without terminators at the defaults."""
        splitter = SentenceBoundarySplitter(chunk_size=1000, chunk_overlap=200)

        chunks = splitter.split_text("a" * 5000)

        assert len(chunks) == 6
        assert all(len(c) <= 1000 for c in chunks)
        assert [len(c) for c in chunks] == [1000] * 6

    def test_breaks_after_sentence_terminator(self):
        """Test that a chunk ends right after the last . ? or !"""
        text = "First sentence here. Second one is here! Third sentence goes past the limit"
        splitter = SentenceBoundarySplitter(chunk_size=50, chunk_overlap=0)

        chunks = splitter.split_text(text)

        assert chunks[0] == "First sentence here. Second one is here!"

    def test_question_mark_is_a_terminator(self):
        text = "Can I return items? " + "x" * 40
        splitter = SentenceBoundarySplitter(chunk_size=30, chunk_overlap=0)

        assert splitter.split_text(text)[0] == "Can I return items?"

    def test_terminator_just_past_limit_is_not_included(self):
        """Test that no chunk grows past chunk_size to reach a terminator."""
        text = "a" * 10 + "." + "b" * 20
        splitter = SentenceBoundarySplitter(chunk_size=10, chunk_overlap=0)

        chunks = splitter.split_text(text)

        assert chunks[0] == "a" * 10
        assert all(len(c) <= 10 for c in chunks)

    def test_consecutive_chunks_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(300))
        splitter = SentenceBoundarySplitter(chunk_size=100, chunk_overlap=20)

        chunks = splitter.split_text(text)

        for previous, current in zip(chunks, chunks[1:]):
            assert previous[-20:] == current[:20]

    def test_covers_whole_text(self):
        """Test that no content is lost apart from trimmed whitespace."""
        sentences = [f"Sentence number {i} talks about shipping." for i in range(60)]
        text = " ".join(sentences)
        splitter = SentenceBoundarySplitter(chunk_size=200, chunk_overlap=40)

        chunks = splitter.split_text(text)

        for sentence in sentences:
            assert any(sentence in chunk for chunk in chunks)
        assert chunks[0].startswith("Sentence number 0")
        assert chunks[-1].endswith("Sentence number 59 talks about shipping.")

    def test_always_advances_with_large_overlap(self):
        """Test termination when overlap would move the start backwards."""
        text = "A. " + "b" * 100
        splitter = SentenceBoundarySplitter(chunk_size=10, chunk_overlap=9)

        chunks = splitter.split_text(text)

        assert chunks
        assert chunks[0] == "A."


class TestDocumentChunker:
    """Tests for DocumentChunker class."""

    @pytest.fixture
    def chunker(self):
        """Create a chunker with small chunk size for testing."""
        return DocumentChunker(chunk_size=100, chunk_overlap=20)

    @pytest.fixture
    def document(self):
        return Document(
            tenant_id="acme",
            title="Shipping Guide",
            document_type=DocumentType.TXT,
            id=7,
            source_url=None,
        )

    @pytest.fixture
    def sample_text_file(self, tmp_path):
        """Create a temporary text file for testing."""
        content = (
            "Shipping takes three to five business days. "
            "International orders may take longer. "
            "Tracking numbers are emailed once the parcel leaves our warehouse. "
            "Returns are accepted within thirty days of delivery."
        )
        file_path = tmp_path / "shipping.txt"
        file_path.write_text(content, encoding="utf-8")
        return file_path

    def test_chunker_initialization(self, chunker):
        """Test chunker initialization."""
        assert chunker.chunk_size == 100
        assert chunker.chunk_overlap == 20

    def test_zero_overlap_is_respected(self):
        assert DocumentChunker(chunk_size=100, chunk_overlap=0).chunk_overlap == 0

    def test_extract_text_file(self, chunker, sample_text_file):
        """Test extracting a plain text file."""
        text = chunker.extract_text(str(sample_text_file), DocumentType.TXT)

        assert text.startswith("Shipping takes three")
        assert "thirty days" in text

    def test_missing_file(self, chunker, tmp_path):
        with pytest.raises(FileNotFoundError):
            chunker.extract_text(str(tmp_path / "missing.txt"), DocumentType.TXT)

    def test_url_type_cannot_be_loaded_from_file(self, chunker, sample_text_file):
        with pytest.raises(ValidationError):
            chunker.extract_text(str(sample_text_file), DocumentType.URL)

    def test_extract_pdf_joins_pages(self, chunker, tmp_path):
        """Test that PDF pages are joined with newlines."""
        mock_loader_cls = Mock()
        pdf = tmp_path / "manual.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        mock_loader_cls.return_value.load.return_value = [
            Mock(page_content="Page one."),
            Mock(page_content="Page two."),
        ]

        with patch.dict(DocumentChunker.LOADERS, {DocumentType.PDF: mock_loader_cls}):
            text = chunker.extract_text(str(pdf), DocumentType.PDF)

        assert text == "Page one.\nPage two."
        mock_loader_cls.assert_called_once_with(str(pdf))

    @patch("support_rag.chunker.WebBaseLoader")
    def test_fetch_url_text(self, mock_loader_cls, chunker):
        """Test fetching a page with timeout and user agent."""
        mock_loader_cls.return_value.load.return_value = [Mock(page_content="Welcome to Acme")]

        text = chunker.fetch_url_text("https://acme.test/help", timeout=5, user_agent="TestAgent")

        assert text == "Welcome to Acme"
        kwargs = mock_loader_cls.call_args[1]
        assert kwargs["header_template"] == {"User-Agent": "TestAgent"}
        assert kwargs["requests_kwargs"] == {"timeout": 5}
        assert kwargs["raise_for_status"] is True

    def test_build_chunks(self, chunker, document, sample_text_file):
        """Test building DocumentChunk objects."""
        text = chunker.extract_text(str(sample_text_file), DocumentType.TXT)
        chunks = chunker.build_chunks(document, text)

        assert len(chunks) > 1
        assert all(isinstance(c, DocumentChunk) for c in chunks)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.document_id == 7 and c.tenant_id == "acme" for c in chunks)
        assert all(c.document_title == "Shipping Guide" for c in chunks)
        assert all(c.token_count == len(c.content) // 4 for c in chunks)
        assert all(c.embedding is None for c in chunks)

    def test_chunk_item_id(self, chunker, document):
        chunks = chunker.build_chunks(document, "Only one sentence.")

        assert len(chunks) == 1
        assert chunks[0].item_id == "7:0"
