"""
Document Chunker Module

Text extraction and segmentation for ingested documents.
Uses LangChain community loaders for extraction and a LangChain TextSplitter
subclass for chunking.

Chunking Strategy:
- Target size: chunk_size characters (default 1000)
- Each chunk ends at the last sentence terminator (. ? !) at or before the
  size limit, provided one exists after the chunk start; otherwise hard cut
- Consecutive chunks overlap by chunk_overlap characters (default 200)
- Chunks are whitespace trimmed and empty chunks are dropped
"""

import logging
from pathlib import Path
from typing import List, Optional

from langchain_text_splitters import TextSplitter
from langchain_community.document_loaders import (
    Docx2txtLoader,
    PyPDFLoader,
    TextLoader,
    WebBaseLoader,
)

from config.settings import get_settings, ChunkingConfig
from support_rag.exceptions import ValidationError
from support_rag.models import Document, DocumentChunk, DocumentType

# Configure logging
logger = logging.getLogger(__name__)


def estimate_token_count(text: str) -> int:
    """
    Estimate token count from text.

    Uses the approximation: 1 token ~ 4 characters for English.
    """
    return len(text) // 4


class SentenceBoundarySplitter(TextSplitter):
    """
    Character splitter that prefers to cut right after a sentence terminator.

    Example:
        splitter = SentenceBoundarySplitter(chunk_size=1000, chunk_overlap=200)
        segments = splitter.split_text(text)
    """

    SENTENCE_TERMINATORS = ".?!"

    def split_text(self, text: str) -> List[str]:
        chunks: List[str] = []
        if not text:
            return chunks

        size = self._chunk_size
        overlap = self._chunk_overlap
        length = len(text)

        start = 0
        while start < length:
            end = min(start + size, length)

            # Break after the last terminator inside the size limit
            if end < length:
                sentence_end = max(
                    text.rfind(terminator, start, end)
                    for terminator in self.SENTENCE_TERMINATORS
                )
                if sentence_end > start:
                    end = sentence_end + 1

            chunk = text[start:end].strip()
            if chunk:
                chunks.append(chunk)

            if end >= length:
                break

            # Move start position with overlap; always advance
            next_start = end - overlap
            start = next_start if next_start > start else end

        return chunks


class DocumentChunker:
    """
    Handles text extraction and chunking for documents.

    Supports:
    - PDF (PyPDFLoader)
    - Word documents (Docx2txtLoader)
    - Plain text (TextLoader)
    - Web pages (WebBaseLoader)

    Example:
        chunker = DocumentChunker()
        text = chunker.extract_text("uploads/acme/1/handbook.pdf", DocumentType.PDF)
        chunks = chunker.build_chunks(document, text)
    """

    LOADERS = {
        DocumentType.PDF: PyPDFLoader,
        DocumentType.DOCX: Docx2txtLoader,
        DocumentType.TXT: TextLoader,
    }

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        config: Optional[ChunkingConfig] = None,
    ):
        """
        Initialize the DocumentChunker.

        Args:
            chunk_size: Target characters per chunk (default from config)
            chunk_overlap: Overlap between chunks (default from config)
            config: Optional ChunkingConfig instance
        """
        settings = get_settings()
        self.config = config or settings.chunking

        self.chunk_size = chunk_size or self.config.chunk_size
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else self.config.chunk_overlap
        )

        self._splitter = SentenceBoundarySplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
        )

        logger.info(
            f"DocumentChunker initialized: chunk_size={self.chunk_size}, "
            f"overlap={self.chunk_overlap}"
        )

    def _get_loader(self, file_path: Path, document_type: DocumentType):
        """
        Get the appropriate document loader for the document type.

        Raises:
            ValidationError: If the type cannot be loaded from a file
        """
        loader_class = self.LOADERS.get(document_type)
        if loader_class is None:
            raise ValidationError(f"Unsupported document type: {document_type}")

        if loader_class is TextLoader:
            return TextLoader(str(file_path), encoding="utf-8")
        return loader_class(str(file_path))

    def extract_text(self, file_path: str, document_type: DocumentType) -> str:
        """
        Extract the full text of a stored file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValidationError: If the type is not supported
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Document file not found: {file_path}")

        logger.debug(f"Extracting text from {document_type.value}: {path.name}")

        pages = self._get_loader(path, document_type).load()
        text = "\n".join(page.page_content for page in pages)

        logger.debug(f"Extracted {len(text)} characters from {path.name}")
        return text

    def fetch_url_text(
        self,
        url: str,
        timeout: float = 10.0,
        user_agent: Optional[str] = None,
    ) -> str:
        """Fetch a web page and return its visible text."""
        logger.info(f"Fetching content from URL: {url}")

        loader = WebBaseLoader(
            url,
            header_template={"User-Agent": user_agent} if user_agent else None,
            requests_kwargs={"timeout": timeout},
            raise_for_status=True,
            bs_get_text_kwargs={"separator": " ", "strip": True},
        )
        pages = loader.load()
        text = "\n".join(page.page_content for page in pages)

        logger.info(f"Extracted {len(text)} characters from URL")
        return text

    def split(self, text: str) -> List[str]:
        """Split text into trimmed, overlapping segments."""
        return self._splitter.split_text(text)

    def build_chunks(self, document: Document, text: str) -> List[DocumentChunk]:
        """
        Split a document's text into DocumentChunk objects.

        Args:
            document: The owning document (must have an id)
            text: Extracted text

        Returns:
            Chunks indexed from 0, without embeddings
        """
        segments = self.split(text)

        chunks = [
            DocumentChunk(
                tenant_id=document.tenant_id,
                document_id=document.id,
                chunk_index=index,
                content=segment,
                document_title=document.title,
                source_url=document.source_url,
                token_count=estimate_token_count(segment),
            )
            for index, segment in enumerate(segments)
        ]

        logger.info(
            f"Created {len(chunks)} chunks from '{document.title}' "
            f"(avg {sum(len(c.content) for c in chunks) // max(len(chunks), 1)} chars/chunk)"
        )

        return chunks
