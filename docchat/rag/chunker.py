"""Text chunking with overlap for the RAG pipeline.

Splits on the largest semantic boundary that fits (paragraph, line,
sentence, word, then raw characters) and flattens every chunk to a single
line for embedding.
"""
import re
from typing import List, Optional
import structlog
from langchain_text_splitters import RecursiveCharacterTextSplitter

from docchat import config
from docchat.errors import ExtractionEmptyError

logger = structlog.get_logger()

# Largest boundary first; "" falls back to single characters.
SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", " ", ""]

_NEWLINE_RUN = re.compile(r"\n+")


class TextChunker:
    """Character-based recursive text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum chunk length in characters (default from config)
            chunk_overlap: Characters shared by consecutive chunks (default from config)
        """
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP
        )

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be non-negative and less than "
                f"chunk size ({self.chunk_size})"
            )

        self._splitter = RecursiveCharacterTextSplitter(
            separators=SEPARATORS,
            keep_separator="end",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            strip_whitespace=True,
        )

    def split_text(self, text: Optional[str]) -> List[str]:
        """Split text into overlapping single-line chunks.

        Args:
            text: Extracted document text

        Returns:
            Ordered list of chunks, each at most ``chunk_size`` characters

        Raises:
            ExtractionEmptyError: If text is None
        """
        if text is None:
            raise ExtractionEmptyError("Cannot chunk a document without extracted text")

        if not text.strip():
            return []

        chunks = []
        for piece in self._splitter.split_text(text):
            cleaned = _NEWLINE_RUN.sub(" ", piece.strip())
            if cleaned:
                chunks.append(cleaned)

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

        return chunks


def split(
    text: Optional[str],
    chunk_size: int = None,
    overlap: int = None,
) -> List[str]:
    """Chunk text with the given (or configured) size and overlap."""
    return TextChunker(chunk_size=chunk_size, chunk_overlap=overlap).split_text(text)
