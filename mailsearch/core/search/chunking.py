"""
Chunking of normalized message text for embedding.
"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class TextChunk:
    """A slice of the source text and where it starts."""
    index: int
    start: int
    text: str

    @property
    def end(self) -> int:
        return self.start + len(self.text)


def build_embedding_text(
    subject: Optional[str],
    sender: Optional[str],
    date: Optional[str],
    body: Optional[str],
) -> str:
    """
    Text a message is embedded from: labeled header lines, a blank line,
    then the normalized body.
    """
    header = "\n".join([
        f"Subject: {subject or ''}",
        f"From: {sender or ''}",
        f"Date: {date or ''}",
    ])
    return f"{header}\n\n{body or ''}".strip()


def chunk_text(text: str, size: int = 500, overlap: int = 100) -> List[TextChunk]:
    """
    Split text into fixed-size windows sharing `overlap` characters.

    The last chunk may be shorter; the loop stops once a window reaches the
    end of the text.
    """
    if size <= 0:
        raise ValueError("chunk size must be positive")
    if overlap < 0 or overlap >= size:
        raise ValueError("overlap must be between 0 and chunk size")
    if not text:
        return []

    chunks = []
    start = 0
    while True:
        end = min(start + size, len(text))
        chunks.append(TextChunk(index=len(chunks), start=start, text=text[start:end]))
        if end >= len(text):
            break
        start = end - overlap
    return chunks


def merge_chunks(chunks: List[TextChunk]) -> str:
    """Rebuild the source text from overlapping chunks."""
    merged = ""
    for chunk in sorted(chunks, key=lambda c: c.start):
        covered = len(merged) - chunk.start
        merged += chunk.text[max(0, covered):]
    return merged
