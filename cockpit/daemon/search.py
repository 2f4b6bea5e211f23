"""
Full-text search over watched files using Tantivy.

The index lives next to the activity database, in ``search_index/``.
Documents are keyed by path: re-indexing a file replaces its old entry.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import tantivy
from loguru import logger

from .errors import SearchError
from .filters import IgnoreFilter


INDEX_DIR_NAME = "search_index"
WRITER_HEAP_BYTES = 50_000_000

TEXT_EXTENSIONS = {
    "rs", "txt", "md", "json", "toml", "yaml", "yml",
    "py", "js", "ts", "html", "css",
}


@dataclass
class IndexDocument:
    path: str
    title: str
    content: str


@dataclass
class SearchResult:
    path: str
    title: str
    score: float


def _build_schema():
    builder = tantivy.SchemaBuilder()
    # raw: the whole path is one term, so deletes match it exactly
    builder.add_text_field("path", stored=True, tokenizer_name="raw")
    builder.add_text_field("title", stored=True)
    builder.add_text_field("content", tokenizer_name="en_stem")
    return builder.build()


class SearchIndex:
    """Tantivy index of file titles and contents."""

    def __init__(self, index_path: Optional[Path] = None):
        self.index_path = Path(index_path) if index_path is not None else None
        schema = _build_schema()

        try:
            if self.index_path is None:
                self.index = tantivy.Index(schema)
            elif (self.index_path / "meta.json").exists():
                self.index = tantivy.Index.open(str(self.index_path))
            else:
                self.index_path.mkdir(parents=True, exist_ok=True)
                self.index = tantivy.Index(schema, path=str(self.index_path))
        except (OSError, ValueError) as e:
            raise SearchError("open", f"{self.index_path}: {e}") from e

    @classmethod
    def in_memory(cls) -> "SearchIndex":
        return cls(None)

    @classmethod
    def beside(cls, database_path: Path) -> "SearchIndex":
        """Open (or create) the index stored next to the activity database."""
        return cls(Path(database_path).parent / INDEX_DIR_NAME)

    def add_documents(self, docs: Iterable[IndexDocument]) -> int:
        """Index ``docs`` in one commit, replacing entries with the same path."""
        count = 0
        try:
            writer = self.index.writer(heap_size=WRITER_HEAP_BYTES)
            for doc in docs:
                writer.delete_documents("path", doc.path)
                tantivy_doc = tantivy.Document()
                tantivy_doc.add_text("path", doc.path)
                tantivy_doc.add_text("title", doc.title)
                tantivy_doc.add_text("content", doc.content)
                writer.add_document(tantivy_doc)
                count += 1
            writer.commit()
            writer.wait_merging_threads()
        except ValueError as e:
            raise SearchError("index", str(e)) from e

        self.index.reload()
        logger.debug(f"Indexed {count} documents")
        return count

    def search(self, query: str, limit: int = 10) -> List[SearchResult]:
        """Best matches for ``query`` over titles and contents."""
        self.index.reload()
        searcher = self.index.searcher()
        try:
            parsed = self.index.parse_query(query, ["title", "content"])
        except ValueError as e:
            raise SearchError("query", f"could not parse {query!r}: {e}") from e

        results = []
        for score, address in searcher.search(parsed, max(1, limit)).hits:
            doc = searcher.doc(address)
            results.append(SearchResult(
                path=doc.get_first("path") or "",
                title=doc.get_first("title") or "",
                score=score,
            ))
        return results[:max(0, limit)]

    @property
    def num_docs(self) -> int:
        self.index.reload()
        return self.index.searcher().num_docs


def read_file_for_indexing(path: Path) -> Optional[IndexDocument]:
    """Load a text file as a document; anything else reads as None."""
    path = Path(path)
    if path.suffix.lstrip(".") not in TEXT_EXTENSIONS:
        return None
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    return IndexDocument(path=str(path), title=path.name, content=content)


def collect_documents(
    root: Union[str, Path], ignore_filter: IgnoreFilter
) -> Tuple[List[IndexDocument], int]:
    """Walk ``root`` for indexable files. Returns (documents, skipped count)."""
    docs: List[IndexDocument] = []
    skipped = 0

    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        # Prune ignored directories so .git and friends are never walked
        dirnames[:] = sorted(
            d for d in dirnames
            if not ignore_filter.should_ignore(os.path.join(dirpath, d))
        )
        for name in sorted(filenames):
            file_path = Path(dirpath) / name
            if ignore_filter.should_ignore(file_path):
                skipped += 1
                continue
            doc = read_file_for_indexing(file_path)
            if doc is None:
                skipped += 1
            else:
                docs.append(doc)

    return docs, skipped
