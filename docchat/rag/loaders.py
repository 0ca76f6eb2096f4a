"""Document loaders for the ingest pipeline.

Handles:
- Plain-text transcripts (.txt)
- PDF files (.pdf) via pdfplumber
- Markdown / MDX notes with YAML frontmatter (.md, .mdx)
- Content-hash deduplication of loaded documents
"""
import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import pdfplumber
import yaml
import structlog

from docchat.errors import LoaderError

logger = structlog.get_logger()

_SCALARS = (str, int, float, bool)


@dataclass(frozen=True)
class Document:
    """Raw document text plus scalar metadata. Immutable once created."""

    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def content_hash(self) -> str:
        """SHA-256 over the content and canonical metadata."""
        digest = hashlib.sha256()
        digest.update(self.content.encode("utf-8"))
        digest.update(b"\0")
        digest.update(
            json.dumps(dict(self.metadata), sort_keys=True, default=str).encode("utf-8")
        )
        return digest.hexdigest()


class TextLoader:
    """Loads plain-text transcripts."""

    extensions = (".txt",)

    def load(self, path: Path) -> List[Document]:
        content = Path(path).read_text(encoding="utf-8", errors="replace")
        return [Document(content=content, metadata={"source": path.name, "file_type": "txt"})]


class PDFLoader:
    """Loads a PDF as one document, pages joined by newlines."""

    extensions = (".pdf",)

    def load(self, path: Path) -> List[Document]:
        pages: List[str] = []
        with pdfplumber.open(str(path)) as pdf:
            for page in pdf.pages:
                pages.append(page.extract_text() or "")

        return [
            Document(
                content="\n".join(pages),
                metadata={
                    "source": path.name,
                    "file_type": "pdf",
                    "page_count": len(pages),
                },
            )
        ]


class MarkdownLoader:
    """Loads markdown notes, lifting scalar frontmatter into metadata."""

    extensions = (".md", ".mdx")

    # YAML frontmatter must be at the start of the file
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    def load(self, path: Path) -> List[Document]:
        content = Path(path).read_text(encoding="utf-8")
        frontmatter, body = self.parse_frontmatter(content)

        metadata: Dict[str, Any] = {
            key: value
            for key, value in frontmatter.items()
            if isinstance(key, str) and isinstance(value, _SCALARS)
        }
        metadata.update({"source": path.name, "file_type": path.suffix.lstrip(".").lower()})

        return [Document(content=body, metadata=metadata)]

    def parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Split YAML frontmatter from the body.

        Malformed frontmatter is left in the body untouched.

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)
        if not match:
            return {}, content

        try:
            frontmatter = yaml.safe_load(match.group(1))
        except yaml.YAMLError as e:
            logger.warning("frontmatter_parse_error", error=str(e))
            return {}, content

        if not isinstance(frontmatter, dict):
            return {}, content

        return frontmatter, content[match.end():]


DEFAULT_LOADERS: Tuple = (TextLoader(), PDFLoader(), MarkdownLoader())


def loader_for(path: Path, loaders: Sequence = DEFAULT_LOADERS):
    """Pick the loader handling a file's suffix, or None."""
    suffix = path.suffix.lower()
    for loader in loaders:
        if suffix in loader.extensions:
            return loader
    return None


def load_file(path: Path, loaders: Sequence = DEFAULT_LOADERS) -> List[Document]:
    """Load a single file.

    Raises:
        LoaderError: If the file is unsupported or unreadable
    """
    loader = loader_for(path, loaders)
    if loader is None:
        raise LoaderError(path, ValueError(f"Unsupported file type: {path.suffix}"))

    try:
        return loader.load(path)
    except Exception as e:
        raise LoaderError(path, e) from e


class DocumentIndex:
    """Content-hash keyed collection of documents, built incrementally."""

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self.duplicates = 0

    def add(self, document: Document) -> bool:
        """Add a document; returns False if an identical one is already present."""
        key = document.content_hash
        if key in self._documents:
            self.duplicates += 1
            return False
        self._documents[key] = document
        return True

    def extend(self, documents: Iterable[Document]) -> int:
        return sum(1 for d in documents if self.add(d))

    def documents(self) -> List[Document]:
        return list(self._documents.values())

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document: Document) -> bool:
        return document.content_hash in self._documents


@dataclass
class LoadResult:
    documents: List[Document]
    errors: List[LoaderError]
    duplicates: int = 0


def load_directory(
    root: Path,
    loaders: Sequence = DEFAULT_LOADERS,
    index: Optional[DocumentIndex] = None,
) -> LoadResult:
    """Load every supported file under a directory.

    Files are visited in sorted order. Unreadable files are logged and
    skipped; unsupported extensions are ignored.

    Raises:
        FileNotFoundError: If the directory doesn't exist
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Documents directory not found: {root}")

    index = index if index is not None else DocumentIndex()
    duplicates_before = index.duplicates
    loaded: List[Document] = []
    errors: List[LoaderError] = []

    paths = sorted(p for p in root.rglob("*") if p.is_file() and loader_for(p, loaders))
    logger.info("documents_discovered", count=len(paths), docs_dir=str(root))

    for path in paths:
        try:
            documents = load_file(path, loaders)
        except LoaderError as e:
            logger.error("file_load_failed", path=str(path), error=str(e.cause))
            errors.append(e)
            continue

        loaded.extend(d for d in documents if index.add(d))
        logger.debug("file_loaded", path=str(path), documents=len(documents))

    duplicates = index.duplicates - duplicates_before
    logger.info(
        "documents_loaded",
        loaded=len(loaded),
        failed=len(errors),
        duplicates=duplicates,
    )

    return LoadResult(documents=loaded, errors=errors, duplicates=duplicates)
