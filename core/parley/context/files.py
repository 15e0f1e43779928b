"""
File resolution across the configured workspace roots.

A reference such as ``notes/todo.md`` is ambiguous: it could be an absolute
path, or relative to any of several roots. The resolver tries each
interpretation in a fixed order and reports failure as ``None`` instead of
raising, since an unreadable mention is ordinary user input.
"""

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from parley import config
from parley.utils.logging import logger


# Display label by extension
KIND_MAP = {
    ".ts": "TypeScript",
    ".tsx": "React TypeScript",
    ".js": "JavaScript",
    ".jsx": "React JavaScript",
    ".py": "Python",
    ".html": "HTML",
    ".css": "CSS",
    ".json": "JSON",
    ".md": "Markdown",
}
UNKNOWN_KIND = "Unknown"

# Editor language id by extension
LANGUAGE_MAP = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".jsx": "javascriptreact",
    ".tsx": "typescriptreact",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".java": "java",
    ".cpp": "cpp",
    ".c": "c",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".sh": "shellscript",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".toml": "toml",
}


def file_kind(path: str) -> str:
    """Map a path's extension to its display label."""
    return KIND_MAP.get(os.path.splitext(path)[1].lower(), UNKNOWN_KIND)


def language_tag(path: str) -> str:
    return LANGUAGE_MAP.get(os.path.splitext(path)[1].lower(), "plaintext")


@dataclass
class FileInfo:
    """Metadata sent alongside file content."""
    name: str
    kind: str
    size: int
    language: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FileRecord:
    """A file read at request time. Never cached."""
    display_name: str
    kind: str
    byte_size: int
    language_tag: str
    content: str
    path: str

    @property
    def info(self) -> FileInfo:
        return FileInfo(
            name=self.display_name,
            kind=self.kind,
            size=self.byte_size,
            language=self.language_tag,
        )


class FileResolver:
    """
    Resolves file references against a list of workspace roots.

    Roots are searched in the order given; the first root wins when the same
    relative path exists under several of them.
    """

    def __init__(
        self,
        roots: Optional[Sequence[str]] = None,
        excluded_dirs: Optional[Iterable[str]] = None,
        max_bytes: int = config.MAX_FILE_BYTES,
    ):
        if roots is None:
            roots = config.WORKSPACE_ROOTS
        self.roots = [Path(r).expanduser().resolve() for r in roots]
        self.excluded_dirs = set(config.EXCLUDED_DIRS if excluded_dirs is None else excluded_dirs)
        self.max_bytes = max_bytes

    @property
    def folders(self) -> list[str]:
        return [str(root) for root in self.roots]

    @property
    def workspace_scope(self) -> str:
        """Scope identity for sessions: the first root's folder name."""
        if not self.roots:
            return config.DEFAULT_SCOPE
        return self.roots[0].name or config.DEFAULT_SCOPE

    # --- Lookup ---

    @staticmethod
    def _under(root: Path, path_ref: str) -> Path:
        # Always relative to root, even for "/abs/path"
        return root / path_ref.lstrip("/\\")

    def _candidates(self, path_ref: str) -> Iterator[Path]:
        """Yield interpretations of ``path_ref``: absolute first, then per root."""
        expanded = Path(os.path.expanduser(path_ref))
        if expanded.is_absolute():
            yield expanded
        for root in self.roots:
            yield self._under(root, path_ref)

    def locate(self, path_ref: str) -> Optional[Path]:
        """
        Return the first existing regular file ``path_ref`` refers to.

        Candidates are resolved (symlinks and ``..`` included) and must lie
        inside a workspace root.
        """
        if not path_ref:
            return None
        for candidate in self._candidates(path_ref):
            try:
                if candidate.is_file() and self._in_roots(candidate):
                    return candidate.resolve()
            except OSError:
                continue
        return None

    @staticmethod
    def _contains(root: Path, path: Path) -> bool:
        resolved = path.resolve()
        return resolved == root or resolved.is_relative_to(root)

    def _in_roots(self, path: Path) -> bool:
        return any(self._contains(root, path) for root in self.roots)

    def _exists_under_root(self, path_ref: str) -> bool:
        for root in self.roots:
            candidate = self._under(root, path_ref)
            try:
                if candidate.is_file() and self._contains(root, candidate):
                    return True
            except OSError:
                continue
        return False

    def is_known_path(self, path_ref: str) -> bool:
        """
        Check whether ``path_ref`` names a file in the workspace.

        A bare filename is looked up under the roots before being considered
        as an absolute path. Absolute paths only count inside a root.
        """
        if not path_ref:
            return False

        is_simple_filename = "/" not in path_ref and "\\" not in path_ref
        if is_simple_filename and self._exists_under_root(path_ref):
            return True

        absolute = Path(os.path.expanduser(path_ref))
        try:
            if absolute.is_absolute() and absolute.is_file() and self._in_roots(absolute):
                return True
        except OSError:
            pass

        if not is_simple_filename:
            return self._exists_under_root(path_ref)
        return False

    # --- Content ---

    def resolve(self, path_ref: str) -> Optional[FileRecord]:
        """Read a file and its metadata, or return None if it can't be read."""
        path = self.locate(path_ref)
        if path is None:
            logger.warning(f"File not found in any workspace root: {path_ref}")
            return None

        try:
            size = path.stat().st_size
            if size > self.max_bytes:
                logger.warning(f"File too large ({size} bytes, limit {self.max_bytes}): {path}")
                return None
            raw = path.read_bytes()
            content = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Not a text file: {path}")
            return None
        except OSError as e:
            logger.warning(f"Error reading file {path}: {e}")
            return None

        return FileRecord(
            display_name=path.name,
            kind=file_kind(path.name),
            byte_size=len(raw),
            language_tag=language_tag(path.name),
            content=content,
            path=str(path),
        )

    def resolve_content(self, path_ref: str) -> Optional[str]:
        record = self.resolve(path_ref)
        return record.content if record else None

    def resolve_metadata(self, path_ref: str) -> Optional[FileInfo]:
        path = self.locate(path_ref)
        if path is None:
            return None
        try:
            size = path.stat().st_size
        except OSError as e:
            logger.warning(f"Error getting file info for {path}: {e}")
            return None
        return FileInfo(
            name=path.name,
            kind=file_kind(path.name),
            size=size,
            language=language_tag(path.name),
        )

    # --- Suggestions ---

    def list_files(self) -> Iterator[Path]:
        """Walk every root, skipping hidden and excluded directories."""
        for root in self.roots:
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(
                    d for d in dirnames
                    if d not in self.excluded_dirs and not d.startswith(".")
                )
                for name in sorted(filenames):
                    yield Path(dirpath) / name

    def list_candidates(self, query: str, limit: int = config.SUGGESTION_LIMIT) -> list[str]:
        """Return up to ``limit`` paths whose file name contains ``query``."""
        query_lower = query.lower().strip()
        scored = []
        for path in self.list_files():
            score = self._name_match_score(query_lower, path.name.lower())
            if score > 0:
                scored.append((score, str(path)))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [path for _, path in scored[:limit]]

    @staticmethod
    def _name_match_score(query: str, name: str) -> float:
        """Score a file name against a lowercase query (0.0 = no match)."""
        if not query:
            return 0.1
        stem = name.rsplit(".", 1)[0] if "." in name else name

        if query == name:
            return 1.0
        if query == stem:
            return 0.95
        if name.startswith(query):
            return 0.85
        if query in name:
            return 0.7
        return 0.0
