"""Source files, source roots, text positions and the input database."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Generic, Iterator, TypeVar

FileId = int
SourceRootId = int

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, order=True)
class TextRange:
    """A half-open range of text offsets."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.start > self.end:
            raise ValueError(f"invalid text range {self.start}..{self.end}")

    @classmethod
    def empty(cls, offset: int) -> TextRange:
        return cls(offset, offset)

    def cover(self, other: TextRange) -> TextRange:
        """The smallest range that contains both ranges."""
        return TextRange(min(self.start, other.start), max(self.end, other.end))

    def __len__(self) -> int:
        return self.end - self.start

    def __str__(self) -> str:
        return f"{self.start}..{self.end}"


@dataclass(frozen=True)
class VfsPath:
    """A path in the virtual filesystem: a real path or a virtual identifier."""

    path: PurePosixPath | None = None
    virtual_id: str | None = None

    def __post_init__(self) -> None:
        if (self.path is None) == (self.virtual_id is None):
            raise ValueError("a VfsPath is either a filesystem path or a virtual one")

    @classmethod
    def from_path(cls, path: str | PurePosixPath) -> VfsPath:
        return cls(path=PurePosixPath(path))

    @classmethod
    def virtual(cls, ident: str) -> VfsPath:
        return cls(virtual_id=ident)

    @property
    def is_virtual(self) -> bool:
        return self.virtual_id is not None

    def as_path(self) -> PurePosixPath | None:
        return self.path

    def join(self, path: str) -> VfsPath | None:
        """A new path with `path` adjoined, or None for a virtual path."""
        if self.path is None:
            return None
        return VfsPath(path=self.path / path)

    def parent(self) -> VfsPath | None:
        """The parent path, or None if there is none or the path is virtual."""
        if self.path is None:
            return None
        parent = self.path.parent
        if parent == self.path:
            return None
        return VfsPath(path=parent)

    def display(self) -> str:
        if self.path is not None:
            return str(self.path)
        return f"(virtual path {self.virtual_id})"

    def __str__(self) -> str:
        return self.display()


class FileSet:
    """A set of paths, each identified by a file id."""

    def __init__(self) -> None:
        self._files: dict[VfsPath, FileId] = {}
        self._paths: dict[FileId, VfsPath] = {}

    def insert(self, file: FileId, path: VfsPath) -> None:
        self._files[path] = file
        self._paths[file] = path

    def remove_file(self, file: FileId) -> None:
        path = self._paths.pop(file, None)
        if path is not None:
            self._files.pop(path, None)

    def file_for_path(self, path: VfsPath) -> FileId | None:
        return self._files.get(path)

    def path_for_file(self, file: FileId) -> VfsPath:
        return self._paths[file]

    def __iter__(self) -> Iterator[tuple[FileId, VfsPath]]:
        return iter(list(self._paths.items()))

    def __len__(self) -> int:
        return len(self._paths)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileSet):
            return NotImplemented
        return self._files == other._files and self._paths == other._paths

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"FileSet({self._paths!r})"


@dataclass
class SourceRoot:
    """A workspace unit, typically a flake package."""

    file_set: FileSet = field(default_factory=FileSet)
    entry: FileId | None = None

    def file_for_path(self, path: VfsPath) -> FileId | None:
        return self.file_set.file_for_path(path)

    def path_for_file(self, file: FileId) -> VfsPath:
        return self.file_set.path_for_file(file)

    def files(self) -> Iterator[tuple[FileId, VfsPath]]:
        return iter(self.file_set)


@dataclass
class FlakeInfo:
    flake_file: FileId
    input_store_paths: dict[str, VfsPath] = field(default_factory=dict)


@dataclass
class FlakeGraph:
    nodes: dict[SourceRootId, FlakeInfo] = field(default_factory=dict)


@dataclass(frozen=True)
class InFile(Generic[T]):
    """A value tagged with the file it belongs to."""

    file_id: FileId
    value: T

    def map(self, func: Callable[[T], U]) -> InFile[U]:
        return InFile(self.file_id, func(self.value))


@dataclass(frozen=True)
class FilePos:
    file_id: FileId
    pos: int


@dataclass(frozen=True)
class FileRange:
    file_id: FileId
    range: TextRange

    @classmethod
    def empty(cls, pos: FilePos) -> FileRange:
        return cls(pos.file_id, TextRange.empty(pos.pos))

    @classmethod
    def span(cls, start: FilePos, end: FilePos) -> FileRange:
        if start.file_id != end.file_id:
            raise ValueError(
                f"cannot span positions in different files: {start.file_id} and {end.file_id}"
            )
        return cls(start.file_id, TextRange(start.pos, end.pos))


class SourceDatabase:
    """Holds the inputs: file contents, source roots and the flake graph."""

    def __init__(self) -> None:
        self._file_contents: dict[FileId, str] = {}
        self._source_roots: dict[SourceRootId, SourceRoot] = {}
        self._file_source_roots: dict[FileId, SourceRootId] = {}
        self._flake_graph = FlakeGraph()

    def file_content(self, file_id: FileId) -> str:
        try:
            return self._file_contents[file_id]
        except KeyError:
            raise KeyError(f"no content set for file {file_id}") from None

    def set_file_content(self, file_id: FileId, content: str) -> None:
        self._file_contents[file_id] = content

    def source_root(self, sid: SourceRootId) -> SourceRoot:
        try:
            return self._source_roots[sid]
        except KeyError:
            raise KeyError(f"no source root {sid}") from None

    def set_source_root(self, sid: SourceRootId, root: SourceRoot) -> None:
        self._source_roots[sid] = root

    def file_source_root(self, file_id: FileId) -> SourceRootId:
        try:
            return self._file_source_roots[file_id]
        except KeyError:
            raise KeyError(f"file {file_id} belongs to no source root") from None

    def set_file_source_root(self, file_id: FileId, sid: SourceRootId) -> None:
        self._file_source_roots[file_id] = sid

    def flake_graph(self) -> FlakeGraph:
        return self._flake_graph

    def set_flake_graph(self, graph: FlakeGraph) -> None:
        self._flake_graph = graph

    def source_root_flake_info(self, sid: SourceRootId) -> FlakeInfo | None:
        return self.flake_graph().nodes.get(sid)


@dataclass(repr=False)
class Change:
    """A batch of input changes to apply to a database."""

    flake_graph: FlakeGraph | None = None
    roots: list[SourceRoot] | None = None
    file_changes: list[tuple[FileId, str]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.roots is None and not self.file_changes

    def set_flake_graph(self, graph: FlakeGraph) -> None:
        self.flake_graph = graph

    def set_roots(self, roots: list[SourceRoot]) -> None:
        self.roots = list(roots)

    def change_file(self, file_id: FileId, content: str) -> None:
        self.file_changes.append((file_id, content))

    def apply(self, db: SourceDatabase) -> None:
        if self.flake_graph is not None:
            db.set_flake_graph(self.flake_graph)
        if self.roots is not None:
            for sid, root in enumerate(self.roots):
                for fid, _ in root.files():
                    db.set_file_source_root(fid, sid)
                db.set_source_root(sid, root)
        for file_id, content in self.file_changes:
            db.set_file_content(file_id, content)

    def __repr__(self) -> str:
        roots = None if self.roots is None else len(self.roots)
        modified = sum(1 for _, content in self.file_changes if content)
        cleared = len(self.file_changes) - modified
        return f"Change(roots={roots!r}, modified={modified}, cleared={cleared}, ...)"