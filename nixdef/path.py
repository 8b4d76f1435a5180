"""Path literals: their anchors, normalization and resolution to files."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .base import FileId, SourceDatabase, VfsPath

_MAX_SUPERS = 255


class AnchorKind(Enum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"
    HOME = "home"
    SEARCH = "search"


@dataclass(frozen=True)
class PathAnchor:
    """What a path literal is relative to."""

    kind: AnchorKind
    file_id: FileId | None = None
    name: str | None = None

    @classmethod
    def relative(cls, file_id: FileId) -> PathAnchor:
        return cls(AnchorKind.RELATIVE, file_id=file_id)

    @classmethod
    def absolute(cls) -> PathAnchor:
        return cls(AnchorKind.ABSOLUTE)

    @classmethod
    def home(cls) -> PathAnchor:
        return cls(AnchorKind.HOME)

    @classmethod
    def search(cls, name: str) -> PathAnchor:
        return cls(AnchorKind.SEARCH, name=name)


@dataclass(frozen=True)
class PathData:
    """A normalized path: an anchor, a count of leading `..` and a `/`-separated rest."""

    anchor: PathAnchor
    supers: int
    relative_path: str

    @classmethod
    def normalize(cls, anchor: PathAnchor, segments: str) -> PathData:
        parts: list[str] = []
        supers = 0
        for seg in segments.split("/"):
            if not seg or seg == ".":
                continue
            if seg != "..":
                parts.append(seg)
            elif parts:
                parts.pop()
            elif anchor.kind is not AnchorKind.ABSOLUTE:
                # Extra ".." has no effect on an absolute path.
                supers = min(supers + 1, _MAX_SUPERS)
        return cls(anchor, supers, "/".join(parts))


def resolve_path(db: SourceDatabase, data: PathData) -> VfsPath | None:
    """The filesystem path a relative path literal points to, if it can be known."""
    if data.anchor.kind is not AnchorKind.RELATIVE or data.anchor.file_id is None:
        return None
    file = data.anchor.file_id
    root = db.source_root(db.file_source_root(file))
    vpath = root.path_for_file(file)
    # Virtual paths are all standalone.
    if vpath.is_virtual:
        return None
    # Strip the file name, then one component per `..`; extra `..`s are allowed.
    for _ in range(min(data.supers + 1, _MAX_SUPERS)):
        parent = vpath.parent()
        if parent is None:
            break
        vpath = parent
    return vpath.join(data.relative_path)