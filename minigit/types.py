from typing import TypeAlias, NamedTuple, Literal, Optional

Path: TypeAlias = str  # a '/'-separated path relative to the working-tree root
OID: TypeAlias = str  # hash
TreeMap: TypeAlias = dict[Path, OID]
ObjectKind: TypeAlias = Literal['blob', 'tree', 'commit']

OBJECT_KINDS: tuple[ObjectKind, ...] = ('blob', 'tree', 'commit')


class Object(NamedTuple):
    kind: ObjectKind
    content: bytes
    id: OID


class TreeEntry(NamedTuple):
    kind: ObjectKind
    id: OID
    path: Path


class Commit(NamedTuple):
    id: OID
    tree: OID
    parent: Optional[OID]
    message: str
