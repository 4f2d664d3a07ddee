import os
from typing import Iterable, Iterator, Optional

from loguru import logger
from typing_extensions import Self

from . import data
from . import types
from .data import Repository
from .errors import BadFormat, Corrupt, IoFailure

MAX_TREE_DEPTH = 256
MAX_HISTORY_DEPTH = 1_000_000


def write_tree(repo: Repository, directory: Optional[str] = None) -> types.OID:
    """Stores a snapshot of ``directory`` (default: the working-tree root).

    Files become blobs and subdirectories become trees; each entry records its
    path relative to the working-tree root, so a flattened listing of all
    entries is enough to rebuild the directory.
    """
    directory = repo.root if directory is None else directory
    entries = []
    try:
        with os.scandir(directory) as it:
            for entry in it:
                if repo.is_ignored(entry.name):
                    continue
                path = _relative_path(repo, entry.path)
                if entry.is_dir(follow_symlinks=False):
                    entries.append(types.TreeEntry('tree', write_tree(repo, entry.path), path))
                elif entry.is_file(follow_symlinks=False):
                    with open(entry.path, 'rb') as f:
                        entries.append(types.TreeEntry('blob', data.hash_object(repo, f.read()), path))
                else:
                    logger.debug('skipping {}: not a regular file or directory', path)
    except OSError as e:
        raise IoFailure(f'could not snapshot {directory}: {e}') from e

    tree = ''.join(f'{type_} {oid} {path}\n'
                   for type_, oid, path
                   in entries)
    return data.hash_object(repo, tree.encode(), 'tree')


def _relative_path(repo: Repository, path: str) -> types.Path:
    path = os.path.relpath(path, repo.root).replace('\\', '/')
    if path == '..' or path.startswith('../'):
        raise BadFormat(f'{path} is outside the working tree {repo.root}')
    if any(c.isspace() for c in path):
        raise BadFormat(f'cannot record {path!r}: tree entries may not contain whitespace')
    try:
        path.encode()
    except UnicodeEncodeError:
        raise BadFormat(f'cannot record {path!r}: name is not valid UTF-8') from None
    return path


def _iter_tree_entries(repo: Repository, oid: types.OID) -> Iterator[types.TreeEntry]:
    tree = data.get_object(repo, oid)
    if tree.kind != 'tree':
        raise BadFormat(f'object {oid} is a {tree.kind}, not a tree')
    try:
        text = tree.content.decode()
    except UnicodeDecodeError as e:
        raise BadFormat(f'tree {oid} is not valid UTF-8') from e

    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if len(fields) != 3:
            raise BadFormat(f'tree {oid} line {lineno}: expected 3 fields, found {len(fields)}')
        type_, entry_oid, path = fields
        if type_ not in ('blob', 'tree'):
            raise BadFormat(f'tree {oid} line {lineno}: unknown entry kind {type_!r}')
        segments = path.split('/')
        if path.startswith('/') or '..' in segments:
            raise BadFormat(f'tree {oid} line {lineno}: unsafe path {path!r}')
        if any(repo.is_ignored(segment) for segment in segments):
            raise BadFormat(f'tree {oid} line {lineno}: {path!r} is an ignored path')
        yield types.TreeEntry(type_, entry_oid, path)


def iter_tree(repo: Repository, oid: types.OID, _ancestors: tuple = ()) -> Iterator[types.TreeEntry]:
    """Yields every entry reachable from tree ``oid``, parents before children."""
    if oid in _ancestors:
        raise Corrupt(f'tree {oid} contains itself')
    if len(_ancestors) >= MAX_TREE_DEPTH:
        raise Corrupt(f'tree {_ancestors[0]} nests deeper than {MAX_TREE_DEPTH} levels')

    for entry in list(_iter_tree_entries(repo, oid)):
        yield entry
        if entry.kind == 'tree':
            yield from iter_tree(repo, entry.id, _ancestors + (oid,))


def get_tree(repo: Repository, oid: types.OID) -> types.TreeMap:
    return {path: entry_oid
            for type_, entry_oid, path in iter_tree(repo, oid)
            if type_ == 'blob'}


def read_tree(repo: Repository, tree_oid: types.OID, root: Optional[str] = None):
    """Writes the files of ``tree_oid`` under ``root`` (default: the working tree).

    The whole tree is parsed and every blob checked before anything is
    written, so a malformed tree leaves the directory untouched.
    """
    entries = _checked_entries(repo, tree_oid)
    _materialize(repo, entries, repo.root if root is None else root)


def checkout_into(repo: Repository, tree_oid: types.OID, root: Optional[str] = None):
    """Replaces the contents of ``root`` with the tree. Local edits are lost."""
    root = repo.root if root is None else root
    entries = _checked_entries(repo, tree_oid)
    _empty_directory(repo, root)
    _materialize(repo, entries, root)


def _checked_entries(repo: Repository, tree_oid: types.OID) -> list[types.TreeEntry]:
    entries = list(iter_tree(repo, tree_oid))
    for type_, oid, path in entries:
        if type_ == 'blob':
            _get_blob(repo, oid, path)
    return entries


def _get_blob(repo: Repository, oid: types.OID, path: types.Path) -> types.Object:
    blob = data.get_object(repo, oid)
    if blob.kind != 'blob':
        raise BadFormat(f'{path}: object {oid} is a {blob.kind}, not a blob')
    return blob


def _materialize(repo: Repository, entries: Iterable[types.TreeEntry], root: str):
    for type_, oid, path in entries:
        target = f'{root}/{path}'
        try:
            if type_ == 'tree':
                os.makedirs(target, exist_ok=True)
                continue
            blob = _get_blob(repo, oid, path)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, 'wb') as f:
                f.write(blob.content)
        except OSError as e:
            raise IoFailure(f'could not write {target}: {e}') from e


def _empty_directory(repo: Repository, directory: str):
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as e:
        logger.warning('could not list {}: {}', directory, e)
        return

    for entry in entries:
        if repo.is_ignored(entry.name):
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                _empty_directory(repo, entry.path)
                os.rmdir(entry.path)
            else:
                os.remove(entry.path)
        except OSError as e:
            logger.warning('could not remove {}: {}', entry.path, e)


def commit(repo: Repository, message: str) -> types.OID:
    with data.locked(repo):
        commit_ = f'tree {write_tree(repo)}\n'

        HEAD = data.get_ref(repo, 'HEAD')
        if HEAD:
            commit_ += f'parent {HEAD}\n'

        commit_ += '\n'
        commit_ += message

        oid = data.hash_object(repo, commit_.encode(), 'commit')
        data.update_ref(repo, 'HEAD', oid)
    logger.info('committed {}', oid)
    return oid


def _parse_header(line: str, key: str) -> Optional[str]:
    fields = line.split()
    if len(fields) == 2 and fields[0] == key:
        return fields[1]
    return None


def get_commit(repo: Repository, oid: types.OID) -> types.Commit:
    obj = data.get_object(repo, oid)
    if obj.kind != 'commit':
        raise BadFormat(f'object {oid} is a {obj.kind}, not a commit')
    try:
        lines = obj.content.decode().split('\n')
    except UnicodeDecodeError as e:
        raise BadFormat(f'commit {oid} is not valid UTF-8') from e

    tree = _parse_header(lines[0], 'tree')
    if tree is None:
        raise BadFormat(f'commit {oid}: expected "tree <id>", found {lines[0]!r}')

    rest = lines[1:]
    parent = _parse_header(rest[0], 'parent') if rest else None
    if parent is not None:
        rest = rest[1:]
    # headers end at an empty line; the message follows
    if rest:
        if rest[0]:
            raise BadFormat(f'commit {oid}: unexpected header {rest[0]!r}')
        rest = rest[1:]

    return types.Commit(id=oid, tree=tree, parent=parent, message='\n'.join(rest))


class CommitCursor:
    """Walks a commit chain backward from ``oid`` through parent links.

    The cursor holds the id of the next commit to fetch and is forward-only:
    once exhausted, or once a fetch has failed, it yields nothing more. A
    failed fetch is raised to the caller rather than ending the walk quietly.
    """

    def __init__(self, repo: Repository, oid: Optional[types.OID], max_depth: int = MAX_HISTORY_DEPTH):
        self.repo = repo
        self.current = oid or None
        self.max_depth = max_depth
        self._seen: set[types.OID] = set()

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> types.Commit:
        commit_ = self.fetch_next()
        if commit_ is None:
            raise StopIteration
        return commit_

    def fetch_next(self) -> Optional[types.Commit]:
        oid = self.current
        if oid is None:
            return None
        self.current = None
        if oid in self._seen:
            raise Corrupt(f'commit {oid} is its own ancestor')
        if len(self._seen) >= self.max_depth:
            raise Corrupt(f'history is longer than {self.max_depth} commits')

        commit_ = get_commit(self.repo, oid)
        self._seen.add(oid)
        self.current = commit_.parent
        return commit_


def history(repo: Repository, oid: Optional[types.OID]) -> CommitCursor:
    return CommitCursor(repo, oid)


def checkout(repo: Repository, oid: types.OID):
    commit_ = get_commit(repo, oid)
    with data.locked(repo):
        checkout_into(repo, commit_.tree)
        data.update_ref(repo, 'HEAD', oid)
    logger.info('HEAD is now at {}', oid)


def resolve(repo: Repository, name: str) -> types.OID:
    """Maps a reference name to the id it stores.

    A name that matches no reference is returned as is, so callers may pass
    either a symbolic name or a raw object id.
    """
    if name == '@':
        name = 'HEAD'

    refs_to_try = [
        f'{name}',
        f'refs/{name}',
        f'refs/tags/{name}',
        f'refs/heads/{name}'
    ]
    for ref in refs_to_try:
        if data.ref_exists(repo, ref):
            return data.get_ref(repo, ref)

    return name


def create_tag(repo: Repository, name: str, oid: types.OID):
    with data.locked(repo):
        data.update_ref(repo, f'refs/tags/{name}', oid)


def create_branch(repo: Repository, name: str, oid: types.OID):
    with data.locked(repo):
        data.update_ref(repo, f'refs/heads/{name}', oid)


def iter_tag_names(repo: Repository) -> Iterator[str]:
    for refname, _ in data.iter_refs(repo, 'refs/tags/'):
        yield os.path.relpath(refname, 'refs/tags/').replace('\\', '/')


def iter_branch_names(repo: Repository) -> Iterator[str]:
    for refname, _ in data.iter_refs(repo, 'refs/heads/'):
        yield os.path.relpath(refname, 'refs/heads/').replace('\\', '/')
