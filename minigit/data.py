import os
import hashlib
from contextlib import contextmanager
from typing import Iterable, NamedTuple

from loguru import logger

from minigit import types
from minigit.errors import BadFormat, IoFailure, LockContention, NotFound

META_DIR = '.minigit'
DEFAULT_IGNORE = frozenset({META_DIR, '.git', '__pycache__', '.idea', 'venv'})

SEPARATOR = b'\x00'


class Repository(NamedTuple):
    root: types.Path
    meta_name: str = META_DIR
    ignore: frozenset[str] = DEFAULT_IGNORE

    @property
    def git_dir(self) -> str:
        return f'{self.root}/{self.meta_name}'

    def is_ignored(self, name: str) -> bool:
        return name == self.meta_name or name in self.ignore

    def with_ignored(self, *names: str) -> 'Repository':
        return self._replace(ignore=self.ignore | frozenset(names))


def open_repository(root, ignore=()) -> Repository:
    root = os.path.abspath(root).replace('\\', '/')
    return Repository(root=root).with_ignored(*ignore)


def init(repo: Repository):
    try:
        os.makedirs(repo.git_dir, exist_ok=True)
    except OSError as e:
        raise IoFailure(f'could not create {repo.git_dir}: {e}') from e

    with locked(repo):
        try:
            os.makedirs(f'{repo.git_dir}/objects', exist_ok=True)
            os.makedirs(f'{repo.git_dir}/refs/heads', exist_ok=True)
            os.makedirs(f'{repo.git_dir}/refs/tags', exist_ok=True)
            if not os.path.exists(f'{repo.git_dir}/HEAD'):
                open(f'{repo.git_dir}/HEAD', 'w').close()
        except OSError as e:
            raise IoFailure(f'could not create {repo.git_dir}: {e}') from e
    logger.debug('initialized {}', repo.git_dir)


@contextmanager
def locked(repo: Repository):
    lock_path = f'{repo.git_dir}/lock'
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        raise LockContention(f'{lock_path} exists; another process is using the repository') from None
    except OSError as e:
        raise IoFailure(f'could not create {lock_path}: {e}') from e
    os.close(fd)
    try:
        yield
    finally:
        try:
            os.remove(lock_path)
        except FileNotFoundError:
            logger.warning('lock {} vanished while held', lock_path)


def hash_object(repo: Repository, data: bytes, type_: types.ObjectKind = 'blob') -> types.OID:
    obj = type_.encode() + SEPARATOR + data
    oid = hashlib.sha1(obj).hexdigest()
    if object_exists(repo, oid):
        return oid
    try:
        _write_replacing(f'{repo.git_dir}/objects/{oid}', obj)
    except OSError as e:
        raise IoFailure(f'could not store object {oid}: {e}') from e
    logger.debug('stored {} {} ({} bytes)', type_, oid, len(data))
    return oid


def get_object(repo: Repository, oid: types.OID) -> types.Object:
    if not _is_safe_name(oid):
        raise NotFound(f'object {oid!r} not found')
    try:
        with open(f'{repo.git_dir}/objects/{oid}', 'rb') as f:
            obj = f.read()
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        raise NotFound(f'object {oid} not found')
    except OSError as e:
        raise IoFailure(f'could not read object {oid}: {e}') from e

    type_, sep, content = obj.partition(SEPARATOR)
    if not sep:
        raise BadFormat(f'object {oid} has no header')
    type_ = type_.decode(errors='replace')
    if type_ not in types.OBJECT_KINDS:
        raise BadFormat(f'object {oid} has unknown kind {type_!r}')
    return types.Object(kind=type_, content=content, id=oid)


def object_exists(repo: Repository, oid: types.OID) -> bool:
    return _is_safe_name(oid) and os.path.isfile(f'{repo.git_dir}/objects/{oid}')


def update_ref(repo: Repository, ref: str, oid: types.OID):
    if not _is_safe_ref(ref):
        raise BadFormat(f'invalid reference name {ref!r}')
    ref_path = f'{repo.git_dir}/{ref}'
    try:
        os.makedirs(os.path.dirname(ref_path), exist_ok=True)
        _write_replacing(ref_path, oid.encode())
    except OSError as e:
        raise IoFailure(f'could not save {ref}: {e}') from e
    logger.debug('{} -> {}', ref, oid)


def get_ref(repo: Repository, ref: str) -> types.OID:
    """Returns the id stored under ``ref``, or '' when there is none yet."""
    if not _is_safe_ref(ref):
        return ''
    try:
        with open(f'{repo.git_dir}/{ref}') as f:
            return f.read().strip()
    except FileNotFoundError:
        return ''
    except OSError as e:
        raise IoFailure(f'could not read {ref}: {e}') from e


def ref_exists(repo: Repository, ref: str) -> bool:
    return _is_safe_ref(ref) and os.path.isfile(f'{repo.git_dir}/{ref}')


def iter_refs(repo: Repository, prefix='') -> Iterable[tuple[str, types.OID]]:
    refs = ['HEAD']
    for root, _, filenames in os.walk(f'{repo.git_dir}/refs/'):
        root = os.path.relpath(root, repo.git_dir).replace('\\', '/')
        refs.extend(f'{root}/{name}' for name in sorted(filenames))

    for refname in refs:
        if not refname.startswith(prefix):
            continue
        oid = get_ref(repo, refname)
        if oid:
            yield refname, oid


def _is_safe_name(name: str) -> bool:
    return bool(name) and '/' not in name and '\\' not in name and name not in ('.', '..')


def _is_safe_ref(ref: str) -> bool:
    if not ref or ref.startswith('/') or '\\' in ref:
        return False
    return all(part not in ('', '.', '..') for part in ref.split('/'))



def _write_replacing(path: str, content: bytes):
    # readers see either the old file or the complete new one
    tmp_path = f'{path}.tmp'
    try:
        with open(tmp_path, 'wb') as out:
            out.write(content)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
