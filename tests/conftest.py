"""Shared fixtures: an initialized repository and helpers to build and read directories."""

import os

import pytest

from minigit import data


@pytest.fixture
def repo(tmp_path):
    """A freshly initialized repository whose working tree is ``tmp_path/work``."""
    root = tmp_path / 'work'
    root.mkdir()
    repo = data.open_repository(root)
    data.init(repo)
    return repo


@pytest.fixture
def make_files():
    """Writes ``{relative path: bytes}`` below a directory, creating parents."""

    def make(root, files):
        for path, content in files.items():
            target = os.path.join(root, path)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, 'wb') as f:
                f.write(content)

    return make


@pytest.fixture
def snapshot():
    """Reads a directory back as ``({file path: bytes}, {dir path})``, skipping metadata."""

    def read(root):
        files, dirs = {}, set()
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if d != data.META_DIR]
            rel = os.path.relpath(dirpath, root).replace('\\', '/')
            if rel != '.':
                dirs.add(rel)
            for name in filenames:
                path = name if rel == '.' else f'{rel}/{name}'
                with open(os.path.join(dirpath, name), 'rb') as f:
                    files[path] = f.read()
        return files, dirs

    return read


@pytest.fixture
def put_raw():
    """Stores a hand-crafted record under an arbitrary id, bypassing hashing."""

    def put(repo, oid, record):
        with open(f'{repo.git_dir}/objects/{oid}', 'wb') as f:
            f.write(record)
        return oid

    return put
