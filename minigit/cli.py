import argparse
import os
import shlex
import subprocess
import sys
import textwrap

from loguru import logger

from . import base
from . import data
from . import graph
from .errors import ExternalProcessFailure, IoFailure, LockContention, MinigitError, NotFound

EX_TEMPFAIL = 75


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        if args.command != 'init':
            args.repo = find_repository(args.root, args.ignore)
        args.func(args)
    except LockContention as e:
        print(f'fatal: {e} (try again)', file=sys.stderr)
        sys.exit(EX_TEMPFAIL)
    except MinigitError as e:
        print(f'fatal: {e}', file=sys.stderr)
        sys.exit(1)


def configure_logging(verbosity):
    level = {0: 'WARNING', 1: 'INFO'}.get(verbosity, 'DEBUG')
    logger.remove()
    logger.add(sys.stderr, level=level, format='<level>{level: <8}</level> {message}')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='minigit')
    parser.add_argument('-C', '--root', default='.',
                        help='run as if started in this directory')
    parser.add_argument('--ignore', action='append', default=[], metavar='NAME',
                        help='also ignore files and directories with this name')
    parser.add_argument('-v', '--verbose', action='count', default=0)
    commands = parser.add_subparsers(dest='command')
    commands.required = True

    init_parser = commands.add_parser('init')
    init_parser.set_defaults(func=init)

    hash_object_parser = commands.add_parser('hash-object')
    hash_object_parser.set_defaults(func=hash_object)
    hash_object_parser.add_argument('file')
    hash_object_parser.add_argument('-t', '--type', default='blob', choices=['blob', 'tree', 'commit'])

    cat_file_parser = commands.add_parser('cat-file')
    cat_file_parser.set_defaults(func=cat_file)
    cat_file_parser.add_argument('object')

    write_tree_parser = commands.add_parser('write-tree')
    write_tree_parser.set_defaults(func=write_tree)

    read_tree_parser = commands.add_parser('read-tree')
    read_tree_parser.set_defaults(func=read_tree)
    read_tree_parser.add_argument('tree')

    commit_parser = commands.add_parser('commit')
    commit_parser.set_defaults(func=commit)
    commit_parser.add_argument('-m', '--message')

    log_parser = commands.add_parser('log')
    log_parser.set_defaults(func=log)
    log_parser.add_argument('oid', default='@', nargs='?')

    checkout_parser = commands.add_parser('checkout')
    checkout_parser.set_defaults(func=checkout)
    checkout_parser.add_argument('oid')

    tag_parser = commands.add_parser('tag')
    tag_parser.set_defaults(func=tag)
    tag_parser.add_argument('name', nargs='?')
    tag_parser.add_argument('oid', default='@', nargs='?')

    branch_parser = commands.add_parser('branch')
    branch_parser.set_defaults(func=branch)
    branch_parser.add_argument('name', nargs='?')
    branch_parser.add_argument('start_point', default='@', nargs='?')

    k_parser = commands.add_parser('k')
    k_parser.set_defaults(func=k)
    k_parser.add_argument('-o', '--output', default='graph.png')

    return parser.parse_args(argv)


def find_repository(start, ignore=()) -> data.Repository:
    directory = os.path.abspath(start)
    while True:
        if os.path.isdir(os.path.join(directory, data.META_DIR)):
            return data.open_repository(directory, ignore)
        parent = os.path.dirname(directory)
        if parent == directory:
            raise NotFound(f'not a minigit repository (or any parent up to {directory})')
        directory = parent


def init(args):
    repo = data.open_repository(args.root, args.ignore)
    data.init(repo)
    print(f'Initialized empty minigit repository in {repo.git_dir}')


def hash_object(args):
    try:
        with open(args.file, 'rb') as f:
            content = f.read()
    except OSError as e:
        raise IoFailure(f'could not read {args.file}: {e}') from e
    print(data.hash_object(args.repo, content, args.type))


def cat_file(args):
    obj = data.get_object(args.repo, base.resolve(args.repo, args.object))
    sys.stdout.flush()
    sys.stdout.buffer.write(obj.content)


def write_tree(args):
    print(base.write_tree(args.repo))


def read_tree(args):
    with data.locked(args.repo):
        base.read_tree(args.repo, base.resolve(args.repo, args.tree))


def commit(args):
    message = args.message
    if message is None:
        message = edit_message(args.repo)
    if not message.strip():
        raise MinigitError('aborting commit due to empty commit message')
    print(base.commit(args.repo, message))


def edit_message(repo: data.Repository) -> str:
    editor = os.environ.get('EDITOR')
    if not editor:
        raise ExternalProcessFailure('EDITOR is not set; use -m to give a message')

    path = f'{repo.git_dir}/COMMIT_EDITMSG'
    try:
        open(path, 'w').close()
    except OSError as e:
        raise IoFailure(f'could not create {path}: {e}') from e
    try:
        try:
            result = subprocess.run([*shlex.split(editor), path])
        except OSError as e:
            raise ExternalProcessFailure(f'could not run {editor}: {e}') from e
        if result.returncode != 0:
            raise ExternalProcessFailure(f'{editor} exited with status {result.returncode}')
        with open(path) as f:
            return f.read().rstrip()
    finally:
        os.remove(path)


def log(args):
    oid = base.resolve(args.repo, args.oid)
    if not oid:
        raise NotFound('current branch has no commits yet')
    for commit_ in base.history(args.repo, oid):
        print(f'commit {commit_.id}\n')
        print(textwrap.indent(commit_.message, '    '))
        print('')


def checkout(args):
    base.checkout(args.repo, base.resolve(args.repo, args.oid))


def tag(args):
    if not args.name:
        for name in base.iter_tag_names(args.repo):
            print(name)
        return
    oid = base.resolve(args.repo, args.oid)
    if not oid:
        raise NotFound('nothing to tag: no commits yet')
    base.create_tag(args.repo, args.name, oid)


def branch(args):
    if not args.name:
        for name in base.iter_branch_names(args.repo):
            print(name)
        return
    oid = base.resolve(args.repo, args.start_point)
    if not oid:
        raise NotFound('nothing to branch from: no commits yet')
    base.create_branch(args.repo, args.name, oid)
    print(f'Branch {args.name} created at {oid[:10]}')


def k(args):
    dot = graph.to_dot(args.repo)
    try:
        with subprocess.Popen(
                ['dot', '-Tpng', f'-o{args.output}'],
                stdin=subprocess.PIPE
        ) as proc:
            proc.communicate(dot.encode())
    except OSError as e:
        raise ExternalProcessFailure(f'could not run dot: {e}') from e
    if proc.returncode != 0:
        raise ExternalProcessFailure(f'dot exited with status {proc.returncode}')

    print(f'graph available at {args.output}')
