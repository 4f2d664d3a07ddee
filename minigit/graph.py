from loguru import logger

from . import base
from . import data
from .data import Repository
from .errors import BadFormat, NotFound


def to_dot(repo: Repository) -> str:
    """Renders tags and the history behind them as a Graphviz digraph.

    Tags whose history cannot be walked are drawn without it and logged.
    """
    dot = 'digraph commits {\n'

    oids = []
    for name in base.iter_tag_names(repo):
        oid = data.get_ref(repo, f'refs/tags/{name}')
        dot += f'"{name}" [shape=note]\n'
        dot += f'"{name}" -> "{oid}"\n'
        oids.append((name, oid))

    visited = set()
    for name, oid in oids:
        try:
            for commit_ in base.history(repo, oid):
                if commit_.id in visited:
                    break
                visited.add(commit_.id)
                dot += f'"{commit_.id}" [shape=box style=filled label="{commit_.id[:10]}"]\n'
                if commit_.parent:
                    dot += f'"{commit_.id}" -> "{commit_.parent}"\n'
        except (BadFormat, NotFound) as e:
            logger.warning('skipping history of tag {}: {}', name, e)

    dot += '}'
    return dot
