"""Error kinds raised by the object store, tree codec, commit chain and refs.

Nothing below :mod:`minigit.cli` exits the process; these propagate to the
outermost boundary, which decides whether to abort.
"""


class MinigitError(Exception):
    pass


class NotFound(MinigitError):
    """An object or reference is absent."""


class BadFormat(MinigitError):
    """A stored record, tree line or commit header is malformed."""


class Corrupt(BadFormat):
    """An object graph cycles or nests deeper than any legitimate one could."""


class IoFailure(MinigitError):
    """Permission, disk or partial I/O failure."""


class ExternalProcessFailure(MinigitError):
    """An external program (editor, graph renderer) is missing or failed."""


class LockContention(MinigitError):
    """Another process holds the repository lock; retrying may succeed."""
