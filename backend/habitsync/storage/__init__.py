from .local_store import LocalDurableStore  # noqa: F401
