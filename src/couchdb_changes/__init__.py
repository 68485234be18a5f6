"""Resumable consumer for the CouchDB continuous ``_changes`` feed."""

from .feed import Change, ChangeAction, FeedConsumer


def main() -> None:
    """Entrypoint proxy that defers importing the service until needed."""

    from .service import main as _service_main

    _service_main()


__all__ = ["main", "Change", "ChangeAction", "FeedConsumer"]
