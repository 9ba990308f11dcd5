"""Entry point for ``python -m event_notifications``."""

from event_notifications.app.cli import cli

if __name__ == "__main__":
    cli()
