"""Main entry point for the PlayCTRL engine.

Runs the reconciliation engine headless and logs every published view. A
panel or applet front-end connects to the same ViewStore signals.
"""

import argparse
import logging
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from playctrl import __version__
from playctrl.core.config import ConfigManager
from playctrl.core.state import ViewStore
from playctrl.core.worker import EngineWorker
from playctrl.models.view import PlayerView

logger = logging.getLogger(__name__)


def _describe_view(view: PlayerView) -> str:
    """Return a one-line summary of a view for logging."""
    if view.is_empty:
        return "no players"
    parts = []
    for entry in view.entries:
        player = entry.player
        snapshot = player.winner
        parts.append(
            f"{player.application_key} [{player.status.value}] "
            f"{snapshot.artist} - {snapshot.title} "
            f"vol={entry.volume if entry.volume is not None else '-'}"
            f"({entry.volume_backend or 'none'})"
        )
    return "; ".join(parts)


def main() -> int:
    """Run the PlayCTRL engine.

    Returns:
        Exit code (0 for success).
    """
    QCoreApplication.setApplicationName("PlayCTRL")
    QCoreApplication.setOrganizationName("PlayCTRL")

    app = QCoreApplication(sys.argv)

    parser = argparse.ArgumentParser(
        prog="playctrl",
        description="PlayCTRL - media player control engine",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    parser.add_argument(
        "--poll-interval",
        type=int,
        default=None,
        help="milliseconds between ticks (default: from settings, 1000)",
    )
    parsed = parser.parse_args(app.arguments()[1:])

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ConfigManager()
    if parsed.poll_interval is not None:
        config.set_poll_interval_ms(parsed.poll_interval)
    poll_interval = config.get_poll_interval_ms() / 1000
    endpoint_timeout = config.get_endpoint_timeout()
    logger.info("Polling every %.2fs (endpoint timeout %.2fs)", poll_interval, endpoint_timeout)

    view_store = ViewStore()
    worker = EngineWorker(poll_interval=poll_interval, endpoint_timeout=endpoint_timeout)

    def on_players_changed(_entries: object) -> None:
        logger.info("Players: %s", _describe_view(view_store.view))

    def on_error(err: object) -> None:
        logger.error("Error: %s", err)

    def on_playing_changed(playing: bool) -> None:
        logger.debug("Any player playing: %s", playing)

    worker.view_published.connect(view_store.update_from_view)
    worker.error_occurred.connect(on_error)
    worker.stopped_engine.connect(view_store.clear)
    worker.stopped_engine.connect(app.quit)
    view_store.players_changed.connect(on_players_changed)
    view_store.playing_changed.connect(on_playing_changed)

    # Ctrl+C stops the worker; the timer lets the interpreter see the signal
    signal.signal(signal.SIGINT, lambda *_: worker.stop())
    interrupt_timer = QTimer()
    interrupt_timer.timeout.connect(lambda: None)
    interrupt_timer.start(200)

    worker.start()
    exit_code = app.exec()

    # Cleanup
    worker.stop()
    worker.wait()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
