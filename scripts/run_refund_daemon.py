"""Run the refund daemon without the HTTP host.

Usage:
  python scripts/run_refund_daemon.py            # run until SIGINT/SIGTERM
  python scripts/run_refund_daemon.py --once     # run a single cycle and exit
"""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import load_daemon_config, load_settings
from app.core.exceptions import ConfigError
from app.core.logger import configure_logging
from app.database import get_session_factory, init_db
from app.integrations.email import EmailService
from app.services.refund_daemon import build_refund_daemon

logger = logging.getLogger("refund_daemon")


async def run(once: bool) -> int:
    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        config = load_daemon_config(settings)
    except ConfigError as exc:
        configure_logging()
        logger.error("Refusing to start: %s", exc)
        return 2

    init_db()
    daemon = build_refund_daemon(config, get_session_factory(), EmailService(settings))

    if once:
        report = await daemon.run_cycle()
        print(report.as_dict() if report else "refund daemon disabled")
        return 0

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    daemon.start()
    if not daemon.is_running:
        return 0
    await stop.wait()
    await daemon.stop()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Refund eligibility daemon")
    parser.add_argument("--once", action="store_true", help="run one cycle and exit")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.once)))


if __name__ == "__main__":
    main()
