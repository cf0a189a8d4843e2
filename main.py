"""
Main application entry point
"""
import asyncio
import logging
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from gmail_mcp.config import load_settings
from gmail_mcp.core.scheduler import ScheduleConfig, setup_scheduler, stop_scheduler
from gmail_mcp.network.imap_client import ImapClient, ImapConfig
from gmail_mcp.network.smtp_client import SmtpClient, SmtpConfig
from gmail_mcp.server import create_server
from gmail_mcp.utils.errors import human_friendly_message
from gmail_mcp.utils.logging_cfg import setup_logging


logger = logging.getLogger("gmail_mcp")


async def run() -> None:
    """Start the clients and the scheduler, then serve MCP over stdio until EOF or SIGTERM."""
    # Load environment variables (and .env) before anything else
    settings = load_settings()

    # Setup logging; stdout belongs to the MCP transport
    setup_logging(debug=settings.debug, log_dir=settings.log_dir)

    imap_client = ImapClient(ImapConfig(
        user=settings.user,
        password=settings.password,
        host=settings.imap_host,
        port=settings.imap_port,
    ))
    smtp_client = SmtpClient(SmtpConfig(
        user=settings.user,
        password=settings.password,
        host=settings.smtp_host,
        port=settings.smtp_port,
    ))

    scheduler = AsyncIOScheduler()
    jobs = []
    try:
        await imap_client.connect()
        await smtp_client.verify()

        jobs = setup_scheduler(
            imap_client,
            ScheduleConfig(
                enabled=settings.schedule_enabled,
                times=settings.schedule_times,
                timezone=settings.timezone,
            ),
            scheduler,
        )
        if jobs:
            scheduler.start()

        server = create_server(imap_client, smtp_client)

        serving = asyncio.current_task()
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, serving.cancel)
        except (NotImplementedError, RuntimeError):
            # No signal handlers on this platform's event loop
            pass

        logger.info("Gmail MCP server running on stdio")
        await server.run_stdio_async()
    except asyncio.CancelledError:
        logger.info("Shutting down")
    finally:
        stop_scheduler(scheduler, jobs)
        await imap_client.disconnect()
        await smtp_client.close()


def main():
    """Main function"""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        print(human_friendly_message(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
