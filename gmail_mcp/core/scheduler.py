"""Scheduled polling for unread mail using APScheduler.

Each configured wall-clock time ("HH:mm") becomes one daily cron job. On every
firing the job lists unread messages received in the last 24 hours and
reports a summary to the log.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from gmail_mcp.config import DEFAULT_SCHEDULE_TIMES, SCHEDULED_FETCH_LIMIT
from gmail_mcp.core.search import Flag, Match, format_imap_date
from gmail_mcp.network.imap_client import ImapClient
from gmail_mcp.utils.formatters import format_email_list, format_json_response

logger = logging.getLogger(__name__)

LOOKBACK = timedelta(hours=24)


@dataclass
class ScheduleConfig:
    enabled: bool = False
    times: List[str] = field(default_factory=lambda: list(DEFAULT_SCHEDULE_TIMES))
    timezone: Optional[str] = None


def parse_schedule_time(value: str) -> Tuple[int, int]:
    """Parse "HH:mm" into (hour, minute).

    Raises:
        ValueError: If the value is malformed or out of range.
    """
    hours, sep, minutes = value.strip().partition(":")
    if (
        not sep
        or not hours.strip().isdigit()
        or not minutes.strip().isdigit()
        or not 0 <= int(hours) <= 23
        or not 0 <= int(minutes) <= 59
    ):
        raise ValueError(f"Invalid time format: {value}. Expected format: HH:mm (00:00-23:59)")
    return int(hours), int(minutes)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Configured IANA zone, else the host's local zone, else UTC."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r}, falling back to the host timezone")
    local = datetime.now().astimezone().tzinfo
    return local or timezone.utc


async def fetch_unread_from_last_24_hours(
    imap_client: ImapClient,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[Dict[str, Any]]:
    """Fetch unread messages since yesterday and log a summary.

    Never raises: a failed run is logged so the job stays registered.

    Returns:
        The JSON summary, or None if the run failed.
    """
    try:
        now = now or datetime.now(tz or timezone.utc)
        since = format_imap_date(now - LOOKBACK)
        criteria = [Flag("UNSEEN"), Match("SINCE", since)]

        logger.info(f"Scheduled task: fetching unread emails since {since}")
        emails = await imap_client.list_emails(criteria, limit=SCHEDULED_FETCH_LIMIT)

        summary = {
            "timestamp": now.isoformat(),
            "count": len(emails),
            "emails": [
                {
                    "uid": email.uid,
                    "subject": email.subject,
                    "from": email.from_address.address if email.from_address else None,
                    "date": email.date.isoformat() if email.date else None,
                    "unread": email.unread,
                }
                for email in emails
            ],
        }

        if not emails:
            logger.info("No unread emails found from the last 24 hours.")
        else:
            logger.info(f"Found {len(emails)} unread email(s) from the last 24 hours:\n{format_email_list(emails)}")
        logger.info(f"JSON Summary:\n{format_json_response(summary)}")
        return summary
    except Exception:
        logger.exception("Error in scheduled task")
        return None


def setup_scheduler(
    imap_client: ImapClient,
    config: ScheduleConfig,
    scheduler: AsyncIOScheduler,
) -> List[Job]:
    """Register one daily job per configured time.

    An invalid time is logged and skipped; the remaining times still register.
    The scheduler is not started here.

    Returns:
        The registered jobs (empty when scheduling is disabled or unconfigured).
    """
    if not config.enabled:
        logger.info("Scheduling is disabled. Set SCHEDULE_ENABLED=true to enable.")
        return []

    if not config.times:
        logger.info('No schedule times configured. Set SCHEDULE_TIMES in .env (e.g., "15:00,19:00").')
        return []

    tz = resolve_timezone(config.timezone)
    jobs: List[Job] = []

    for time in config.times:
        try:
            hour, minute = parse_schedule_time(time)
            job = scheduler.add_job(
                fetch_unread_from_last_24_hours,
                CronTrigger(hour=hour, minute=minute, timezone=tz),
                args=[imap_client],
                kwargs={"tz": tz},
                id=f"fetch_unread_{hour:02d}{minute:02d}",
                replace_existing=True,
                misfire_grace_time=300,
                coalesce=True,
            )
        except Exception as e:
            logger.error(f"Failed to register schedule for time {time!r}: {e}")
            continue

        jobs.append(job)
        logger.info(f"Scheduled task registered: daily at {hour:02d}:{minute:02d} ({tz})")

    return jobs


def stop_scheduler(scheduler: AsyncIOScheduler, jobs: List[Job]) -> None:
    """Remove the jobs and stop the scheduler without waiting for running jobs."""
    for job in jobs:
        try:
            job.remove()
        except Exception as e:
            logger.debug(f"Job {job.id} already removed: {e}")

    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("All scheduled tasks stopped.")
