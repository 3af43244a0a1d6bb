"""Create the schema, an admin account and two sample events.

Usage: python -m scripts.seed --admin-username admin --admin-password secret123
"""
import argparse
import logging

from eventpass.config import get_settings
from eventpass.container import build_services
from eventpass.domain import EventStatus
from eventpass.logs import setup_logging

logger = logging.getLogger("seed")

SAMPLE_EVENTS = [
    {
        "title": "Annual Tech Summit 2026",
        "date": "2026-03-15",
        "location": "Grand Hall A",
        "description": "The biggest tech conference of the year featuring speakers from top tech companies.",
        "status": EventStatus.UPCOMING,
        "capacity": 500,
    },
    {
        "title": "Leadership Workshop",
        "date": "2026-02-20",
        "location": "Room 101",
        "description": "Interactive session for team leads to develop leadership skills.",
        "status": EventStatus.ACTIVE,
        "capacity": 50,
    },
]


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--admin-username", default="admin")
    parser.add_argument("--admin-password", required=True)
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    services = build_services(settings)
    services.create_schema()

    admin = services.users.ensure_admin(args.admin_username, args.admin_password)
    existing = {e.title for e in services.events.list_events()}
    for fields in SAMPLE_EVENTS:
        if fields["title"] in existing:
            continue
        event = services.events.create_event(created_by=admin.id, **fields)
        logger.info("seeded event %s (%s)", event.id, event.title)


if __name__ == "__main__":
    main()
