#!/usr/bin/env python3
"""
Database initialization script for the collaboration server.
Creates all tables and, optionally, a demo form with one collaboration group
and access tokens for two participants.
"""

import sys
import asyncio
import logging
from pathlib import Path
from typing import Optional

# Add backend/ to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from formsync.core.config import get_database_url
from formsync.core.security import create_access_token
from formsync.db.database import close_db, create_engine_for_url, create_session_factory, init_db
from formsync.db.store import CollaborationStore
from formsync.models import FieldType, UserRole


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEMO_FIELDS = [
    {"label": "Full name", "type": FieldType.TEXT, "required": True},
    {"label": "Contact email", "type": FieldType.EMAIL, "required": True},
    {"label": "Team size", "type": FieldType.NUMBER},
    {"label": "Department", "type": FieldType.DROPDOWN, "options": ["Engineering", "Sales", "Support"]},
    {"label": "Notes", "type": FieldType.TEXTAREA},
]


class DatabaseInitializer:
    """Database initialization and setup."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_database_url()
        self.engine = create_engine_for_url(self.database_url)
        self.store = CollaborationStore(create_session_factory(self.engine))

    async def insert_sample_data(self, share_code: Optional[str] = None) -> None:
        """Create an admin, a participant, a demo form and one group on it."""
        admin = await self.store.create_user("admin@example.com", UserRole.ADMIN)
        participant = await self.store.create_user("participant@example.com")

        form = await self.store.create_form(
            "Team onboarding",
            DEMO_FIELDS,
            created_by_id=admin.id,
            description="Filled in together by the whole team",
        )
        group = await self.store.create_group(form.id, "Demo group", admin.id, share_code=share_code)

        logger.info(f"Demo form {form.id} shared as {group.share_code}")
        for user in (admin, participant):
            token = create_access_token({"sub": user.id, "email": user.email})
            logger.info(f"Token for {user.email}: {token}")

    async def initialize_database(self, include_sample_data: bool = True, share_code: Optional[str] = None) -> None:
        logger.info("Starting database initialization...")

        try:
            await init_db(self.engine)

            if include_sample_data:
                await self.insert_sample_data(share_code)

            logger.info("Database initialization completed successfully!")

        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise
        finally:
            await close_db(self.engine)


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Initialize the collaboration database')
    parser.add_argument('--no-sample-data', action='store_true',
                        help='Skip inserting the demo form and group')
    parser.add_argument('--share-code',
                        help='Share code for the demo group (generated if omitted)')
    parser.add_argument('--database-url',
                        help='Database URL (defaults to environment)')
    args = parser.parse_args()

    initializer = DatabaseInitializer(args.database_url)
    asyncio.run(initializer.initialize_database(
        include_sample_data=not args.no_sample_data,
        share_code=args.share_code,
    ))


if __name__ == '__main__':
    main()
