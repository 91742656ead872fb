#!/usr/bin/env python3
"""
User Management Utility

This script provides utilities to manage catalog accounts:
- List all users
- Create an admin account
- Promote a user to admin
- Demote an admin to a regular user
"""

import asyncio
import getpass
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from catalog.auth import TokenManager
from catalog.database import CatalogDatabase
from catalog.errors import CatalogError
from catalog.models import Role
from catalog.users import UserService
from utilities.config import config
from utilities.logger import setup_logging


def _database() -> CatalogDatabase:
    return CatalogDatabase(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database,
        books_collection=config.books_collection,
        users_collection=config.users_collection
    )


def _user_service(database: CatalogDatabase) -> UserService:
    tokens = TokenManager(
        secret_key=config.jwt_secret_key,
        algorithm=config.jwt_algorithm,
        expire_minutes=config.jwt_access_token_expire_minutes
    )
    return UserService(database.users, tokens)


async def list_users():
    """List all user accounts."""
    print("\n" + "="*80)
    print("👥 ALL USERS")
    print("="*80)

    database = _database()
    try:
        await database.connect()
        users = await _user_service(database).list_users()

        if not users:
            print("❌ No users found in database")
            return

        print(f"✅ Found {len(users)} users:")
        print()

        for i, account in enumerate(users, 1):
            print(f"{i:3d}. {account.username}")
            print(f"     ID: {account.id}")
            print(f"     Role: {account.role.value}")
            print(f"     Created: {account.created_at}")
            print()

    except Exception as e:
        print(f"❌ Error listing users: {e}")
    finally:
        await database.disconnect()


async def create_admin(username: str, password: str):
    """Create a new admin account."""
    print(f"\n🔑 CREATING ADMIN: {username}")
    print("="*80)

    database = _database()
    try:
        await database.connect()
        account = await _user_service(database).register(username, password, role=Role.ADMIN)
        print(f"✅ Admin created with ID {account.id}")

    except CatalogError as e:
        print(f"❌ {e.message}")
    except Exception as e:
        print(f"❌ Error creating admin: {e}")
    finally:
        await database.disconnect()


async def change_role(username: str, role: Role):
    """Set the role of an existing account."""
    print(f"\n🔁 SETTING ROLE OF {username} TO {role.value.upper()}")
    print("="*80)

    database = _database()
    try:
        await database.connect()
        await _user_service(database).set_role(username, role)
        print(f"✅ {username} is now {role.value}")

    except CatalogError as e:
        print(f"❌ {e.message}")
    except Exception as e:
        print(f"❌ Error changing role: {e}")
    finally:
        await database.disconnect()


def _usage():
    print("Usage: python manage_users.py [list|create-admin|promote|demote] [username] [password]")
    print()
    print("Commands:")
    print("  list          - List all users")
    print("  create-admin  - Create an admin account (prompts for the password if omitted)")
    print("  promote       - Give an existing user the admin role")
    print("  demote        - Return an admin to the user role")
    print()
    print("Examples:")
    print("  python manage_users.py list")
    print("  python manage_users.py create-admin librarian")
    print("  python manage_users.py promote alice")
    print("  python manage_users.py demote alice")


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        _usage()
        sys.exit(1)

    command = sys.argv[1].lower()

    # Setup logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    if command == "list":
        await list_users()
    elif command in ("create-admin", "promote", "demote"):
        if len(sys.argv) < 3:
            print(f"❌ Error: username required for {command} command")
            print(f"Usage: python manage_users.py {command} <username>")
            sys.exit(1)
        username = sys.argv[2]

        if command == "create-admin":
            password = sys.argv[3] if len(sys.argv) > 3 else getpass.getpass("Password: ")
            await create_admin(username, password)
        elif command == "promote":
            await change_role(username, Role.ADMIN)
        else:
            await change_role(username, Role.USER)
    else:
        print(f"❌ Unknown command: {command}")
        print("Available commands: list, create-admin, promote, demote")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
