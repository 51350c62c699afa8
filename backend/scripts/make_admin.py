"""CLI script to grant or revoke the admin flag on a user.
Usage: python scripts/make_admin.py EMAIL [--revoke]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `testcraft` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from testcraft.database import engine, create_db_and_tables
from testcraft.errors import TestcraftError
from testcraft.store import SQLStore


def main(email: str, revoke: bool = False) -> int:
    """Set `is_admin` for the user with `email`.

    Outstanding tokens carry the old flag, so the token version is bumped
    and the user has to log in again.
    """
    create_db_and_tables()
    with Session(engine) as session:
        store = SQLStore(session)
        try:
            found = store.query_rows('users', {'email': email.strip().lower()})
            if not found:
                print(f'No user with email {email}')
                return 1
            user = found[0]
            store.update_row('users', user.id, {
                'is_admin': not revoke,
                'token_version': user.token_version + 1,
            })
        except TestcraftError as e:
            print(f'Failed: {e.message}')
            return 1
    print(f"{email}: admin {'revoked' if revoke else 'granted'}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Grant or revoke admin rights')
    parser.add_argument('email')
    parser.add_argument('--revoke', action='store_true', help='remove the admin flag instead')
    args = parser.parse_args()
    sys.exit(main(args.email, revoke=args.revoke))
