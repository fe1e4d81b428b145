"""Make one user the only admin.

Clears the admin flag on every account, then sets it on the account with
the given email. The user must have logged in at least once.

Usage:
    python scripts/set_single_admin.py admin@example.com
"""

import sys

from sqlmodel import Session

from chatvault.core.crypto import get_cipher
from chatvault.core.database import engine, init_db
from chatvault.core.errors import NotFound
from chatvault.services.store import EntityStore

if len(sys.argv) != 2:
    print("Usage: python scripts/set_single_admin.py EMAIL")
    raise SystemExit(1)

email = sys.argv[1]
init_db()

with Session(engine) as session:
    store = EntityStore(session, get_cipher())
    try:
        user_id = store.set_single_admin(email)
    except NotFound as e:
        print(f"Error: {e}")
        raise SystemExit(1)

print(f"{email} (user {user_id}) is now the only admin")
print("All other users have been set to non-admin status")
