"""
Create the claimguard tables.

    python -m claimguard.db.init_db
"""

from claimguard.db.database import DATABASE_URL, init_db
from claimguard.db.models import Base

if __name__ == "__main__":
    init_db()
    tables = ", ".join(sorted(Base.metadata.tables))
    print(f"Created tables ({tables}) at: {DATABASE_URL}")
