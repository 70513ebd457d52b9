#!/usr/bin/env python3
"""Create the Coin Studio tables on the configured database."""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app  # noqa: E402
from app.extensions import db  # noqa: E402


def init_database():
    app = create_app()
    with app.app_context():
        db.create_all()
        tables = ", ".join(sorted(db.metadata.tables))
        print(f"Database tables initialized on {db.engine.url.render_as_string(hide_password=True)}: {tables}")


if __name__ == "__main__":
    init_database()
