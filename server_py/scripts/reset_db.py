import sys
import os
import argparse
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from studio_config import Base, engine
import studio_models  # noqa: F401

def reset_db(confirm: bool) -> int:
    url = engine.url.render_as_string(hide_password=True)
    if not confirm:
        print(f"This drops every GenStudio table in {url}.")
        print("Re-run with --yes to continue.")
        return 1
    tables = sorted(Base.metadata.tables)
    print(f"Dropping {len(tables)} tables in {url}: {', '.join(tables)}")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("Database reset: all tables recreated empty")
    return 0

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Drop and recreate all tables")
    parser.add_argument("--yes", action="store_true", help="really drop the tables")
    args = parser.parse_args()
    sys.exit(reset_db(args.yes))
