import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import inspect
from studio_config import engine

def list_tables():
    print(f"Connecting to {engine.url.render_as_string(hide_password=True)}")
    insp = inspect(engine)
    print("Databases/Schemas:", insp.get_schema_names())
    print("\nTables in default schema:")
    for table in insp.get_table_names():
        print(f" - {table}")
        for col in insp.get_columns(table):
            print(f"     {col['name']}: {col['type']}")

if __name__ == "__main__":
    list_tables()
