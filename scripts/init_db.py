from app.db import create_db_and_tables, DATABASE_URL

if __name__ == "__main__":
    print(f"Creating tables in {DATABASE_URL.split('@')[-1]}...")
    create_db_and_tables()
    print("Tables created successfully!")
