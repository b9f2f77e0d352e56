import os

class Settings:
    # Backend variant: "document" (LMDB) or "relational" (SQLAlchemy)
    STORAGE_TYPE: str = os.getenv("STORAGE_TYPE", "")

    # Storage - can be overridden with environment variable
    DATA_DIR: str = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))

    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(DATA_DIR, "song-recognition.db"),
    )

    LMDB_PATH: str = os.getenv("LMDB_PATH", os.path.join(DATA_DIR, "song-recognition.lmdb"))
    LMDB_MAP_SIZE: int = int(os.getenv("LMDB_MAP_SIZE", str(500 * 1024 * 1024)))

settings = Settings()
