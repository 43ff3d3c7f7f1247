import os


class Config:
    # MongoDB is used for the snapshot when a URL is given, otherwise a local directory
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME", "autom8")

    STORE_DIR = os.getenv("STORE_DIR", ".autom8")
    STORE_KEY = os.getenv("STORE_KEY", "autom8-store")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "*")
    PORT = int(os.getenv("PORT", 8000))
