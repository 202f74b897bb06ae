import os
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DB_DIR = os.getenv("DB_DIR", os.path.join(BASE_DIR, "db"))
MEMORY_DIR = os.path.join(DB_DIR, "memory")
SESSIONS_DIR = os.getenv("SESSIONS_DIR", os.path.join(MEMORY_DIR, "sessions"))
