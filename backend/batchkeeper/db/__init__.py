from batchkeeper.db.session import create_engine, create_session_maker, get_db, init_db
from batchkeeper.db.base import Base

__all__ = ["Base", "create_engine", "create_session_maker", "get_db", "init_db"]
