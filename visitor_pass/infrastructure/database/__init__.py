from .connection import get_engine, get_session_maker, init_db
from .pass_store import PassStore, pass_store

__all__ = ["get_engine", "get_session_maker", "init_db", "PassStore", "pass_store"]
