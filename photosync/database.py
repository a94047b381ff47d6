from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# All ORM models inherit from this Base.
Base = declarative_base()


def make_engine(path: str, echo: bool = False) -> Engine:
    """Creates the engine of the SQLite database at `path`."""
    engine = create_engine(f"sqlite:///{path}", echo=echo)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Sets SQLite PRAGMAs on every new connection."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA journal_mode = MEMORY")
        cursor.close()

    return engine


def make_session_factory(path: str) -> sessionmaker:
    """A session factory bound to the database at `path`; the tables are created if missing."""
    engine = make_engine(path)
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
