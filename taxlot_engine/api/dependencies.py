"""
Shared request dependencies.
"""
from fastapi import Request


def get_db(request: Request):
    """Get database session."""
    Session = request.app.state.Session
    db = Session()
    try:
        yield db
    finally:
        db.close()


def get_session_factory(request: Request):
    """Session factory for collaborators that open their own sessions."""
    return request.app.state.Session
