"""CRUD operations package.

- requests.py: daily request log used by the admission precheck
- chats.py: chat transcripts
"""

from deepsearch.app.db.crud.chats import get_chat, to_messages, upsert_chat
from deepsearch.app.db.crud.requests import get_request_count_today, insert_request

__all__ = [
    "get_chat",
    "get_request_count_today",
    "insert_request",
    "to_messages",
    "upsert_chat",
]
