"""
Durable storage for chat data, backed by ChromaDB.

The store is split in two layers:
- ChromaCollectionStore: a thin data access layer over one ChromaDB
  collection. It converts every ChromaDB failure into a StorageError.
- ChatStore: the high-level interface the relay talks to. It owns one
  collection per record kind (messages, private chats, users, room visits,
  call logs) and translates between ChromaDB rows and the Pydantic records.

Unlike a cache, a failed write here must never be silently ignored: callers
rely on StorageError to abort delivery of anything that was not persisted.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import chromadb
import chromadb.utils.embedding_functions as embedding_functions

from config import CHROMA_DB_PATH
from data_models import CallLogRecord, MessageRecord, PrivateChatRecord, UserRecord, UserStatus
from utils import pair_key

# --- Global Setup ---
# Initialize the embedding function once to be reused across all collections.
try:
    embedding_function = embedding_functions.DefaultEmbeddingFunction()
    logging.info("Successfully initialized the default sentence-transformer embedding model.")
except Exception as e:
    logging.critical(f"FATAL: Failed to initialize the embedding model: {e}")
    embedding_function = None


class StorageError(RuntimeError):
    """Raised when the underlying store cannot complete a read or write."""


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class ChromaCollectionStore:
    """
    Handles all direct read/write interactions with a specific ChromaDB collection.
    """

    def __init__(self, client: Any, collection_name: str):
        self.name = collection_name
        if embedding_function is None:
            raise StorageError(f"Cannot open collection '{self.name}': embedding function not available.")
        try:
            self.collection = client.get_or_create_collection(name=self.name, embedding_function=embedding_function)
            logging.info(f"ChromaCollectionStore connected to collection '{self.name}'.")
        except Exception as e:
            logging.error(f"Failed to open collection '{self.name}': {e}")
            raise StorageError(f"Failed to open collection '{self.name}'.") from e

    def add(self, record_id: str, document: str, metadata: dict) -> None:
        try:
            self.collection.add(ids=[record_id], documents=[document], metadatas=[metadata])
        except Exception as e:
            logging.error(f"Could not add record to collection '{self.name}': {e}")
            raise StorageError(f"Could not add record to '{self.name}'.") from e

    def upsert(self, record_id: str, document: str, metadata: dict) -> None:
        try:
            self.collection.upsert(ids=[record_id], documents=[document], metadatas=[metadata])
        except Exception as e:
            logging.error(f"Could not upsert record '{record_id}' in collection '{self.name}': {e}")
            raise StorageError(f"Could not upsert record in '{self.name}'.") from e

    def get(self, record_id: str) -> Optional[tuple[str, dict]]:
        """Returns (document, metadata) for one record, or None if it does not exist."""
        try:
            result = self.collection.get(ids=[record_id], include=["metadatas", "documents"])
        except Exception as e:
            logging.error(f"Could not read record '{record_id}' from collection '{self.name}': {e}")
            raise StorageError(f"Could not read record from '{self.name}'.") from e
        if not result or not result.get("ids"):
            return None
        return result["documents"][0], result["metadatas"][0] or {}

    def find(self, where: dict) -> list[tuple[str, str, dict]]:
        """Returns (id, document, metadata) for every record matching the filter."""
        try:
            result = self.collection.get(where=where, include=["metadatas", "documents"])
        except Exception as e:
            logging.error(f"Could not query collection '{self.name}': {e}")
            raise StorageError(f"Could not query '{self.name}'.") from e
        if not result or not result.get("ids"):
            return []
        return [
            (record_id, result["documents"][i], result["metadatas"][i] or {})
            for i, record_id in enumerate(result["ids"])
        ]

    def update_metadata(self, ids: list[str], metadatas: list[dict]) -> None:
        if not ids:
            return
        try:
            self.collection.update(ids=ids, metadatas=metadatas)
        except Exception as e:
            logging.error(f"Could not update metadata in collection '{self.name}': {e}")
            raise StorageError(f"Could not update records in '{self.name}'.") from e


class ChatStore:
    """
    The persistence collaborator of the relay: messages, private-chat
    summaries, user status, per-room last visits and call logs.
    """

    def __init__(self, path: str = CHROMA_DB_PATH):
        try:
            # Establishes a persistent client connection to the database on disk.
            client = chromadb.PersistentClient(path=path)
        except Exception as e:
            logging.error(f"Failed to open ChromaDB at '{path}': {e}")
            raise StorageError("Failed to open the chat store.") from e

        self.messages = ChromaCollectionStore(client, "messages")
        self.private_chats = ChromaCollectionStore(client, "private_chats")
        self.users = ChromaCollectionStore(client, "users")
        self.room_visits = ChromaCollectionStore(client, "room_visits")
        self.call_logs = ChromaCollectionStore(client, "call_logs")

    # --- Messages ---

    def add_message(self, record: MessageRecord) -> MessageRecord:
        # The content is the document; everything else travels as metadata.
        metadata = record.model_dump(exclude={"message_id", "content", "timestamp"}, exclude_none=True)
        metadata["timestamp"] = record.timestamp.timestamp()
        if record.is_private and record.receiver_id:
            metadata["pair_key"] = pair_key(record.sender_id, record.receiver_id)
        self.messages.add(record.message_id, record.content, metadata)
        return record

    def recent_room_messages(self, room_id: str, limit: int) -> list[MessageRecord]:
        """The newest `limit` messages of a room, newest first."""
        rows = self.messages.find({"$and": [{"room_id": room_id}, {"is_private": False}]})
        return self._newest_first(rows, limit)

    def recent_private_messages(self, user_id: str, other_user_id: str, limit: int) -> list[MessageRecord]:
        """The newest `limit` messages exchanged by two users (either direction), newest first."""
        rows = self.messages.find({"pair_key": pair_key(user_id, other_user_id)})
        return self._newest_first(rows, limit)

    def mark_message_read(self, message_id: str) -> bool:
        row = self.messages.get(message_id)
        if row is None:
            return False
        _, metadata = row
        self.messages.update_metadata([message_id], [{**metadata, "is_read": True}])
        return True

    def mark_chat_read(self, reader_id: str, other_user_id: str) -> int:
        """Marks every unread message other_user_id sent to reader_id as read; returns how many."""
        rows = self.messages.find(
            {
                "$and": [
                    {"pair_key": pair_key(reader_id, other_user_id)},
                    {"receiver_id": reader_id},
                    {"is_read": False},
                ]
            }
        )
        self.messages.update_metadata(
            [record_id for record_id, _, _ in rows],
            [{**metadata, "is_read": True} for _, _, metadata in rows],
        )
        return len(rows)

    def _newest_first(self, rows: list[tuple[str, str, dict]], limit: int) -> list[MessageRecord]:
        records = []
        for record_id, document, metadata in rows:
            fields = {key: value for key, value in metadata.items() if key != "pair_key"}
            fields["timestamp"] = _from_epoch(metadata.get("timestamp", 0.0))
            try:
                records.append(MessageRecord.model_validate({**fields, "message_id": record_id, "content": document}))
            except Exception as validation_error:
                # One corrupted row must not hide the rest of the history.
                logging.warning(f"Skipping message '{record_id}' due to validation error: {validation_error}")
        records.sort(key=lambda r: (r.timestamp, r.message_id), reverse=True)
        return records[:limit]

    # --- Private chat summaries ---

    def upsert_private_chat(self, sender_id: str, receiver_id: str, message_id: str, at: datetime) -> PrivateChatRecord:
        """Creates the summary on the first message between a pair, otherwise moves its last-message pointer."""
        chat_id = pair_key(sender_id, receiver_id)
        existing = self.private_chats.get(chat_id)
        if existing is None:
            participants = (sender_id, receiver_id)
            created_at = at.timestamp()
        else:
            _, metadata = existing
            participants = (metadata["participant_a"], metadata["participant_b"])
            created_at = metadata.get("created_at", at.timestamp())

        self.private_chats.upsert(
            chat_id,
            chat_id,
            {
                "participant_a": participants[0],
                "participant_b": participants[1],
                "last_message_id": message_id,
                "last_message_at": at.timestamp(),
                "created_at": created_at,
                "is_active": True,
            },
        )
        return PrivateChatRecord(
            chat_id=chat_id,
            participants=participants,
            last_message_id=message_id,
            last_message_at=at,
            created_at=_from_epoch(created_at),
        )

    # --- Users ---

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        row = self.users.get(user_id)
        if row is None:
            return None
        _, metadata = row
        last_active = metadata.get("last_active_at")
        return UserRecord(
            user_id=user_id,
            username=metadata.get("username"),
            status=metadata.get("status", UserStatus.OFFLINE.value),
            last_active_at=_from_epoch(last_active) if last_active is not None else None,
            suspended=metadata.get("suspended", False),
        )

    def set_user_status(self, user_id: str, status: UserStatus, at: datetime) -> None:
        existing = self.users.get(user_id)
        document, metadata = existing if existing is not None else (user_id, {})
        metadata = {**metadata, "status": status.value, "last_active_at": at.timestamp()}
        self.users.upsert(user_id, document, metadata)

    # --- Room visits ---

    def record_room_visit(self, user_id: str, room_id: str, at: datetime) -> None:
        self.room_visits.upsert(
            f"{user_id}:{room_id}", room_id, {"user_id": user_id, "room_id": room_id, "last_seen_at": at.timestamp()}
        )

    # --- Call logs ---

    def add_call_log(self, record: CallLogRecord) -> CallLogRecord:
        metadata = record.model_dump(exclude={"call_id", "timestamp"})
        metadata["timestamp"] = record.timestamp.timestamp()
        self.call_logs.add(record.call_id, f"{record.call_type} call {record.call_status}", metadata)
        return record
