"""Session store — the single owner of all chat sessions.

Every mutator builds a new :class:`ChatState` snapshot (copy-on-write on the
touched session), hands it to the persister and, where the backend should
know about the change, submits a background sync job. Snapshots returned by
the store must be treated as read-only.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from .config import AppConfig
from .models import (
    ChatMessage,
    ChatSession,
    ChatState,
    Mask,
    create_empty_session,
    message_text_content,
)
from .sync import ServerSyncAdapter
from .tasks import BackgroundTaskQueue
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

SessionUpdater = Callable[[ChatSession], None]


class JsonFilePersister:
    """Serializes the store state to a JSON file on every mutation."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, state: ChatState) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".chat-state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(state.model_dump_json())
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def load(self) -> ChatState | None:
        if not self._path.exists():
            return None
        return ChatState.model_validate_json(self._path.read_text(encoding="utf-8"))


class DeletedSession:
    """Undo handle returned by :meth:`ChatStore.delete_session`."""

    def __init__(
        self,
        store: ChatStore,
        session: ChatSession,
        restore_state: ChatState,
        undo_window: float,
    ) -> None:
        self.session = session
        self._store = store
        self._restore_state = restore_state
        self._deadline = time.monotonic() + undo_window
        self._restored = False

    @property
    def expired(self) -> bool:
        return time.monotonic() > self._deadline

    def restore(self) -> bool:
        """Put the store back as it was before the delete, inside the undo window."""
        if self._restored or self.expired:
            return False
        self._restored = True
        self._store._restore(self._restore_state, self.session)
        return True


class ChatStore:
    """Holds the sessions and the index of the current one."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        persister: JsonFilePersister | None = None,
        sync: ServerSyncAdapter | None = None,
        tasks: BackgroundTaskQueue | None = None,
        state: ChatState | None = None,
    ) -> None:
        self._config = config or AppConfig()
        self._persister = persister
        self._sync = sync
        self._tasks = tasks or BackgroundTaskQueue()
        if state is None and persister is not None:
            state = persister.load()
        self._state = state or ChatState(sessions=[self._empty_session()])

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def sessions(self) -> list[ChatSession]:
        return self._state.sessions

    @property
    def current_session_index(self) -> int:
        return self._state.current_session_index

    @property
    def tasks(self) -> BackgroundTaskQueue:
        return self._tasks

    @property
    def sync(self) -> ServerSyncAdapter | None:
        return self._sync

    def current_session(self) -> ChatSession:
        """The selected session; an out-of-range index is clamped first."""
        sessions = self._state.sessions
        index = self._state.current_session_index
        if index < 0 or index >= len(sessions):
            index = min(len(sessions) - 1, max(0, index))
            self._commit(self._state.model_copy(update={"current_session_index": index}))
        return self._state.sessions[index]

    def find_session(self, session_id: str) -> ChatSession | None:
        for session in self._state.sessions:
            if session.id == session_id:
                return session
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _empty_session(self) -> ChatSession:
        session = create_empty_session()
        session.mask.config = self._config.merged_model_config()
        return session

    def _commit(self, state: ChatState) -> None:
        self._state = state
        if self._persister is not None:
            try:
                self._persister.save(state)
            except OSError:
                logger.exception("Failed to persist chat state to %s", self._persister.path)

    def _set(self, sessions: list[ChatSession], current_index: int | None = None) -> None:
        update: dict[str, object] = {"sessions": sessions}
        if current_index is not None:
            update["current_session_index"] = current_index
        self._commit(self._state.model_copy(update=update))

    def _submit_remote(self, name: str, session_id: str, job: Callable) -> None:
        if self._sync is None:
            return
        self._tasks.submit(f"{name}:{session_id}", job)

    def _submit_sync(self, session: ChatSession) -> None:
        if self._sync is not None:
            sync = self._sync
            self._submit_remote("sync", session.id, lambda: sync.sync(session))

    def _restore(self, state: ChatState, session: ChatSession) -> None:
        self._commit(state)
        logger.info("Restored deleted session %s", session.id)
        if self._sync is not None:
            sync = self._sync
            self._submit_remote("restore", session.id, lambda: sync.restore(session))

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def new_session(self, mask: Mask | None = None) -> ChatSession:
        """Create a session (optionally from a mask) at index 0 and select it."""
        session = self._empty_session()
        if mask is not None:
            session.mask = mask.model_copy(
                deep=True, update={"config": self._config.merged_model_config(mask.config)}
            )
            session.topic = mask.name

        self._set([session, *self._state.sessions], 0)
        logger.info("Created session %s", session.id)
        if self._sync is not None:
            sync = self._sync
            self._submit_remote("create", session.id, lambda: sync.create(session))
        return session

    def fork_session(self) -> ChatSession:
        """Duplicate the current session's topic, messages and config as a new current session."""
        current = self.current_session()
        session = create_empty_session()
        session.topic = current.topic
        session.messages = [m.model_copy(deep=True) for m in current.messages]
        session.mask = current.mask.model_copy(deep=True)

        self._set([session, *self._state.sessions], 0)
        logger.info("Forked session %s into %s", current.id, session.id)
        return session

    def clear_sessions(self) -> None:
        self._set([self._empty_session()], 0)

    def replace_sessions(self, sessions: list[ChatSession]) -> None:
        """Replace the local state wholesale, e.g. with sessions loaded from the server."""
        self._set(list(sessions) or [self._empty_session()], 0)

    def select_session(self, index: int) -> None:
        """Select session *index*, clamped to the valid range."""
        index = max(0, min(index, len(self._state.sessions) - 1))
        self._commit(self._state.model_copy(update={"current_session_index": index}))

    def next_session(self, delta: int) -> None:
        n = len(self._state.sessions)
        self.select_session((self._state.current_session_index + delta) % n)

    def move_session(self, from_index: int, to_index: int) -> None:
        """Reorder a session; the current session stays selected across the move."""
        sessions = list(self._state.sessions)
        n = len(sessions)
        if not (0 <= from_index < n and 0 <= to_index < n) or from_index == to_index:
            return
        old_index = self._state.current_session_index

        session = sessions.pop(from_index)
        sessions.insert(to_index, session)

        new_index = to_index if old_index == from_index else old_index
        if from_index < old_index <= to_index:
            new_index -= 1
        elif to_index <= old_index < from_index:
            new_index += 1

        self._set(sessions, new_index)

    def delete_session(self, index: int) -> DeletedSession | None:
        """Remove a session and return an undo handle.

        Deleting the last remaining session replaces it with a fresh empty
        one, so the store is never empty.
        """
        sessions = self._state.sessions
        if index < 0 or index >= len(sessions):
            return None

        deleting_last = len(sessions) == 1
        deleted = sessions[index]
        restore_state = self._state

        remaining = [s for i, s in enumerate(sessions) if i != index]
        current = self._state.current_session_index
        next_index = min(current - int(index < current), len(remaining) - 1)
        if deleting_last:
            next_index = 0
            remaining.append(self._empty_session())

        self._set(remaining, next_index)
        logger.info("Deleted session %s", deleted.id)

        if self._sync is not None:
            sync = self._sync
            self._submit_remote("delete", deleted.id, lambda: sync.delete(deleted.id))
        return DeletedSession(self, deleted, restore_state, self._config.undo_window)

    # ------------------------------------------------------------------
    # Session content
    # ------------------------------------------------------------------

    def update_target_session(
        self,
        session: ChatSession,
        updater: SessionUpdater,
        sync: bool = True,
    ) -> ChatSession | None:
        """Apply *updater* to a copy of the session with the same id.

        Returns the updated session, or ``None`` if it no longer exists.
        """
        sessions = list(self._state.sessions)
        for i, candidate in enumerate(sessions):
            if candidate.id == session.id:
                break
        else:
            return None

        updated = candidate.model_copy(deep=True)
        updater(updated)
        updated.clamp_indices()
        sessions[i] = updated
        self._set(sessions)

        if sync:
            self._submit_sync(updated)
        return updated

    def update_message(
        self,
        session_index: int,
        message_index: int,
        updater: Callable[[ChatMessage], None],
    ) -> None:
        sessions = self._state.sessions
        if not 0 <= session_index < len(sessions):
            return
        session = sessions[session_index]
        if not 0 <= message_index < len(session.messages):
            return

        def apply(s: ChatSession) -> None:
            updater(s.messages[message_index])

        self.update_target_session(session, apply)

    def reset_session(self, session: ChatSession) -> ChatSession | None:
        """Clear messages and memory of *session*."""

        def apply(s: ChatSession) -> None:
            s.messages = []
            s.memory_prompt = ""
            s.last_summarize_index = 0
            s.clear_context_index = None

        return self.update_target_session(session, apply)

    def toggle_clear_context(self, session: ChatSession) -> ChatSession | None:
        """Hide every existing message from future context, or undo that."""

        def apply(s: ChatSession) -> None:
            if s.clear_context_index == len(s.messages):
                s.clear_context_index = None
            else:
                s.clear_context_index = len(s.messages)

        return self.update_target_session(session, apply)

    def append_messages(
        self, session: ChatSession, messages: list[ChatMessage], sync: bool = True
    ) -> ChatSession | None:
        def apply(s: ChatSession) -> None:
            s.messages = [*s.messages, *messages]
            s.last_update = time.time()

        return self.update_target_session(session, apply, sync=sync)

    def update_stat(self, message: ChatMessage, session: ChatSession) -> ChatSession | None:
        text = message_text_content(message)

        def apply(s: ChatSession) -> None:
            s.stat.char_count += len(text)
            s.stat.word_count += len(text.split())
            s.stat.token_count += estimate_tokens(text)

        return self.update_target_session(session, apply, sync=False)

    def set_last_input(self, last_input: str) -> None:
        self._commit(self._state.model_copy(update={"last_input": last_input}))
