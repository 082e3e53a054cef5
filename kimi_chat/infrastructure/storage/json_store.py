import json
import os
import shutil
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from kimi_chat.config.settings import settings
from kimi_chat.domain.conversation import (
    ConversationStore,
    Conversation,
    MessageRecord,
    MessageRole,
    normalize_title,
)
from kimi_chat.domain.exceptions import StoreError


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """基于本地文件的会话存储。

    目录结构：<root>/conversations/<conversation_id>/{meta.json, messages.jsonl}
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def create_conversation(self, title: str, user_id: Optional[str] = None) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        cdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        conv = Conversation(id=cid, title=normalize_title(title), created_at=now, updated_at=now, user_id=user_id)
        self._write_meta(cdir, conv)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_root / conversation_id / "meta.json"
        if not meta_path.exists():
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return self._to_conversation(data)

    def list_conversations(self) -> List[Conversation]:
        """按 updated_at 倒序返回，最近活跃的会话在前。"""
        items: List[Conversation] = []
        for cdir in self._conv_root.glob("*/"):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError):
                continue
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def touch_conversation(self, conversation_id: str) -> None:
        conv = self.get_conversation(conversation_id)
        conv.updated_at = datetime.now(timezone.utc)
        self._write_meta(self._conv_root / conversation_id, conv)

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))

    def create_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        is_thinking: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        conv = self.get_conversation(conversation_id)
        message = MessageRecord(
            id=f"m-{uuid4().hex}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            is_thinking=is_thinking,
            created_at=datetime.now(timezone.utc),
            metadata=dict(metadata or {}),
        )
        cdir = self._conv_root / conversation_id
        try:
            payload = asdict(message)
            payload["created_at"] = _to_iso(message.created_at)
            line = json.dumps(payload, ensure_ascii=False, default=str)
            with (cdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        conv.updated_at = message.created_at
        self._write_meta(cdir, conv)
        return message

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        """按 created_at 升序返回。"""
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[MessageRecord] = []
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_message(json.loads(line)))
            except (ValueError, KeyError):
                continue
        items.sort(key=lambda m: m.created_at)
        return items

    def delete_message(self, message_id: str) -> None:
        for cdir in self._conv_root.glob("*/"):
            msgs_path = cdir / "messages.jsonl"
            if not msgs_path.exists():
                continue
            lines = msgs_path.read_text(encoding="utf-8").splitlines()
            kept = [line for line in lines if self._line_id(line) != message_id]
            if len(kept) == len(lines):
                continue
            tmp_path = cdir / f"messages.{uuid4().hex}.jsonl.tmp"
            try:
                tmp_path.write_text("".join(line + "\n" for line in kept), encoding="utf-8")
                os.replace(tmp_path, msgs_path)
            except OSError as e:
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
            return
        raise StoreError(code="MESSAGE_NOT_FOUND", message=message_id, http_status=404)

    @staticmethod
    def _line_id(line: str) -> Optional[str]:
        try:
            return json.loads(line).get("id")
        except ValueError:
            return None

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "title": conv.title,
            "created_at": _to_iso(conv.created_at),
            "updated_at": _to_iso(conv.updated_at),
            "user_id": conv.user_id,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=normalize_title(data.get("title")),
            created_at=_from_iso(data["created_at"]),
            updated_at=_from_iso(data["updated_at"]),
            user_id=data.get("user_id"),
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            is_thinking=bool(data.get("is_thinking", False)),
            created_at=_from_iso(data["created_at"]),
            metadata=data.get("metadata") or {},
        )
