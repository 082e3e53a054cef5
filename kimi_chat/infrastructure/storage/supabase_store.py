"""Supabase (PostgREST) 会话存储。

使用两张表：

- conversations(id, title, created_at, updated_at, user_id)
- messages(id, conversation_id, role, content, is_thinking, created_at, metadata)

所有请求都走 {supabase_url}/rest/v1/<table>，以 anon key 作为 apikey 与 Bearer token。
写请求带 ``Prefer: return=representation``，以便拿回数据库生成的 id 与时间戳。
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from kimi_chat.domain.conversation import (
    ConversationStore,
    Conversation,
    MessageRecord,
    MessageRole,
    normalize_title,
)
from kimi_chat.domain.exceptions import StoreError, ValidationError


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class SupabaseConversationStore(ConversationStore):
    def __init__(self, settings, http_client: Optional[httpx.Client] = None):
        url = getattr(settings, "supabase_url", None)
        key = getattr(settings, "supabase_anon_key", None)
        if not url or not key:
            raise ValidationError(code="MISSING_SUPABASE_CONFIG", message="SUPABASE_URL / SUPABASE_ANON_KEY not set")
        self._rest_url = f"{url.rstrip('/')}/rest/v1"
        self._key = key
        self._timeout = getattr(settings, "http_timeout", 30.0)
        self._http_client = http_client

    # ---- conversations ----

    def list_conversations(self) -> List[Conversation]:
        rows = self._request("GET", "conversations", params={"select": "*", "order": "updated_at.desc"})
        return [self._to_conversation(r) for r in rows]

    def create_conversation(self, title: str, user_id: Optional[str] = None) -> Conversation:
        row: Dict[str, Any] = {"title": normalize_title(title)}
        if user_id:
            row["user_id"] = user_id
        rows = self._request("POST", "conversations", json=[row], returning=True)
        return self._to_conversation(self._single(rows, "conversations"))

    def get_conversation(self, conversation_id: str) -> Conversation:
        rows = self._request("GET", "conversations", params={"select": "*", "id": f"eq.{conversation_id}"})
        if not rows:
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        return self._to_conversation(rows[0])

    def touch_conversation(self, conversation_id: str) -> None:
        self._request(
            "PATCH",
            "conversations",
            params={"id": f"eq.{conversation_id}"},
            json={"updated_at": datetime.now(timezone.utc).isoformat()},
        )

    def delete_conversation(self, conversation_id: str) -> None:
        self._request("DELETE", "conversations", params={"id": f"eq.{conversation_id}"})

    # ---- messages ----

    def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        rows = self._request(
            "GET",
            "messages",
            params={"select": "*", "conversation_id": f"eq.{conversation_id}", "order": "created_at.asc"},
        )
        return [self._to_message(r) for r in rows]

    def create_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        is_thinking: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        row = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "is_thinking": is_thinking,
            "metadata": dict(metadata or {}),
        }
        rows = self._request("POST", "messages", json=[row], returning=True)
        return self._to_message(self._single(rows, "messages"))

    def delete_message(self, message_id: str) -> None:
        self._request("DELETE", "messages", params={"id": f"eq.{message_id}"})

    # ---- helpers ----

    def _headers(self, returning: bool) -> Dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
        }
        if returning:
            headers["Prefer"] = "return=representation"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        returning: bool = False,
    ) -> List[Dict[str, Any]]:
        url = f"{self._rest_url}/{table}"
        headers = self._headers(returning)
        try:
            if self._http_client is not None:
                resp = self._http_client.request(method, url, params=params, json=json, headers=headers)
            else:
                with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                    resp = client.request(method, url, params=params, json=json, headers=headers)
        except httpx.RequestError as e:
            raise StoreError(code="STORE_NETWORK_ERROR", message=str(e)) from e
        if resp.status_code >= 400:
            code = "STORE_READ_ERROR" if method == "GET" else "STORE_WRITE_ERROR"
            raise StoreError(code=code, message=resp.text, http_status=resp.status_code, table=table)
        if not resp.content:
            return []
        try:
            data = resp.json()
        except ValueError as e:
            raise StoreError(code="STORE_READ_ERROR", message=f"Invalid JSON from {table}: {e}") from e
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _single(rows: List[Dict[str, Any]], table: str) -> Dict[str, Any]:
        if not rows:
            raise StoreError(code="STORE_WRITE_ERROR", message=f"Insert into {table} returned no row")
        return rows[0]

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=str(data["id"]),
            title=normalize_title(data.get("title")),
            created_at=_from_iso(data["created_at"]),
            updated_at=_from_iso(data.get("updated_at") or data["created_at"]),
            user_id=data.get("user_id"),
        )

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=str(data["id"]),
            conversation_id=str(data["conversation_id"]),
            role=data["role"],
            content=data.get("content") or "",
            is_thinking=bool(data.get("is_thinking", False)),
            created_at=_from_iso(data["created_at"]),
            metadata=data.get("metadata") or {},
        )
