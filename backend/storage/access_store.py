# storage/access_store.py
# ============================================================================
# TSF SHOP — ACCESS RECORDS & SESSION MARKERS
# ============================================================================
# access:<token>               -> AccessRecord (written once, never changed)
# access_session:<session_id>  -> SessionMarker (SET NX, the commit point)
# ============================================================================

from typing import Optional

from schemas.fulfillment import AccessRecord, SessionMarker
from storage.kv_store import IKeyValueStore


class AccessStore:
    def __init__(self, kv: IKeyValueStore, key_prefix: str = "tsf:"):
        self._kv = kv
        self._prefix = key_prefix

    def record_key(self, token: str) -> str:
        return f"{self._prefix}access:{token}"

    def marker_key(self, session_id: str) -> str:
        return f"{self._prefix}access_session:{session_id}"

    async def save_record(self, record: AccessRecord) -> bool:
        return await self._kv.set_json_if_absent(
            self.record_key(record.token), record.model_dump(mode="json")
        )

    async def get_record(self, token: str) -> Optional[dict]:
        """Stored record verbatim, or None."""
        return await self._kv.get_json(self.record_key(token))

    async def get_marker(self, session_id: str) -> Optional[SessionMarker]:
        raw = await self._kv.get_json(self.marker_key(session_id))
        if raw is None:
            return None
        return SessionMarker.model_validate(raw)

    async def commit_marker(self, session_id: str, marker: SessionMarker) -> bool:
        """True when this call created the marker, False if one already existed."""
        return await self._kv.set_json_if_absent(
            self.marker_key(session_id), marker.model_dump(mode="json", by_alias=True)
        )
