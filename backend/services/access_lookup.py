# services/access_lookup.py
# ============================================================================
# TSF SHOP — ACCESS LOOKUP
# ============================================================================
# token -> stored access record, returned verbatim. The token is the only
# credential; there is no expiry and no per-email check.
# ============================================================================

from typing import Optional

import structlog

from errors import NotFoundError, ValidationError
from storage.access_store import AccessStore

logger = structlog.get_logger(component="access_lookup")


class AccessLookupService:
    def __init__(self, access: AccessStore):
        self.access = access

    async def lookup(self, token: Optional[str]) -> dict:
        if not token:
            raise ValidationError("Missing token")
        record = await self.access.get_record(token)
        if record is None:
            # never log the token itself
            logger.info("access_token_unknown", token_length=len(token))
            raise NotFoundError("Access not found")
        return record
