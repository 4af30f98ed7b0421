from __future__ import annotations

from typing import Optional

import structlog

from ..storage.models import ApiType, BillingInfo
from .base import to_float
from .openai_compat import OpenAICompatibleAdapter


logger = structlog.get_logger(__name__)


class VoApiAdapter(OpenAICompatibleAdapter):
    """VOAPI: OpenAI model listing, account info behind a dashboard JWT.

    The JWT is stored in the site's billing auth value and sent raw in
    ``Authorization``. Balances are already in dollars.
    """

    api_type = ApiType.VOAPI

    async def fetch_billing(self) -> Optional[BillingInfo]:
        if not self.site.billing_auth_value_enc:
            logger.warning("No JWT configured for VOAPI billing", site_id=self.site.id, site_name=self.site.name)
            return None

        jwt = self.codec.decrypt(self.site.billing_auth_value_enc)
        resp = await self.request_json(
            "GET",
            self.endpoint("api/user/info"),
            headers=self.headers(Authorization=jwt),
            timeout=self.settings.billing_timeout,
        )
        payload = resp.data if isinstance(resp.data, dict) else {}
        user = payload.get("data")
        if payload.get("code") != 0 or not isinstance(user, dict):
            raise self.malformed("Invalid user info response", resp)

        balance = (to_float(user.get("bindBalance")) or 0.0) + (to_float(user.get("basicBalance")) or 0.0)
        used = (to_float(user.get("usedBindBalance")) or 0.0) + (to_float(user.get("usedBasicBalance")) or 0.0)
        return BillingInfo(limit=balance, usage=used)
