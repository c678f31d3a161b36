import logging

import httpx

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1/convai"


class ConvAIClient:
    """REST access to the conversational AI vendor.

    Artifact fetches never raise: a missing transcript or summary only
    thins out the post-call report.
    """

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.agent_id = agent_id
        self._headers = {"xi-api-key": api_key}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._client.aclose()

    async def _get_json(self, path: str, label: str, **params) -> dict | None:
        try:
            resp = await self._client.get(
                f"{ELEVENLABS_API_BASE}{path}",
                params=params or None,
                headers=self._headers,
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            logger.warning("%s returned %s", label, e.response.status_code)
            return None
        except Exception as e:
            logger.warning("%s failed: %s", label, e)
            return None

    async def get_signed_url(self) -> str | None:
        body = await self._get_json(
            "/conversation/get_signed_url",
            "Signed URL request",
            agent_id=self.agent_id,
        )
        if not body or not body.get("signed_url"):
            return None
        return body["signed_url"]

    async def fetch_transcript(self, conversation_id: str) -> dict | None:
        if not conversation_id:
            return None
        return await self._get_json(
            f"/conversation/{conversation_id}/transcript",
            f"Transcript fetch for {conversation_id}",
        )

    async def fetch_summary(self, conversation_id: str) -> dict | None:
        if not conversation_id:
            return None
        return await self._get_json(
            f"/conversation/{conversation_id}/summary",
            f"Summary fetch for {conversation_id}",
        )
