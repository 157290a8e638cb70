from typing import Any, Dict, Optional, Tuple

import httpx


def split_model(model: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (owner/name, version) for a model identifier.

    "owner/name" targets the model's latest deployment, "owner/name:version"
    and a bare version hash pin a specific version.
    """
    if ":" in model:
        name, version = model.split(":", 1)
        return name or None, version
    if "/" in model:
        return model, None
    return None, model


class RemoteJobService:
    """Thin client for a predictions-style remote job API."""

    def __init__(self, client: httpx.AsyncClient, credential: Optional[str], timeout: float = 15.0):
        self._client = client
        self._credential = credential
        self._timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._credential}",
            "Content-Type": "application/json",
        }

    async def create(self, model: str, job_input: Dict[str, Any], wait: Optional[int] = None) -> httpx.Response:
        name, version = split_model(model)
        headers = self._headers()
        timeout = httpx.Timeout(self._timeout)
        if wait:
            headers["Prefer"] = f"wait={wait}"
            # the remote holds the response open for up to `wait` seconds
            timeout = httpx.Timeout(self._timeout, read=wait + self._timeout)

        if version is None:
            return await self._client.post(
                f"models/{name}/predictions",
                json={"input": job_input},
                headers=headers,
                timeout=timeout,
            )
        return await self._client.post(
            "predictions",
            json={"version": version, "input": job_input},
            headers=headers,
            timeout=timeout,
        )

    async def fetch(self, job_id: str) -> httpx.Response:
        return await self._client.get(
            f"predictions/{job_id}",
            headers={"Authorization": f"Bearer {self._credential}"},
            timeout=self._timeout,
        )

    async def download(self, url: str) -> httpx.Response:
        # output files live on a CDN, the credential is not forwarded there
        return await self._client.get(url, timeout=self._timeout, follow_redirects=True)
