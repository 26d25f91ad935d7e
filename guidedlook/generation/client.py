"""Clients for the downstream image generation and virtual try-on services."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import GenerationTimeout, InsufficientCredits, ProviderFailure

logger = logging.getLogger(__name__)

_CREDIT_ERROR_CODES = {"DAILY_BUDGET_LIMIT", "INSUFFICIENT_CREDITS"}


class GenerationClient(Protocol):
    """Protocol for generation service backends.

    Implementations return an image reference on success and raise one of
    ``GenerationTimeout``, ``InsufficientCredits`` or ``ProviderFailure``.
    """

    async def generate_image(
        self,
        prompt: str,
        style_preferences: Optional[Dict[str, Any]] = None,
        authorization: Optional[str] = None,
    ) -> str:
        """Render a product image for ``prompt``."""

    async def try_on(
        self,
        selfie_ref: str,
        garment_ref: str,
        slot: str,
        authorization: Optional[str] = None,
    ) -> str:
        """Render ``garment_ref`` worn on ``selfie_ref`` in ``slot``."""


class HttpGenerationClient:
    """Call the generation services over HTTP with ``httpx``."""

    def __init__(
        self,
        base_url: str,
        image_path: str = "/functions/v1/generate-fashion-image",
        tryon_path: str = "/functions/v1/virtual-try-on",
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.image_path = image_path
        self.tryon_path = tryon_path
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: Dict[str, Any], authorization: Optional[str]) -> Dict[str, Any]:
        headers = {"Authorization": authorization} if authorization else {}
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise GenerationTimeout(f"Request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise ProviderFailure(f"Transport error calling {path}: {exc}", retryable=True) from exc

        if response.status_code == 402:
            raise InsufficientCredits(f"{path} rejected the request: insufficient credits")
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderFailure(f"{path} answered {response.status_code}", retryable=True)
        if response.status_code >= 400:
            raise ProviderFailure(f"{path} answered {response.status_code}: {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderFailure(f"{path} returned a non-JSON body", retryable=True) from exc
        if not isinstance(payload, dict):
            raise ProviderFailure(f"{path} returned an unexpected payload", retryable=True)
        if payload.get("error_code") in _CREDIT_ERROR_CODES:
            raise InsufficientCredits(str(payload.get("error") or payload["error_code"]))
        return payload

    async def generate_image(
        self,
        prompt: str,
        style_preferences: Optional[Dict[str, Any]] = None,
        authorization: Optional[str] = None,
    ) -> str:
        body: Dict[str, Any] = {"prompt": prompt}
        if style_preferences:
            body["style_preferences"] = style_preferences
        payload = await self._post(self.image_path, body, authorization)
        image_ref = payload.get("image_url")
        if not payload.get("success") or not image_ref:
            raise ProviderFailure(str(payload.get("error") or "No se pudo generar la prenda"), retryable=True)
        logger.debug(f"Image generated with model {payload.get('model_used')}")
        return image_ref

    async def try_on(
        self,
        selfie_ref: str,
        garment_ref: str,
        slot: str,
        authorization: Optional[str] = None,
    ) -> str:
        body = {
            "userImage": selfie_ref,
            "slots": {slot: garment_ref},
            "preset": "mirror_selfie",
            "quality": "pro",
            "keepPose": True,
            "useFaceReferences": True,
            "view": "front",
            "slotFits": {slot: "regular"},
        }
        payload = await self._post(self.tryon_path, body, authorization)
        result = payload.get("resultImage") or payload.get("image")
        if not result:
            raise ProviderFailure("No se pudo generar el probador virtual con esa selfie.")
        return result
