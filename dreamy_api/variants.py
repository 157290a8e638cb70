"""
Per-endpoint job configuration.

The generate, mesh and chat routes all drive the same JobProxy routine; what
differs between them is the remote model, the default job parameters merged
under the caller's, the identity fields the caller may not override, and the
polling schedule.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel

from .config import Settings

MESH_DEFAULTS: Dict[str, Any] = {
    "texture_size": 2048,
    "mesh_simplify": 0.9,
    "generate_model": True,
    "save_gaussian_ply": True,
    "ss_sampling_steps": 38,
}


class JobVariant(BaseModel):
    name: str
    model: str
    defaults: Dict[str, Any] = {}
    deadline: float = 120.0
    poll_interval: float = 2.0
    wait: Optional[int] = None

    def with_model(self, model: Optional[str]) -> "JobVariant":
        if not model:
            return self
        return self.model_copy(update={"model": model})


def build_input(
    variant: JobVariant,
    params: Optional[Dict[str, Any]] = None,
    locked: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Defaults first, then caller params, then identity fields that always win."""
    merged: Dict[str, Any] = dict(variant.defaults)
    merged.update(params or {})
    merged.update(locked or {})
    return merged


def mesh_locked_fields(image_url: str) -> Dict[str, Any]:
    return {"images": [image_url], "generate_model": True}


def build_variants(settings: Settings) -> Dict[str, JobVariant]:
    return {
        "generate": JobVariant(
            name="generate",
            model=settings.image_model,
            deadline=settings.image_deadline,
            poll_interval=settings.poll_interval,
        ),
        "mesh": JobVariant(
            name="mesh",
            model=settings.mesh_model,
            defaults=MESH_DEFAULTS,
            deadline=settings.mesh_deadline,
            poll_interval=settings.poll_interval,
        ),
        "chat": JobVariant(
            name="chat",
            model=settings.chat_model,
            wait=settings.chat_wait,
        ),
    }
