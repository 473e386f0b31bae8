"""FastAPI API endpoints under /api.

Endpoint groups: health, settings, credentials, the raw facade (story,
image, chat, cost), saves, and the game session (start, choice, chat,
load, budget, usage reset). Everything hangs off the Runtime stored on
app.state.
"""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from chronicle_weaver import config
from chronicle_weaver.dispatch import build_service
from chronicle_weaver.models import ImageQuality, ImageSize, NarrativeState, Provider, Tier

router = APIRouter()


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class StoryBody(BaseModel):
    prompt: str
    provider: str = Provider.GEMINI.value


class ImageBody(BaseModel):
    prompt: str
    style: str
    provider: str = Provider.GEMINI.value
    quality: ImageQuality = "standard"
    high_res: bool = False
    size: ImageSize = "1K"


class ChatBody(BaseModel):
    message: str
    context: NarrativeState
    provider: str = Provider.GEMINI.value


class CostBody(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    images: int = 0
    premium_images: int = 0
    provider: str = Provider.GEMINI.value
    tier: Tier = "base"


class SettingsBody(BaseModel):
    """Partial preferences update. Omitted fields keep their stored value."""

    budget_threshold: float | None = Field(default=None, gt=0)
    text_only: bool | None = None
    high_res: bool | None = None
    image_quality: ImageQuality | None = None
    image_size: ImageSize | None = None
    font_size: int | None = Field(default=None, gt=0)
    models: dict[str, dict[str, str]] | None = None


class CredentialBody(BaseModel):
    api_key: str


class StartBody(BaseModel):
    genre: str | None = None
    provider: str = Provider.GEMINI.value


class ChoiceBody(BaseModel):
    choice: str


class SessionChatBody(BaseModel):
    message: str


def _runtime(request: Request):
    return request.app.state.runtime


def _session_view(runtime) -> dict[str, Any]:
    session = runtime.session
    return {
        "saveId": session.save_id,
        "provider": session.provider.value,
        "gameState": session.state.to_json_dict() if session.state else None,
        "history": [h.to_json_dict() for h in session.history],
        "chatMessages": [m.to_json_dict() for m in session.chat_messages],
        "usageStats": session.usage_stats.to_json_dict(),
        "budget": session.budget_status(),
    }


# ---------------------------------------------------------------------------
# Health and settings
# ---------------------------------------------------------------------------

@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get stored preferences merged with defaults."""
    return config.get_config(_runtime(request).store)


@router.patch("/settings")
async def update_settings(request: Request, body: SettingsBody):
    """Update preferences (partial merge) and rewire the adapters."""
    runtime = _runtime(request)
    prefs = config.update_config(runtime.store, body.model_dump(exclude_none=True))
    runtime.session.preferences = prefs
    runtime.service = build_service(runtime.credential_source, prefs)
    runtime.session.service = runtime.service
    return prefs


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def _check_provider(provider: str) -> None:
    if provider not in {p.value for p in Provider}:
        raise HTTPException(404, f"Unknown provider: {provider}")


@router.get("/credentials/{provider}")
async def has_credential(request: Request, provider: str):
    """Whether an API key is stored for the provider. Never returns the key."""
    _check_provider(provider)
    return {"provider": provider, "present": _runtime(request).credentials.has(provider)}


@router.put("/credentials/{provider}")
async def set_credential(request: Request, provider: str, body: CredentialBody):
    """Store an API key; an empty key deletes it."""
    _check_provider(provider)
    credentials = _runtime(request).credentials
    credentials.set(provider, body.api_key)
    return {"provider": provider, "present": credentials.has(provider)}


@router.delete("/credentials/{provider}")
async def delete_credential(request: Request, provider: str):
    _check_provider(provider)
    _runtime(request).credentials.set(provider, "")
    return {"ok": True}


@router.delete("/credentials")
async def clear_credentials(request: Request):
    """Forget every stored API key."""
    _runtime(request).credentials.clear_all()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

@router.post("/story")
async def story(request: Request, body: StoryBody):
    """Generate one story beat."""
    response = await _runtime(request).service.generate_story_beat(body.prompt, body.provider)
    return response.to_json_dict()


@router.post("/image")
async def image(request: Request, body: ImageBody):
    """Render a scene. `data` is a data URL, a hosted URL, or null."""
    response = await _runtime(request).service.generate_image(
        body.prompt, body.style, body.provider, body.quality, body.high_res, body.size
    )
    return response.model_dump(mode="json", by_alias=True)


@router.post("/chat")
async def chat(request: Request, body: ChatBody):
    """One sidekick chat turn against an explicit game state."""
    response = await _runtime(request).service.get_chat_response(
        body.message, body.context, body.provider
    )
    return response.to_json_dict()


@router.post("/cost")
async def cost(request: Request, body: CostBody):
    """Estimate the cost of a usage increment."""
    estimated = _runtime(request).service.calculate_estimated_cost(
        body.input_tokens, body.output_tokens, body.images, body.premium_images,
        body.provider, body.tier,
    )
    return {"estimatedCost": estimated}


# ---------------------------------------------------------------------------
# Saves
# ---------------------------------------------------------------------------

@router.get("/saves")
async def list_saves(request: Request):
    """List all save slots, most recently started first."""
    return [slot.to_json_dict() for slot in _runtime(request).saves.list()]


@router.get("/saves/{slot_id}")
async def get_save(request: Request, slot_id: str):
    slot = _runtime(request).saves.get(slot_id)
    if slot is None:
        raise HTTPException(404, "Save not found")
    return slot.to_json_dict()


@router.delete("/saves/{slot_id}")
async def delete_save(request: Request, slot_id: str):
    """Delete a save slot. Deleting the active one ends the session."""
    if not _runtime(request).session.delete_save(slot_id):
        raise HTTPException(404, "Save not found")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Game session
# ---------------------------------------------------------------------------

@router.get("/game")
async def game(request: Request):
    """Current session snapshot."""
    return _session_view(_runtime(request))


@router.post("/game/start")
async def start_game(request: Request, body: StartBody):
    runtime = _runtime(request)
    await runtime.session.start(body.genre, body.provider)
    return _session_view(runtime)


@router.post("/game/choice")
async def make_choice(request: Request, body: ChoiceBody):
    runtime = _runtime(request)
    try:
        await runtime.session.make_choice(body.choice)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _session_view(runtime)


@router.post("/game/chat")
async def game_chat(request: Request, body: SessionChatBody):
    runtime = _runtime(request)
    try:
        reply = await runtime.session.send_chat(body.message)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"reply": reply, **_session_view(runtime)}


@router.post("/game/load/{slot_id}")
async def load_game(request: Request, slot_id: str):
    runtime = _runtime(request)
    if runtime.session.load(slot_id) is None:
        raise HTTPException(404, "Save not found")
    return _session_view(runtime)


@router.get("/game/budget")
async def budget(request: Request):
    session = _runtime(request).session
    return {
        "status": session.budget_status(),
        "estimatedCost": session.usage_stats.estimated_cost,
        "threshold": session.preferences.get("budget_threshold"),
    }


@router.post("/game/usage/reset")
async def reset_usage(request: Request):
    """Zero the session's usage meter."""
    runtime = _runtime(request)
    runtime.session.reset_usage()
    return _session_view(runtime)
