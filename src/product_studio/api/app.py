from __future__ import annotations

import io
import json
import logging
import zipfile
from typing import Any

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response

from product_studio.config import settings
from product_studio.editing.models import PercentCrop
from product_studio.editing.session import EditorSession, SessionRegistry, Tool, Upload
from product_studio.errors import ImageDecodeError, NotFoundError, ProviderError, SessionBusyError, StudioError
from product_studio.presets import (
    ASPECT_RATIOS,
    ENHANCEMENT_PRESETS,
    TONES,
    aspect_ratio_by_name,
    enhancement_preset_by_name,
)
from product_studio.providers.base import DescriptionProvider, ImageEditProvider
from product_studio.providers.gemini_provider import GeminiProvider
from product_studio.storage import Product, ProductStore

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {"image/png", "image/jpeg", "image/webp"}

app = FastAPI(title="product_studio")

store = ProductStore()
sessions = SessionRegistry()


def get_store() -> ProductStore:
    return store


def get_sessions() -> SessionRegistry:
    return sessions


def get_gemini() -> GeminiProvider:
    if not settings.gemini_api_key:
        raise HTTPException(status_code=400, detail="GEMINI_API_KEY is not set")
    return GeminiProvider(api_key=settings.gemini_api_key)


def _status_for(exc: StudioError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, SessionBusyError):
        return 409
    if isinstance(exc, ProviderError):
        return 502
    return 400


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"detail": exc.message})


def _parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_points(raw: str) -> list[tuple[float, float]]:
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"points must be a JSON list: {exc}") from exc
    if not isinstance(parsed, list):
        raise HTTPException(status_code=400, detail="points must be a JSON list")
    out: list[tuple[float, float]] = []
    for item in parsed:
        try:
            if isinstance(item, dict):
                out.append((float(item["x"]), float(item["y"])))
            else:
                x, y = item
                out.append((float(x), float(y)))
        except (KeyError, TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"invalid point {item!r}") from exc
    return out


async def _read_uploads(files: list[UploadFile]) -> list[Upload]:
    out: list[Upload] = []
    for f in files:
        content = await f.read()
        if not content:
            continue
        mime_type = (f.content_type or "").lower()
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ImageDecodeError(f"Unsupported file type '{mime_type or 'unknown'}' for {f.filename}.")
        out.append(Upload(filename=f.filename or "image", mime_type=mime_type, content=content))
    return out


def _product_dict(product: Product) -> dict[str, Any]:
    return {
        "product_id": product.product_id,
        "name": product.name,
        "product_info": product.product_info,
        "tone": product.tone,
        "description": product.description,
        "created_at": product.created_at,
        "images": [
            {"asset_id": a.asset_id, "filename": a.filename, "url": f"/products/{product.product_id}/assets/{a.asset_id}"}
            for a in product.images
        ],
    }


def _load_product_images(product_store: ProductStore, product: Product) -> list[Upload]:
    out: list[Upload] = []
    for asset in product.images:
        path = product_store.abs_asset_path(product.product_id, asset)
        if not path.exists():
            logger.warning("product %s: missing image file %s", product.product_id, asset.rel_path)
            continue
        out.append(Upload(filename=asset.filename, mime_type="image/png", content=path.read_bytes()))
    return out


def _png(data: bytes) -> Response:
    return Response(content=data, media_type="image/png")


# --- catalogue ---


@app.get("/presets")
def presets():
    return {
        "aspect_ratios": [{"name": a.name, "ratio": a.ratio} for a in ASPECT_RATIOS],
        "enhancements": [{"name": p.name, "prompt": p.prompt} for p in ENHANCEMENT_PRESETS],
        "tones": list(TONES),
    }


@app.post("/products")
def create_product(
    name: str = Form(...),
    product_info: str = Form(""),
    tone: str = Form("professional"),
    product_store: ProductStore = Depends(get_store),
):
    product = product_store.create_product(name=name, product_info=product_info, tone=tone)
    return _product_dict(product)


@app.get("/products")
def list_products(product_store: ProductStore = Depends(get_store)):
    return [_product_dict(p) for p in product_store.list_products()]


@app.get("/products/{product_id}")
def get_product(product_id: str, product_store: ProductStore = Depends(get_store)):
    return _product_dict(product_store.read_product(product_id))


@app.post("/products/{product_id}/delete")
def delete_product(product_id: str, product_store: ProductStore = Depends(get_store)):
    product_store.read_product(product_id)
    product_store.delete_product(product_id)
    return {"deleted": product_id}


@app.put("/products/{product_id}/info")
def update_product_info(
    product_id: str,
    product_info: str | None = Form(None),
    tone: str | None = Form(None),
    product_store: ProductStore = Depends(get_store),
):
    return _product_dict(product_store.update_info(product_id, product_info=product_info, tone=tone))


@app.get("/products/{product_id}/assets/{asset_id}")
def get_product_asset(product_id: str, asset_id: str, product_store: ProductStore = Depends(get_store)):
    asset = product_store.get_asset(product_id, asset_id)
    path = product_store.abs_asset_path(product_id, asset)
    if not path.exists():
        raise HTTPException(status_code=404, detail="asset file missing")
    return FileResponse(path)


@app.post("/products/{product_id}/description/generate")
async def generate_description(
    product_id: str,
    product_store: ProductStore = Depends(get_store),
    provider: DescriptionProvider = Depends(get_gemini),
):
    product = product_store.read_product(product_id)
    if not product.images:
        raise HTTPException(status_code=400, detail="Please save an image first to use as a reference.")
    first = product.images[0]
    image = product_store.abs_asset_path(product_id, first).read_bytes()
    description = await provider.generate_description(image, "image/png", product.product_info, product.tone)
    product = product_store.write_description(product_id, description)
    return {"description": product.description}


@app.post("/products/{product_id}/description/enhance")
async def enhance_description(
    product_id: str,
    product_store: ProductStore = Depends(get_store),
    provider: DescriptionProvider = Depends(get_gemini),
):
    product = product_store.read_product(product_id)
    if not product.description.strip():
        raise HTTPException(status_code=400, detail="There is no description to enhance yet.")
    enhanced = await provider.enhance_description(product.description)
    product = product_store.write_description(product_id, enhanced)
    return {"description": product.description}


@app.put("/products/{product_id}/description")
def update_description(
    product_id: str,
    description: str = Form(""),
    product_store: ProductStore = Depends(get_store),
):
    product = product_store.write_description(product_id, description)
    return {"description": product.description}


@app.get("/products/{product_id}/description", response_class=PlainTextResponse)
def copy_description(product_id: str, product_store: ProductStore = Depends(get_store)):
    return PlainTextResponse(product_store.read_product(product_id).description)


# --- editor sessions ---


@app.post("/sessions")
async def open_session(
    product_id: str = Form(""),
    files: list[UploadFile] | None = File(None),
    product_store: ProductStore = Depends(get_store),
    registry: SessionRegistry = Depends(get_sessions),
):
    product_id = product_id.strip() or None
    uploads = await _read_uploads(files or [])
    if product_id:
        product = product_store.read_product(product_id)
        if not uploads:
            uploads = _load_product_images(product_store, product)

    session = EditorSession(product_id=product_id)
    session.load_initial(uploads)
    registry.open(session)
    return session.to_dict()


@app.get("/sessions/{session_id}")
def get_session(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    return registry.get(session_id).to_dict()


@app.delete("/sessions/{session_id}")
def close_session(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    registry.get(session_id)
    registry.close(session_id)
    return {"closed": session_id}


@app.post("/sessions/{session_id}/images")
async def add_session_images(
    session_id: str,
    files: list[UploadFile] = File(...),
    registry: SessionRegistry = Depends(get_sessions),
):
    session = registry.get(session_id)
    session.add_images(await _read_uploads(files))
    return session.to_dict()


@app.post("/sessions/{session_id}/images/{image_id}/delete")
def remove_session_image(session_id: str, image_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.remove_image(image_id)
    return session.to_dict()


@app.post("/sessions/{session_id}/select/{image_id}")
def select_image(session_id: str, image_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.select(image_id)
    return session.to_dict()


@app.post("/sessions/{session_id}/tool")
def select_tool(session_id: str, tool: str = Form(""), registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    try:
        chosen = Tool(tool) if tool else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"unknown tool '{tool}'") from exc
    session.select_tool(chosen)
    return session.to_dict()


@app.get("/sessions/{session_id}/images/{image_id}/preview")
def preview_image(
    session_id: str,
    image_id: str,
    compare: str = "",
    registry: SessionRegistry = Depends(get_sessions),
):
    session = registry.get(session_id)
    return _png(session.preview_png(image_id, compare=compare == "original"))


@app.get("/sessions/{session_id}/images/{image_id}/mask")
def get_mask(session_id: str, image_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    img = next((i for i in session.images if i.image_id == image_id), None)
    if img is None:
        raise NotFoundError("Image not found.")
    if not img.mask:
        raise HTTPException(status_code=404, detail="image has no mask")
    return _png(img.mask)


@app.put("/sessions/{session_id}/crop")
def set_crop(
    session_id: str,
    x: float = Form(...),
    y: float = Form(...),
    width: float = Form(...),
    height: float = Form(...),
    registry: SessionRegistry = Depends(get_sessions),
):
    session = registry.get(session_id)
    session.set_crop(PercentCrop(x=x, y=y, width=width, height=height))
    return session.to_dict()


@app.post("/sessions/{session_id}/crop/aspect")
def set_aspect_ratio(session_id: str, name: str = Form(...), registry: SessionRegistry = Depends(get_sessions)):
    aspect = aspect_ratio_by_name(name)
    if aspect is None:
        raise HTTPException(status_code=400, detail=f"unknown aspect ratio '{name}'")
    session = registry.get(session_id)
    session.apply_aspect_ratio(aspect)
    return session.to_dict()


@app.post("/sessions/{session_id}/crop/confirm")
def confirm_crop(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.confirm_crop()
    return session.to_dict()


@app.post("/sessions/{session_id}/crop/cancel")
def cancel_crop(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.cancel_crop()
    return session.to_dict()


@app.post("/sessions/{session_id}/adjust/begin")
def begin_adjust(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.begin_adjust()
    return session.to_dict()


@app.put("/sessions/{session_id}/adjust")
def set_adjustment(
    session_id: str,
    name: str = Form(...),
    value: float = Form(...),
    registry: SessionRegistry = Depends(get_sessions),
):
    session = registry.get(session_id)
    session.set_adjustment(name, value)
    return session.to_dict()


@app.post("/sessions/{session_id}/adjust/reset/{name}")
def reset_adjustment(session_id: str, name: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.reset_adjustment(name)
    return session.to_dict()


@app.post("/sessions/{session_id}/adjust/confirm")
def confirm_adjustments(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.confirm_adjustments()
    return session.to_dict()


@app.post("/sessions/{session_id}/adjust/cancel")
def cancel_adjustments(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.cancel_adjustments()
    return session.to_dict()


@app.post("/sessions/{session_id}/mask/strokes")
def add_mask_stroke(
    session_id: str,
    points: str = Form(...),
    canvas_width: int = Form(...),
    canvas_height: int = Form(...),
    brush_size: int | None = Form(None),
    erase: str = Form(""),
    registry: SessionRegistry = Depends(get_sessions),
):
    session = registry.get(session_id)
    drawn = session.apply_mask_stroke(
        _parse_points(points),
        (canvas_width, canvas_height),
        brush_size=brush_size,
        erase=_parse_bool(erase),
    )
    return session.to_dict() | {"drawn": drawn}


@app.post("/sessions/{session_id}/mask/clear")
def clear_mask(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.clear_mask()
    return session.to_dict()


@app.post("/sessions/{session_id}/generate")
async def generate_edit(
    session_id: str,
    prompt: str = Form(""),
    registry: SessionRegistry = Depends(get_sessions),
    provider: ImageEditProvider = Depends(get_gemini),
):
    session = registry.get(session_id)
    session.provider = provider
    await session.generate(prompt)
    return session.to_dict()


@app.post("/sessions/{session_id}/enhance")
async def enhance_image(
    session_id: str,
    preset: str = Form(""),
    prompt: str = Form(""),
    registry: SessionRegistry = Depends(get_sessions),
    provider: ImageEditProvider = Depends(get_gemini),
):
    if preset:
        chosen = enhancement_preset_by_name(preset)
        if chosen is None:
            raise HTTPException(status_code=400, detail=f"unknown enhancement preset '{preset}'")
        prompt = chosen.prompt
    session = registry.get(session_id)
    session.provider = provider
    await session.enhance(prompt)
    return session.to_dict()


@app.get("/sessions/{session_id}/enhance/pending")
def pending_enhancement(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    if session.pending_enhancement is None:
        raise HTTPException(status_code=404, detail="no pending enhancement")
    return _png(session.pending_enhancement)


@app.post("/sessions/{session_id}/enhance/confirm")
def confirm_enhancement(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.confirm_enhancement()
    return session.to_dict()


@app.post("/sessions/{session_id}/enhance/cancel")
def cancel_enhancement(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.cancel_enhancement()
    return session.to_dict()


@app.post("/sessions/{session_id}/undo")
def undo(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.undo()
    return session.to_dict()


@app.post("/sessions/{session_id}/redo")
def redo(session_id: str, registry: SessionRegistry = Depends(get_sessions)):
    session = registry.get(session_id)
    session.redo()
    return session.to_dict()


@app.post("/sessions/{session_id}/save")
def save_session(
    session_id: str,
    product_store: ProductStore = Depends(get_store),
    registry: SessionRegistry = Depends(get_sessions),
):
    session = registry.get(session_id)
    if not session.images:
        raise HTTPException(status_code=400, detail="There are no images to save.")
    exports = session.export()

    if session.product_id:
        product_store.replace_images(session.product_id, exports)
        registry.close(session_id)
        return _product_dict(product_store.read_product(session.product_id))

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for i, data in enumerate(exports):
            zf.writestr(f"image-{i + 1}.png", data)
    registry.close(session_id)
    return Response(
        content=buf.getvalue(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="session_{session_id}.zip"'},
    )


def main() -> None:
    import uvicorn

    uvicorn.run("product_studio.api.app:app", host=settings.host, port=settings.port)
