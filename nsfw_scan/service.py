# nsfw_scan/service.py
import os
import base64
import logging
import httpx

from typing import List, Optional
from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from nsfw_scan.classifier import Classifier
from nsfw_scan.config import load_policy, settings
from nsfw_scan.errors import AlreadyRunning, DeletionFailed, InvalidInput
from nsfw_scan.events import ScanItem, SessionSnapshot
from nsfw_scan.inference import ModelLoader
from nsfw_scan.orchestrator import ScanOrchestrator
from nsfw_scan.photo_source import DirectoryPhotoSource
from nsfw_scan.preprocess import image_from_bytes
from nsfw_scan.result_store import ResultStore

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("nsfw-scan")
app = FastAPI(title="nsfw-scan", version="0.1.0")

# -------------
# Collaborators
# -------------
policy = load_policy(settings.policy_file)
model = ModelLoader(settings.model_path, settings.model_threads)
classifier = Classifier(model, policy)
source = DirectoryPhotoSource(settings.photo_dir, recursive=settings.photo_recursive)
store = ResultStore(source, settings.secure_dir)
orchestrator = ScanOrchestrator(
    source,
    classifier,
    store=store,
    preview_size=settings.preview_size,
    thumbnail_size=settings.thumbnail_size,
)


# -----------
# Schemas
# -----------
class PredictionOut(BaseModel):
    verdict: bool
    confidence: float
    label: str
    probabilities: List[float]


class ItemOut(BaseModel):
    index: int
    id: str
    asset: str
    confidence: float
    selected: bool
    has_thumbnail: bool


class ScanOut(BaseModel):
    state: str
    total: int
    processed: int
    progress: float
    matches: int


class MoveOut(BaseModel):
    moved: List[str]
    written: List[str]
    failed: List[str]


def _item_out(index: int, item: ScanItem) -> ItemOut:
    return ItemOut(
        index=index,
        id=item.id,
        asset=item.asset.identifier,
        confidence=item.confidence,
        selected=item.selected,
        has_thumbnail=item.thumbnail is not None,
    )


def _scan_out(snap: SessionSnapshot) -> ScanOut:
    return ScanOut(
        state=snap.state.value,
        total=snap.total,
        processed=snap.processed,
        progress=snap.progress,
        matches=len(snap.matches),
    )


# -----------
# Routes
# -----------
@app.get("/health")
def health():
    return {
        "ok": True,
        "model_loaded": model.is_loaded,
        "model_error": model.loading_error,
    }


@app.post("/predict/image", response_model=PredictionOut)
async def predict_image(
    file: UploadFile | None = File(None),
    image_b64: str | None = Form(None),
    image_url: str | None = Form(None),
):
    if not model.is_loaded:
        raise HTTPException(status_code=503, detail="model not loaded")

    # Get bytes from one of the supported inputs
    data: Optional[bytes] = None
    if file is not None:
        data = await file.read()
    elif image_b64:
        try:
            data = base64.b64decode(image_b64)
        except Exception:
            raise HTTPException(status_code=400, detail="invalid base64")
    elif image_url:
        try:
            async with httpx.AsyncClient(timeout=10.0, follow_redirects=True) as cx:
                r = await cx.get(image_url)
                r.raise_for_status()
                data = r.content
        except httpx.HTTPError:
            raise HTTPException(status_code=400, detail="failed to fetch image_url")
    else:
        raise HTTPException(status_code=400, detail="provide file or image_b64 or image_url")

    try:
        img = image_from_bytes(data)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = await run_in_threadpool(classifier.classify, img)
    if result.error:
        raise HTTPException(status_code=500, detail=result.error)
    return PredictionOut(
        verdict=result.verdict,
        confidence=result.confidence,
        label=result.label,
        probabilities=list(result.probabilities),
    )


@app.post("/scan", response_model=ScanOut)
def start_scan():
    try:
        orchestrator.start()
    except AlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _scan_out(orchestrator.snapshot())


@app.post("/scan/cancel", response_model=ScanOut)
def cancel_scan():
    orchestrator.cancel()
    return _scan_out(orchestrator.snapshot())


@app.get("/scan", response_model=ScanOut)
def scan_status():
    return _scan_out(orchestrator.snapshot())


@app.get("/results", response_model=List[ItemOut])
def results():
    return [_item_out(i, item) for i, item in enumerate(store.items())]


@app.post("/results/{index}/toggle", response_model=ItemOut)
def toggle(index: int):
    try:
        store.toggle(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _item_out(index, store.items()[index])


@app.post("/results/select_all")
def select_all():
    store.select_all()
    return {"selected": len(store.selected())}


@app.post("/results/deselect_all")
def deselect_all():
    store.deselect_all()
    return {"selected": 0}


@app.post("/results/delete")
def delete_selected():
    items = store.selected()
    try:
        store.delete(items)
    except DeletionFailed as e:
        raise HTTPException(status_code=502, detail=f"deletion failed: {e}")
    return {"deleted": len(items), "remaining": len(store)}


@app.post("/results/move", response_model=MoveOut)
def move_selected():
    try:
        report = store.move_to_secure_location(store.selected())
    except DeletionFailed as e:
        raise HTTPException(status_code=502, detail=f"files copied but originals not deleted: {e}")
    return MoveOut(
        moved=[item.asset.identifier for item in report.moved],
        written=[str(p) for p in report.written],
        failed=[str(f) for f in report.failed],
    )


# -----
# Main
# -----
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 9000)))
