"""Slab contour and marker detection endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from services.detection_service import DetectionService
from slab_geometry2d.calibration import DEFAULT_X_DISTANCE, DEFAULT_Y_DISTANCE

router = APIRouter()


class XYPoint(BaseModel):
    x: float
    y: float


class MarkerIn(BaseModel):
    x: float
    y: float
    role: Optional[str] = None
    confidence: float = 1.0


def markers_payload(markers: Optional[List[MarkerIn]]) -> Optional[List[Dict[str, Any]]]:
    if not markers:
        return None
    return [{"x": m.x, "y": m.y, "role": m.role, "confidence": m.confidence} for m in markers]


class ContourDetectionRequest(BaseModel):
    imageBase64: str
    seed: Optional[XYPoint] = None
    backgroundSample: Optional[XYPoint] = None
    markers: Optional[List[MarkerIn]] = None
    xDistance: float = DEFAULT_X_DISTANCE
    yDistance: float = DEFAULT_Y_DISTANCE
    config: Optional[Dict[str, Any]] = None


class ContourDetectionResult(BaseModel):
    detected: bool
    strategy: Optional[str] = None
    reason: Optional[str] = None
    pixelContour: List[XYPoint] = []
    realContour: List[XYPoint] = []
    calibration: Dict[str, Any] = {}
    diagnostics: Dict[str, Any] = {}
    overlayBase64: Optional[str] = None


class ContourDetectionResponse(BaseModel):
    success: bool
    data: Optional[ContourDetectionResult] = None
    error: Optional[str] = None


class MarkerDetectionRequest(BaseModel):
    imageBase64: str
    config: Optional[Dict[str, Any]] = None


class MarkerDetectionResult(BaseModel):
    markers: List[Dict[str, Any]] = []
    imageWidth: int
    imageHeight: int


class MarkerDetectionResponse(BaseModel):
    success: bool
    data: Optional[MarkerDetectionResult] = None
    error: Optional[str] = None


@router.post("/contour", response_model=ContourDetectionResponse)
async def detect_contour(request: ContourDetectionRequest):
    """Detect the slab outline, falling back to a synthetic shape when nothing validates."""
    try:
        service = DetectionService()
        payload = await service.detect(
            image_base64=request.imageBase64,
            seed=(request.seed.x, request.seed.y) if request.seed else None,
            markers=markers_payload(request.markers),
            x_distance=request.xDistance,
            y_distance=request.yDistance,
            config=request.config,
            background_sample=(
                (request.backgroundSample.x, request.backgroundSample.y) if request.backgroundSample else None
            ),
        )
        return ContourDetectionResponse(success=True, data=ContourDetectionResult(**payload))
    except Exception as e:
        print(f"[api] contour detection failed: {e}")
        return ContourDetectionResponse(success=False, error=str(e))


@router.post("/markers", response_model=MarkerDetectionResponse)
async def detect_markers(request: MarkerDetectionRequest):
    """Find reference marker candidates and assign their roles."""
    try:
        service = DetectionService()
        payload = await service.find_markers(image_base64=request.imageBase64, config=request.config)
        return MarkerDetectionResponse(success=True, data=MarkerDetectionResult(**payload))
    except Exception as e:
        print(f"[api] marker detection failed: {e}")
        return MarkerDetectionResponse(success=False, error=str(e))
