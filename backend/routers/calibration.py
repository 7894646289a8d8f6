"""Calibration frame, point conversion and rectification endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from routers.detection import MarkerIn, XYPoint, markers_payload
from services.detection_service import DetectionService
from slab_geometry2d.calibration import DEFAULT_X_DISTANCE, DEFAULT_Y_DISTANCE

router = APIRouter()


class CalibrationFrameRequest(BaseModel):
    markers: List[MarkerIn] = []
    xDistance: float = DEFAULT_X_DISTANCE
    yDistance: float = DEFAULT_Y_DISTANCE
    imageWidth: int = 0
    imageHeight: int = 0


class CalibrationFrameResult(BaseModel):
    calibration: Dict[str, Any]
    events: List[Dict[str, str]] = []


class CalibrationFrameResponse(BaseModel):
    success: bool
    data: Optional[CalibrationFrameResult] = None
    error: Optional[str] = None


class ConvertPointsRequest(CalibrationFrameRequest):
    points: List[XYPoint] = []
    direction: str = "toReal"


class ConvertPointsResult(BaseModel):
    points: List[XYPoint]
    model: str


class ConvertPointsResponse(BaseModel):
    success: bool
    data: Optional[ConvertPointsResult] = None
    error: Optional[str] = None


class RectifyRequest(BaseModel):
    imageBase64: str
    markers: List[MarkerIn] = []
    xDistance: float = DEFAULT_X_DISTANCE
    yDistance: float = DEFAULT_Y_DISTANCE
    pixelsPerUnit: Optional[float] = None


class RectifyResult(BaseModel):
    imageBase64: str
    width: int
    height: int
    pixelsPerUnit: float
    calibration: Dict[str, Any]


class RectifyResponse(BaseModel):
    success: bool
    data: Optional[RectifyResult] = None
    error: Optional[str] = None


@router.post("/frame", response_model=CalibrationFrameResponse)
async def build_frame(request: CalibrationFrameRequest):
    """Build the best calibration frame the markers allow."""
    try:
        service = DetectionService()
        payload = service.build_frame(
            markers_payload(request.markers) or [],
            request.xDistance,
            request.yDistance,
            (request.imageWidth, request.imageHeight),
        )
        return CalibrationFrameResponse(success=True, data=CalibrationFrameResult(**payload))
    except Exception as e:
        print(f"[api] calibration failed: {e}")
        return CalibrationFrameResponse(success=False, error=str(e))


@router.post("/convert", response_model=ConvertPointsResponse)
async def convert_points(request: ConvertPointsRequest):
    """Convert points between pixel and real-world coordinates."""
    try:
        service = DetectionService()
        payload = service.convert_points(
            markers_payload(request.markers) or [],
            request.xDistance,
            request.yDistance,
            [{"x": p.x, "y": p.y} for p in request.points],
            request.direction,
            (request.imageWidth, request.imageHeight),
        )
        return ConvertPointsResponse(success=True, data=ConvertPointsResult(**payload))
    except Exception as e:
        print(f"[api] point conversion failed: {e}")
        return ConvertPointsResponse(success=False, error=str(e))


@router.post("/rectify", response_model=RectifyResponse)
async def rectify_image(request: RectifyRequest):
    """Warp the photo into a top-down view of the marker rectangle."""
    try:
        service = DetectionService()
        payload = await service.rectify(
            image_base64=request.imageBase64,
            markers=markers_payload(request.markers) or [],
            x_distance=request.xDistance,
            y_distance=request.yDistance,
            pixels_per_unit=request.pixelsPerUnit,
        )
        return RectifyResponse(success=True, data=RectifyResult(**payload))
    except Exception as e:
        print(f"[api] rectification failed: {e}")
        return RectifyResponse(success=False, error=str(e))
