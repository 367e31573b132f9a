from dataclasses import dataclass
from typing import Dict, Tuple, Union


@dataclass(frozen=True)
class NormalizedRect:
    """
    Box in normalized image coordinates (top-left origin, y grows downward).
    """

    x: float
    y: float
    w: float
    h: float


@dataclass(frozen=True)
class Detection:
    """
    Generic detection representation shared by every decoder.
    """

    detected_class: str
    confidence: float
    box: NormalizedRect

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.box.x, self.box.y, self.box.w, self.box.h

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        b = self.box
        return b.x, b.y, b.x + b.w, b.y + b.h

    def center(self) -> Tuple[float, float]:
        b = self.box
        return b.x + b.w / 2, b.y + b.h / 2

    def to_dict(self) -> Dict[str, Union[str, float, Dict[str, float]]]:
        b = self.box
        return {
            "detectedClass": self.detected_class,
            "confidence": self.confidence,
            "box": {"x": b.x, "y": b.y, "w": b.w, "h": b.h},
        }


@dataclass(frozen=True)
class Classification:
    label: str
    confidence: float
