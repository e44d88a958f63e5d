"""Screenshot regression result models."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class DiffResult(BaseModel):
    """Pixel comparison of a capture against its baseline."""
    match: bool
    diff_pixels: int = 0
    total_pixels: int = 0
    diff_percentage: float = 0.0
    diff_image: Optional[bytes] = Field(default=None, repr=False)  # PNG
    dimension_mismatch: bool = False
    baseline_size: Optional[tuple[int, int]] = None
    current_size: Optional[tuple[int, int]] = None


class ComparisonOutcome(BaseModel):
    type: Literal["disabled", "baseline", "comparison", "error"]
    key: Optional[str] = None
    is_new: bool = False
    path: Optional[str] = None
    match: Optional[bool] = None
    diff_pixels: int = 0
    diff_percentage: float = 0.0
    dimension_mismatch: bool = False
    diff_path: Optional[str] = None
    error: Optional[str] = None
    message: str = ""

    @property
    def is_mismatch(self) -> bool:
        return self.type == "comparison" and self.match is False
