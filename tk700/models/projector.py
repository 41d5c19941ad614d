from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

Direction = Literal["up", "down"]

class ApiResponse(BaseModel):
    error: Optional[str] = None
    data: Any = None

class PowerRequest(BaseModel):
    on: bool

class VolumeRequest(BaseModel):
    level: int = Field(..., ge=0)

class PictureModeRequest(BaseModel):
    mode: str = Field(
        ..., min_length=1, max_length=16, pattern=r"^[A-Za-z0-9]+$",
        description="e.g. bright, living, game, cine, user1",
    )

class BrightnessRequest(BaseModel):
    direction: Optional[Direction] = None
    value: Optional[int] = Field(None, ge=0)

class ValueRequest(BaseModel):
    value: int = Field(..., ge=0)
