"""Response envelope schema shared by every endpoint."""

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Generic {success, message, data, errors} wrapper."""

    success: bool = True
    message: str = ""
    data: Optional[T] = None
    errors: List[str] = Field(default_factory=list)
