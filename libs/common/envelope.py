"""Success envelope for non-OAuth endpoints: ``{"data": ...}``."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataEnvelope(BaseModel, Generic[T]):
    data: T
