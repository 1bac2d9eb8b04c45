from typing import Annotated, Generic, List, TypeVar

from pydantic import BaseModel, BeforeValidator

T = TypeVar("T")

ObjectIdStr = Annotated[str, BeforeValidator(str)]


class ResponseMixin:
    """Response schemas subclass the domain model and expose `_id` as `id`."""

    @classmethod
    def from_model(cls, model: BaseModel):
        return cls.model_validate(model.model_dump())


class Envelope(BaseModel, Generic[T]):
    status: str = "success"
    data: T


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int
    pages: int


class FailureEnvelope(BaseModel):
    status: str = "fail"
    message: str
    error: str
