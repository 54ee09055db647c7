from pydantic import BaseModel


class StartResponse(BaseModel):
    """Schema for an accepted dispatch."""

    message: str
    status: str
    requestID: str


class CallbackResponse(BaseModel):
    status: str
    requestID: str
