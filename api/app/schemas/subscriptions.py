from pydantic import BaseModel


class SubscribeRequest(BaseModel):
    email: str
    type: str | None = None
    country: str | None = None


class UnsubscribeRequest(BaseModel):
    email: str
    type: str | None = None


class SubscriberOut(BaseModel):
    email: str
    country: str = ""
    channels: list[str] | None = None
    unsubscribed: bool = False


class SubscribeOut(BaseModel):
    success: bool = True
    message: str
    subscriber: SubscriberOut


class UnsubscribeOut(BaseModel):
    success: bool = True
    subscriber: SubscriberOut
