from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas.subscriptions import (
    SubscribeOut,
    SubscribeRequest,
    SubscriberOut,
    UnsubscribeOut,
    UnsubscribeRequest,
)
from app.services.publisher import Publisher, get_publisher
from app.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
    normalize_channel,
)

router = APIRouter()

CHANNEL_LABELS = {"job": "Job Alerts", "blog": "Blog Alerts"}


@router.post("", response_model=SubscribeOut)
async def subscribe(payload: SubscribeRequest, publisher: Publisher = Depends(get_publisher)) -> SubscribeOut:
    try:
        subscription = await publisher.subscribe(email=payload.email, channel=payload.type, country=payload.country)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SubscribeOut(
        message=f"Subscribed to {CHANNEL_LABELS[normalize_channel(payload.type)]}!",
        subscriber=SubscriberOut(**subscription),
    )


@router.post("/unsubscribe", response_model=UnsubscribeOut)
async def unsubscribe(payload: UnsubscribeRequest, repository=Depends(get_repository)) -> UnsubscribeOut:
    try:
        subscription = await repository.unsubscribe(email=payload.email, channel=payload.type)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return UnsubscribeOut(subscriber=SubscriberOut(**subscription))
