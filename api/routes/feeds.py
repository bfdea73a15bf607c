from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_scheduler
from api.schemas import FeedStatusResponse, RefreshResponse
from application.services import RateRefreshScheduler
from domain.models.results import FetchError

router = APIRouter(prefix='/api/feeds', tags=['feeds'])


@router.get(
	'',
	response_model=list[FeedStatusResponse],
	status_code=status.HTTP_200_OK,
	summary='Refresh state of every registered feed',
)
async def list_feeds(
	scheduler: Annotated[RateRefreshScheduler, Depends(get_scheduler)],
) -> list[FeedStatusResponse]:
	return [
		FeedStatusResponse(
			**feed,
			priority=scheduler.registry.priority(feed['provider_id']),
			cached_records=scheduler.store.record_count(feed['provider_id']),
		)
		for feed in scheduler.status()
	]


@router.post(
	'/{provider_id}/refresh',
	response_model=RefreshResponse,
	status_code=status.HTTP_200_OK,
	summary='Fetch one feed now',
)
async def refresh_feed(
	provider_id: str,
	scheduler: Annotated[RateRefreshScheduler, Depends(get_scheduler)],
) -> RefreshResponse:
	outcome = await scheduler.refresh_now(provider_id)
	if outcome is None:
		raise HTTPException(
			status_code=status.HTTP_409_CONFLICT, detail=f'{provider_id} is already fetching'
		)

	return RefreshResponse(
		provider_id=outcome.provider_id,
		state=outcome.state.value,
		next_due=outcome.next_due,
		committed=outcome.commit.total if outcome.commit else None,
		error=outcome.result.cause if isinstance(outcome.result, FetchError) else None,
	)
