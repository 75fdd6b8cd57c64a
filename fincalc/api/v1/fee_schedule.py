"""Court-fee schedule and fee calculation endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from fincalc.api.dependencies import get_fee_data_manager, get_request_id
from fincalc.api.v1.schemas import (
    CacheStatusResponse,
    FeeCalculationRequest,
    FeeCalculationResponse,
    FeeScheduleResponse,
    FreshnessResponse,
)
from fincalc.domain.exceptions import InvalidAmountError
from fincalc.domain.fees import apply_exemption, calculate_fee, find_exemption_by_id
from fincalc.domain.models import CourtType
from fincalc.services.fee_data import FeeDataManager

logger = logging.getLogger(__name__)

router = APIRouter()


# Fixed paths are declared before /fee-schedule/{court_type} so they are not captured by it
@router.get("/fee-schedule/freshness", response_model=FreshnessResponse)
def get_freshness(manager: FeeDataManager = Depends(get_fee_data_manager)):
    """How long ago the fee tables were last updated, with a warning once they are stale"""
    return FreshnessResponse.model_validate(manager.check_data_freshness())


@router.get("/fee-schedule/status", response_model=CacheStatusResponse)
async def get_status(manager: FeeDataManager = Depends(get_fee_data_manager)):
    statistics = await manager.get_cache_statistics()
    version = manager.get_data_version_info()
    return CacheStatusResponse(
        version=version.version,
        checksum=version.checksum,
        offline_mode=manager.is_in_offline_mode(),
        is_offline_ready=statistics.is_offline_ready,
        schedules_count=statistics.schedules_count,
        exemptions_count=statistics.exemptions_count,
        last_cache_update=statistics.last_cache_update,
        data_valid=manager.validate_data_integrity(),
    )


@router.get("/fee-schedule/{court_type}", response_model=FeeScheduleResponse)
async def get_fee_schedule(court_type: CourtType, manager: FeeDataManager = Depends(get_fee_data_manager)):
    """Current schedule for a court type; always answers, falling back to cached or static tables"""
    schedule = await manager.get_current_schedule(court_type)
    return FeeScheduleResponse(
        court_type=schedule.court_type,
        version=schedule.version,
        last_updated=schedule.last_updated,
        rules=schedule.rules,
        offline_mode=manager.is_in_offline_mode(),
    )


@router.post("/fee/calculate", response_model=FeeCalculationResponse)
async def calculate(
    request_body: FeeCalculationRequest,
    request: Request,
    manager: FeeDataManager = Depends(get_fee_data_manager),
):
    """
    Filing fee for a claim amount.

    An optional exemption must exist and apply to the requested court type.
    """
    request_id = get_request_id(request)

    exemption = None
    if request_body.exemption_id:
        exemption = find_exemption_by_id(request_body.exemption_id)
        if exemption is None:
            raise HTTPException(status_code=404, detail=f"Unknown exemption: {request_body.exemption_id}")
        if request_body.court_type not in exemption.applicable_courts:
            raise HTTPException(status_code=422, detail="Exemption does not apply to this court type")

    schedule = await manager.get_current_schedule(request_body.court_type)
    try:
        calculation = calculate_fee(request_body.amount, schedule)
    except InvalidAmountError as e:
        logger.warning(f"Invalid claim amount: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    if exemption is not None:
        calculation = apply_exemption(calculation, exemption)

    return FeeCalculationResponse.model_validate(calculation)
