from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from gatekeeper.core.identity import build_request_context
from gatekeeper.core.rate_limit import enforce_admission, get_admission_controller
from gatekeeper.schemas.limits import LimitsResponse, TierDescription
from gatekeeper.services.admission import AdmissionResult

router = APIRouter(tags=["Limits"])


@router.get("/limits", response_model=LimitsResponse)
async def describe_limits(
    request: Request,
    admission: Annotated[AdmissionResult, Depends(enforce_admission)],
) -> LimitsResponse:
    """Describe the admission tiers applying to the caller.

    The call itself is charged like any other request, so the returned
    ``remaining`` reflects it.
    """
    context = build_request_context(request)
    controller = get_admission_controller(request)
    tiers = [TierDescription(**tier) for tier in controller.composer.describe(context)]
    decision = admission.decision
    return LimitsResponse(
        authenticated=context.is_authenticated,
        subscription_tier=context.subscription_tier,
        tiers=tiers,
        limit=decision.limit if decision else None,
        remaining=decision.remaining if decision else None,
    )
