"""Gateway selection API."""

from fastapi import APIRouter, Depends, Request

from payhub.container import CoreServices
from payhub.schemas import GatewayCandidateOut, GatewaySelectionOut, GatewaySelectRequest
from payhub.services.gateway_matcher import SelectionCriteria
from payhub.services.gateway_selector import pick_best

router = APIRouter(prefix="/gateways", tags=["gateways"])


def get_services(request: Request) -> CoreServices:
    return request.app.state.services


@router.post("/select", response_model=GatewaySelectionOut)
async def select_gateway(data: GatewaySelectRequest, services: CoreServices = Depends(get_services)):
    criteria = SelectionCriteria(
        amount=data.amount,
        currency=data.currency,
        payment_method=data.payment_method,
        country=data.country,
    )
    ranked = await services.selector.select_gateways(criteria)
    best = pick_best(ranked, data.preferred)
    return GatewaySelectionOut(
        best=GatewayCandidateOut.from_candidate(best) if best else None,
        candidates=[GatewayCandidateOut.from_candidate(c) for c in ranked],
    )
