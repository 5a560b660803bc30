from fastapi import HTTPException, Request, status

from app.services.billing import BillingEngine


def get_engine(request: Request) -> BillingEngine:
    """Return the billing engine created in the application lifespan."""
    engine = getattr(request.app.state, "billing", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing engine is not running",
        )
    return engine
