"""
Dependencies for FastAPI routes.
"""

from fastapi import HTTPException, Request, status

from app.services.coordinator import AccessCoordinator


def get_coordinator(request: Request) -> AccessCoordinator:
    """Coordinator built in the application lifespan."""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Coordinator not initialized",
        )
    return coordinator
