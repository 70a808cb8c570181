from fastapi import HTTPException, Request, status

from discom_dashboard.services.session import DashboardSession, SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


async def get_dashboard_session(session_id: str, request: Request) -> DashboardSession:
    session = await get_registry(request).get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Dashboard session not found"
        )
    return session
