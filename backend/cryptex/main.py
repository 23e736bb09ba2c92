import logging

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cryptex.auth.dependencies import authenticate_token
from cryptex.auth_routers import auth_core_router
from cryptex.config import settings
from cryptex.database import async_session_maker, init_db
from cryptex.exceptions import AppError, RateLimitError
from cryptex.middleware import DatetimeTimezoneMiddleware, SecurityHeadersMiddleware
from cryptex.routers import (
    account_router,
    admin_router,
    market_data_router,
    notifications_router,
    portfolio_router,
    positions_router,
    settings_router,
    trade_router,
)
from cryptex.services.tpsl_service import TpSlMonitor
from cryptex.services.websocket_manager import ws_manager

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cryptex")

app.add_middleware(DatetimeTimezoneMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Server-side TP/SL sweep; clients also trigger it via /api/positions/check-tp-sl
tpsl_monitor = TpSlMonitor(check_interval_seconds=settings.tpsl_monitor_interval_seconds)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


app.include_router(auth_core_router.router)  # Signup, login, refresh, logout
app.include_router(market_data_router.router)
app.include_router(trade_router.router)
app.include_router(positions_router.router)
app.include_router(portfolio_router.router)
app.include_router(settings_router.router)
app.include_router(account_router.router)
app.include_router(notifications_router.router)
app.include_router(admin_router.router)


@app.get("/api/health")
async def health():
    return {"ok": True}


@app.on_event("startup")
async def startup_event():
    logger.info("Initializing database...")
    await init_db()

    if settings.tpsl_monitor_enabled:
        await tpsl_monitor.start()
    else:
        logger.info("TP/SL monitor disabled - relying on client polling")

    logger.info("Startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down...")
    await tpsl_monitor.stop()


# WebSocket for real-time notifications (token passed as ?token=<access jwt>)
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        async with async_session_maker() as db:
            user = await authenticate_token(token, db)
            user_id = user.id
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await ws_manager.connect(websocket, user_id)
    try:
        while True:
            # Clients only listen; anything they send is a keepalive
            await websocket.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket, user_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
