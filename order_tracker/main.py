"""
FastAPI Application Entry Point

Restaurant Order Tracker - order lifecycle with real-time fan-out.

Endpoints:
    - POST   /api/orders: Place an order from the cart
    - GET    /api/orders: List orders visible to the caller
    - GET    /api/orders/{id}: Get one order
    - PATCH  /api/orders/{id}: Lifecycle transition (state, courier, ETA)
    - DELETE /api/orders/{id}: Soft delete (admin)
    - GET    /api/notifications: Inbox of the caller
    - GET    /api/admin/stats: Dashboard aggregates
    - WS     /ws: Real-time channel
    - GET    /health: System health check

Version: 1.0.0
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from order_tracker.core.config import get_settings, setup_logging
from order_tracker.core.exceptions import (
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    OrderTrackerError,
)
from order_tracker.database import async_session_maker, engine, get_db, init_db
from order_tracker.models import DeliveryType, OrderState, Role
from order_tracker.schemas import (
    CourierLocation,
    CourierResponse,
    CourierUpdate,
    DashboardStats,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    NotificationListResponse,
    NotificationResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderPatch,
    OrderResponse,
    OrderUpdateResponse,
    SessionResponse,
)
from order_tracker.services.auth import (
    SessionUser,
    authenticate,
    create_token,
    current_session,
    require_role,
    verify_token,
)
from order_tracker.services.notifications import NotificationDispatcher, NotificationInbox
from order_tracker.services.orders import CourierStore, OrderLifecycleEngine, OrderStore
from order_tracker.services.realtime import BaseRealtimeChannel, create_realtime_channel
from order_tracker.services.realtime.base import build_message

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# SERVICE WIRING
# =============================================================================

def install_services(
    app: FastAPI,
    channel: BaseRealtimeChannel,
    session_maker: async_sessionmaker = async_session_maker,
) -> None:
    """Build the channel-dependent services and attach them to ``app.state``."""
    dispatcher = NotificationDispatcher(channel)
    app.state.realtime = channel
    app.state.dispatcher = dispatcher
    app.state.lifecycle = OrderLifecycleEngine(dispatcher, settings)
    app.state.session_maker = session_maker


def get_lifecycle(request: Request) -> OrderLifecycleEngine:
    return request.app.state.lifecycle


def get_realtime(request: Request) -> BaseRealtimeChannel:
    return request.app.state.realtime


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    channel = create_realtime_channel(settings)
    await channel.start()
    install_services(app, channel)
    logger.info(f"✅ Real-time Channel: {channel.provider_name}")

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await channel.stop()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant order management with an order lifecycle state machine "
        "and real-time fan-out to customers, couriers and administrators."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
        "realtime": "/ws",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    channel: BaseRealtimeChannel = Depends(get_realtime),
) -> HealthResponse:
    """Verify the database and the real-time channel are operational."""

    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    realtime_status = "healthy" if await channel.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, realtime_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        realtime=realtime_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

@app.post(
    "/api/auth/login",
    response_model=LoginResponse,
    responses=ERROR_RESPONSES,
    tags=["Auth"],
)
async def login(
    credentials: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Exchange credentials for a session cookie (and bearer token)."""
    user = await authenticate(db, credentials.email, credentials.password)
    token = create_token(user, settings)

    response.set_cookie(
        settings.session_cookie_name,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=60 * 60 * 24 * settings.session_expire_days,
        path="/",
    )
    logger.info(f"🔑 {user.role.value} #{user.id} logged in")

    return LoginResponse(
        token=token,
        user=SessionResponse(id=user.id, name=user.name, role=user.role),
    )


@app.get("/api/auth/me", response_model=SessionResponse, responses=ERROR_RESPONSES, tags=["Auth"])
async def me(user: SessionUser = Depends(require_role())) -> SessionResponse:
    return SessionResponse(id=user.id, name=user.name, role=user.role)


@app.post("/api/auth/logout", tags=["Auth"])
async def logout(response: Response) -> dict[str, Any]:
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"success": True, "message": "Logged out"}


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    session: Optional[SessionUser] = Depends(current_session),
    lifecycle: OrderLifecycleEngine = Depends(get_lifecycle),
) -> OrderCreateResponse:
    """
    Place an order from the cart.

    Guests may order; the order is then not linked to any customer account
    and nobody but administrators is notified about it.
    """
    logger.info(f"Creating order for: {order_data.contact_name}")

    order = await lifecycle.place_order(
        db,
        order_data,
        customer_id=session.id if session else None,
    )

    return OrderCreateResponse(
        message="Order placed successfully!",
        order=OrderResponse.model_validate(order),
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.order_list_limit, ge=1, le=settings.order_list_limit),
    order_state: Optional[OrderState] = Query(None),
    delivery_type: Optional[DeliveryType] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role()),
) -> OrderListResponse:
    """
    Newest-first live orders.

    Customers see their own orders, couriers the orders assigned to them,
    administrators everything.
    """
    scope: dict[str, int] = {}
    if user.role == Role.CUSTOMER:
        scope["customer_id"] = user.id
    elif user.role == Role.COURIER:
        courier = await CourierStore(db).get_by_user(user.id)
        if courier is None:
            return OrderListResponse(total=0, orders=[])
        scope["courier_id"] = courier.id

    total, orders = await OrderStore(db).find(
        **scope,
        order_state=order_state,
        delivery_type=delivery_type,
        skip=skip,
        limit=limit,
    )

    return OrderListResponse(
        total=total,
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    session: Optional[SessionUser] = Depends(current_session),
) -> OrderResponse:
    """Get a specific order by ID. Tombstoned orders are not found."""
    order = await OrderStore(db).get(order_id)

    # Customers and guests only ever see their own orders
    if session is None or session.role == Role.CUSTOMER:
        owner = session.id if session else None
        if order.customer_id != owner:
            raise NotFoundError(f"Order #{order_id} not found")

    return OrderResponse.model_validate(order)


@app.patch(
    "/api/orders/{order_id}",
    response_model=OrderUpdateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Update Order State / Courier / ETA",
)
async def update_order(
    order_id: int,
    patch: OrderPatch,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role(Role.ADMINISTRATOR, Role.COURIER)),
    lifecycle: OrderLifecycleEngine = Depends(get_lifecycle),
) -> OrderUpdateResponse:
    """Apply a lifecycle transition and fan the change out."""
    order = await lifecycle.transition(db, order_id, patch, actor=user)

    return OrderUpdateResponse(
        message="Order updated successfully",
        order=OrderResponse.model_validate(order),
    )


@app.delete(
    "/api/orders/{order_id}",
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def delete_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role(Role.ADMINISTRATOR)),
    lifecycle: OrderLifecycleEngine = Depends(get_lifecycle),
) -> dict[str, Any]:
    """Soft delete: the row stays, flagged with deleted_at."""
    await lifecycle.delete(db, order_id)
    return {"success": True, "message": "Order deleted successfully"}


@app.post(
    "/api/orders/{order_id}/restore",
    response_model=OrderUpdateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def restore_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role(Role.ADMINISTRATOR)),
    lifecycle: OrderLifecycleEngine = Depends(get_lifecycle),
) -> OrderUpdateResponse:
    order = await lifecycle.restore(db, order_id)
    return OrderUpdateResponse(
        message="Order restored successfully",
        order=OrderResponse.model_validate(order),
    )


# =============================================================================
# COURIER ENDPOINTS
# =============================================================================

@app.get(
    "/api/couriers",
    response_model=list[CourierResponse],
    responses=ERROR_RESPONSES,
    tags=["Couriers"],
)
async def list_couriers(
    is_available: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role(Role.ADMINISTRATOR)),
) -> list[CourierResponse]:
    couriers = await CourierStore(db).list_all(is_available=is_available)
    return [CourierResponse.model_validate(c) for c in couriers]


@app.patch(
    "/api/couriers/{courier_id}",
    response_model=CourierResponse,
    responses=ERROR_RESPONSES,
    tags=["Couriers"],
)
async def update_courier(
    courier_id: int,
    update: CourierUpdate,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role(Role.ADMINISTRATOR, Role.COURIER)),
) -> CourierResponse:
    """Toggle availability / on-duty flags. Couriers may only toggle their own."""
    store = CourierStore(db)
    courier = await store.get(courier_id)
    if user.role == Role.COURIER and courier.user_id != user.id:
        raise ForbiddenError("Couriers can only update their own availability")

    values = update.model_dump(exclude_none=True)
    if not values:
        raise InvalidRequestError("No fields to update")

    courier = await store.update(courier_id, values)
    return CourierResponse.model_validate(courier)


# =============================================================================
# NOTIFICATION INBOX ENDPOINTS
# =============================================================================

@app.get(
    "/api/notifications",
    response_model=NotificationListResponse,
    responses=ERROR_RESPONSES,
    tags=["Notifications"],
)
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role()),
) -> NotificationListResponse:
    """Durable inbox. Clients re-fetch this after reconnecting."""
    inbox = NotificationInbox(db)
    notifications = await inbox.list_for_user(user.id, unread_only=unread_only, limit=limit)
    return NotificationListResponse(
        unread=await inbox.unread_count(user.id),
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
    )


@app.patch(
    "/api/notifications/{notification_id}/read",
    response_model=NotificationResponse,
    responses=ERROR_RESPONSES,
    tags=["Notifications"],
)
async def read_notification(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role()),
) -> NotificationResponse:
    notification = await NotificationInbox(db).mark_read(user.id, notification_id)
    return NotificationResponse.model_validate(notification)


@app.post(
    "/api/notifications/read-all",
    responses=ERROR_RESPONSES,
    tags=["Notifications"],
)
async def read_all_notifications(
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role()),
) -> dict[str, Any]:
    updated = await NotificationInbox(db).mark_all_read(user.id)
    return {"success": True, "updated": updated}


# =============================================================================
# DASHBOARD ENDPOINTS
# =============================================================================

@app.get(
    "/api/admin/stats",
    response_model=DashboardStats,
    responses=ERROR_RESPONSES,
    tags=["Dashboard"],
)
async def dashboard_stats(
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(require_role(Role.ADMINISTRATOR)),
) -> DashboardStats:
    """Get aggregated dashboard statistics."""
    return DashboardStats(**await OrderStore(db).dashboard_stats())


# =============================================================================
# REAL-TIME CHANNEL
# =============================================================================

@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    """
    Live event stream.

    Rooms are assigned from the verified session: the caller's role room and
    personal room. Supported inbound events: ``ping``, ``stats:request``
    (administrators) and ``courier:location`` (couriers).
    """
    token = token or websocket.cookies.get(settings.session_cookie_name)
    user = verify_token(token) if token else None
    if user is None:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    channel: BaseRealtimeChannel = websocket.app.state.realtime
    rooms = channel.connect(websocket, user.id, user.role)
    await websocket.send_json(build_message("connected", {
        "rooms": rooms,
        "user": {"id": user.id, "name": user.name, "role": user.role.value},
    }))

    try:
        while True:
            raw = await websocket.receive_text()
            await handle_socket_message(websocket, user, raw)
    except WebSocketDisconnect:
        pass
    finally:
        channel.disconnect(websocket)


async def handle_socket_message(websocket: WebSocket, user: SessionUser, raw: str) -> None:
    """Dispatch one inbound frame. Failures go back to the sender only."""
    try:
        message = json.loads(raw)
        event = message.get("event") if isinstance(message, dict) else None
    except ValueError:
        event = None

    if not isinstance(event, str) or not event:
        await websocket.send_json(build_message("error", {"error": "Malformed message"}))
        return

    payload = message.get("payload") or {}
    state = websocket.app.state

    try:
        if event == "ping":
            await websocket.send_json(build_message("pong", {}))

        elif event == "stats:request":
            if not user.is_admin:
                raise ForbiddenError()
            async with state.session_maker() as db:
                stats = DashboardStats(**await OrderStore(db).dashboard_stats())
            # The requester is in the admin room, so the broadcast answers it too
            await state.dispatcher.stats_update(stats)

        elif event == "courier:location":
            if user.role != Role.COURIER:
                raise ForbiddenError()
            location = CourierLocation.model_validate(payload)
            async with state.session_maker() as db:
                await state.dispatcher.courier_location(db, user, location)

        elif event.startswith("join"):
            raise ForbiddenError("Room membership is assigned by the server")

        else:
            raise InvalidRequestError(f"Unknown event: {event}")

    except OrderTrackerError as e:
        await websocket.send_json(build_message("error", {"event": event, **e.to_dict()}))
    except ValidationError as e:
        await websocket.send_json(build_message("error", {
            "event": event,
            "success": False,
            "error": "Invalid request",
            "detail": str(e),
        }))
    except Exception as e:
        logger.exception(f"Socket event {event} from user #{user.id} failed: {e}")
        await websocket.send_json(build_message("error", {
            "event": event,
            "success": False,
            "error": "Internal Server Error",
            "detail": str(e) if settings.debug else "An unexpected error occurred",
        }))


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderTrackerError)
async def order_tracker_exception_handler(request: Request, exc: OrderTrackerError) -> JSONResponse:
    """Expected failures: NotFound, InvalidRequest, Unauthorized, Forbidden, Conflict."""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema violations are reported as InvalidRequest."""
    detail = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=InvalidRequestError.status_code,
        content=InvalidRequestError("Missing or invalid fields", detail).to_dict(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler (database failures included). No retry."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
