import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.auth import auth_backend, fastapi_users, google_oauth_client
from core.config import settings
from db.database import create_db_and_tables
from routers.audit import router as audit_router
from routers.auth import router as auth_router, users_router
from routers.categories import router as categories_router
from routers.inventory import router as inventory_router
from routers.locations import router as locations_router
from routers.products import router as products_router
from routers.purchase_orders import router as purchase_orders_router
from routers.reports import router as reports_router
from routers.sales import router as sales_router
from routers.suppliers import router as suppliers_router
from schemas.users import UserCreate, UserRead, UserUpdate

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    logger.info("Database tables ready")
    yield


app = FastAPI(
    title="Stockroom Inventory API",
    description="API for products, stock, purchase orders and sales",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Process-Time"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.4f}s")
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}


# Authentication routes: password/TOTP login is ours, the rest comes from fastapi-users
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_reset_password_router(), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_verify_router(UserRead), prefix="/auth", tags=["auth"])
if google_oauth_client is not None:
    app.include_router(
        fastapi_users.get_oauth_router(
            google_oauth_client,
            auth_backend,
            settings.secret_key,
            redirect_url=f"{settings.frontend_url}/auth/google/callback",
            associate_by_email=True,
        ),
        prefix="/auth/google",
        tags=["auth"],
    )
app.include_router(users_router, prefix="/users", tags=["users"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Catalog
app.include_router(categories_router, prefix="/categories", tags=["categories"])
app.include_router(suppliers_router, prefix="/suppliers", tags=["suppliers"])
app.include_router(locations_router, prefix="/locations", tags=["locations"])
app.include_router(products_router, prefix="/products", tags=["products"])

# Stock and documents
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(purchase_orders_router, prefix="/purchase-orders", tags=["purchase-orders"])
app.include_router(sales_router, prefix="/sales", tags=["sales"])

# Reporting
app.include_router(reports_router, prefix="/reports", tags=["reports"])
app.include_router(audit_router, prefix="/audit-logs", tags=["audit"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
