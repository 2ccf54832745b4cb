from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.db.session import create_db_and_tables

# Import models to ensure they are registered with SQLModel metadata
from app.models.user import User
from app.models.product import Product, ProductVariant
from app.models.cart import CartItem

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_db_and_tables()
    logger.info("%s started", settings.PROJECT_NAME)
    yield

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    lifespan=lifespan,
    description="Storefront cart API: guest and user carts with merge on login"
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Report the first invalid field as a plain 400
    errors = exc.errors()
    error = errors[0] if errors else {"msg": "Invalid request"}
    field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query"))
    detail = f"{field}: {error.get('msg')}" if field else error.get("msg")
    return JSONResponse(status_code=400, content={"detail": detail})

@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}. Visit /docs for Swagger UI."}

from app.routers import auth, cart

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(cart.router, prefix="/api/v1/cart", tags=["cart"])

# Add CORS
from fastapi.middleware.cors import CORSMiddleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
