import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import get_current_user_id
from config import get_settings
from database import SessionLocal, engine, init_db
from models import TransactionType
from schemas import (
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    CategoryUsageOut,
    DashboardReport,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
    error_details,
)
from services import (
    CategoryInUseError,
    CategoryService,
    DuplicateCategoryError,
    FieldValidationError,
    MetricsService,
    NotFoundError,
    TransactionFilters,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "X-DNS-Prefetch-Control": "off",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    try:
        init_db(engine)
    except SQLAlchemyError:
        logger.exception("startup: database unreachable")
        raise
    logger.info("startup: database ready")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"message": str(exc.detail)}
    return JSONResponse(content, status_code=exc.status_code, headers=exc.headers)


# Plain def: the rate limit middleware calls this handler without awaiting it.
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(
        f"rate_limited: path={request.url.path} client={get_remote_address(request)}"
    )
    return JSONResponse(
        {"message": "Too many requests, please try again later."}, status_code=429
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"message": "Validation failed", "errors": error_details(exc)},
        status_code=400,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(
        f"unhandled_error: method={request.method} path={request.url.path}"
    )
    return JSONResponse({"message": "Internal server error"}, status_code=500)


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, CategoryInUseError):
        return HTTPException(
            status_code=400,
            detail={"message": str(exc), "transaction_count": exc.transaction_count},
        )
    if isinstance(exc, FieldValidationError):
        return HTTPException(
            status_code=400, detail={"message": str(exc), "errors": exc.errors}
        )
    return HTTPException(status_code=400, detail=str(exc))


api = APIRouter(prefix="/api")


@api.get("/health")
def health():
    return {
        "status": "OK",
        "message": "Finance Tracker API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@api.get("/health/db")
def health_db(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health_db: ping failed")
        return JSONResponse(
            {"status": "Error", "database": "Disconnected"}, status_code=503
        )
    return {"status": "OK", "database": "Connected"}


@api.get("/categories")
def list_categories(
    db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)
):
    categories = CategoryService(db, user_id).list_all()
    return {"categories": [CategoryOut.model_validate(c) for c in categories]}


@api.post("/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except DuplicateCategoryError as exc:
        raise http_error(exc) from exc
    return {
        "message": "Category created successfully",
        "category": CategoryOut.model_validate(category),
    }


@api.put("/categories/{category_id}")
def update_category(
    category_id: str,
    data: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        category = CategoryService(db, user_id).update(category_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "message": "Category updated successfully",
        "category": CategoryOut.model_validate(category),
    }


@api.delete("/categories/{category_id}")
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Category deleted successfully"}


@api.get("/categories/{category_id}/usage", response_model=CategoryUsageOut)
def category_usage(
    category_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    service = CategoryService(db, user_id)
    try:
        category = service.get(category_id)
        usage = service.usage(category_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return CategoryUsageOut(category=CategoryOut.model_validate(category), usage=usage)


@api.get("/transactions", response_model=TransactionPage)
def list_transactions(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    type: Optional[TransactionType] = Query(None),
    category: Optional[str] = Query(None, max_length=30),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    filters = TransactionFilters(type=type, category=category)
    try:
        result = TransactionService(db, user_id).list(
            page=page, limit=limit or settings.default_page_size, filters=filters
        )
    except FieldValidationError as exc:
        raise http_error(exc) from exc
    return TransactionPage(
        transactions=[TransactionOut.from_model(txn) for txn in result.items],
        current_page=result.page,
        total_pages=result.total_pages,
        total_transactions=result.total,
        limit=result.limit,
    )


@api.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return {"transaction": TransactionOut.from_model(txn)}


@api.post("/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        txn = TransactionService(db, user_id).create(data)
    except FieldValidationError as exc:
        raise http_error(exc) from exc
    return {
        "message": "Transaction created successfully",
        "transaction": TransactionOut.from_model(txn),
    }


@api.put("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "message": "Transaction updated successfully",
        "transaction": TransactionOut.from_model(txn),
    }


@api.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return {"message": "Transaction deleted successfully"}


@api.get("/dashboard/stats", response_model=DashboardReport)
def dashboard_stats(
    db: Session = Depends(get_db), user_id: str = Depends(get_current_user_id)
):
    return MetricsService(db, user_id).report()


app.include_router(api)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
