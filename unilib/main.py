import asyncio
from contextlib import asynccontextmanager
import logging
from typing import List

from fastapi import Depends, FastAPI, Response, status
from sqlalchemy.orm import Session

from unilib.config import settings
from unilib.exceptions import add_exception_handlers
from unilib.repository import SqlAlchemyRepository
from unilib.schemas import (
    CatalogItemCreate,
    CatalogItemSchema,
    CatalogItemUpdate,
    DeactivateRequest,
    ItemFilterParams,
    LoanCreate,
    LoanFilterParams,
    LoanReturn,
    LoanSchema,
    QuantityUpdate,
    ResultEnvelope,
    SweepResult,
    UserCreate,
    UserDetailSchema,
    UserFilterParams,
    UserSchema,
    UserUpdateRequest,
)
from unilib.service import LibraryService
from unilib.storage import SessionLocal, engine, init_db

# Set up logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def run_overdue_sweep() -> None:
    with SessionLocal() as db:
        result = LibraryService(SqlAlchemyRepository(db)).sweep_overdue()
    if not result.success:
        logger.error(f"Overdue sweep failed: {result.error}")


async def sweep_overdue_periodically(interval: float) -> None:
    logger.info(f"Overdue sweep scheduled every {interval} seconds")
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(run_overdue_sweep)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    sweeper = None
    if not app.state.testing:
        logger.info("Initializing database schema")
        init_db(engine)
        if settings.overdue_sweep_interval > 0:
            sweeper = asyncio.create_task(
                sweep_overdue_periodically(settings.overdue_sweep_interval)
            )
    yield
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            logger.info("Overdue sweep stopped")


app = FastAPI(
    title="University Library API",
    lifespan=lifespan,
    description="Users, catalog and loan lifecycle for the university library",
    version="1.0.0",
)

add_exception_handlers(app)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_service(db: Session = Depends(get_db)) -> LibraryService:
    return LibraryService(SqlAlchemyRepository(db))


def respond(result: ResultEnvelope, response: Response) -> ResultEnvelope:
    response.status_code = result.status_code
    return result


# Users
@app.post(
    "/users/",
    response_model=ResultEnvelope[UserSchema],
    status_code=status.HTTP_201_CREATED,
)
def register_user(
    user: UserCreate, response: Response, service: LibraryService = Depends(get_service)
):
    return respond(service.register_user(user), response)


@app.get("/users/", response_model=ResultEnvelope[List[UserSchema]])
def list_users(
    response: Response,
    params: UserFilterParams = Depends(),
    service: LibraryService = Depends(get_service),
):
    return respond(service.query_users(params), response)


@app.get("/users/{user_id}", response_model=ResultEnvelope[UserDetailSchema])
def fetch_user(
    user_id: int, response: Response, service: LibraryService = Depends(get_service)
):
    return respond(service.get_user(user_id), response)


@app.patch("/users/{user_id}", response_model=ResultEnvelope[UserSchema])
def update_user(
    user_id: int,
    request: UserUpdateRequest,
    response: Response,
    service: LibraryService = Depends(get_service),
):
    return respond(
        service.update_user(user_id, request.changes, request.actor), response
    )


@app.post("/users/{user_id}/deactivate", response_model=ResultEnvelope[UserSchema])
def deactivate_user(
    user_id: int,
    request: DeactivateRequest,
    response: Response,
    service: LibraryService = Depends(get_service),
):
    return respond(
        service.deactivate_user(user_id, request.reason, request.actor), response
    )


# Catalog
@app.post(
    "/items/",
    response_model=ResultEnvelope[CatalogItemSchema],
    status_code=status.HTTP_201_CREATED,
)
def add_item(
    item: CatalogItemCreate,
    response: Response,
    service: LibraryService = Depends(get_service),
):
    return respond(service.add_catalog_item(item), response)


@app.get("/items/", response_model=ResultEnvelope[List[CatalogItemSchema]])
def list_items(
    response: Response,
    params: ItemFilterParams = Depends(),
    service: LibraryService = Depends(get_service),
):
    return respond(service.query_catalog_items(params), response)


@app.patch("/items/{item_id}", response_model=ResultEnvelope[CatalogItemSchema])
def update_item(
    item_id: int,
    patch: CatalogItemUpdate,
    response: Response,
    service: LibraryService = Depends(get_service),
):
    return respond(service.update_catalog_item(item_id, patch), response)


@app.put("/items/{item_id}/quantity", response_model=ResultEnvelope[CatalogItemSchema])
def update_item_quantity(
    item_id: int,
    quantity: QuantityUpdate,
    response: Response,
    service: LibraryService = Depends(get_service),
):
    return respond(
        service.update_catalog_item_quantity(item_id, quantity.total_copies), response
    )


@app.delete("/items/{item_id}", response_model=ResultEnvelope[CatalogItemSchema])
def remove_item(
    item_id: int, response: Response, service: LibraryService = Depends(get_service)
):
    return respond(service.remove_catalog_item(item_id), response)


# Loans
@app.post(
    "/loans/",
    response_model=ResultEnvelope[LoanSchema],
    status_code=status.HTTP_201_CREATED,
)
def create_loan(
    loan: LoanCreate, response: Response, service: LibraryService = Depends(get_service)
):
    return respond(
        service.create_loan(loan.user_id, loan.item_id, loan.librarian), response
    )


@app.get("/loans/", response_model=ResultEnvelope[List[LoanSchema]])
def list_loans(
    response: Response,
    params: LoanFilterParams = Depends(),
    service: LibraryService = Depends(get_service),
):
    return respond(service.query_loans(params), response)


@app.post("/loans/{loan_id}/return", response_model=ResultEnvelope[LoanSchema])
def return_loan(
    loan_id: int,
    request: LoanReturn,
    response: Response,
    service: LibraryService = Depends(get_service),
):
    return respond(service.return_loan(loan_id, request.librarian), response)


@app.post("/loans/sweep-overdue", response_model=ResultEnvelope[SweepResult])
def sweep_overdue(response: Response, service: LibraryService = Depends(get_service)):
    return respond(service.sweep_overdue(), response)


if __name__ == "__main__":
    import uvicorn

    print(f"Starting library API on port {settings.api_port}")
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
