import logging
import sqlite3
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from db_setup import init_db, get_db_connection, ContactStore
from db_models import IdentifyRequest, FinalResponse, AddContactRequest
from errors import ReconciliationError
from reconciliation import identify as identify_contact
from settings import settings
from validation import validate_contact_data

logging.basicConfig(
    level=settings.log_level,
    format="%(levelname)s: %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"Contact database ready at {settings.db_name}")
    yield


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan
)


def get_store():
    conn = get_db_connection()
    try:
        yield ContactStore(conn)
    finally:
        conn.close()


def _validation_failed(details):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": details}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get the same 400 shape as field-level failures."""
    details = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{loc}: {error.get('msg')}" if loc else error.get("msg"))
    return _validation_failed(details)


@app.exception_handler(ReconciliationError)
async def reconciliation_exception_handler(request: Request, exc: ReconciliationError):
    logger.error(f"Reconciliation failed for {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(sqlite3.Error)
async def storage_exception_handler(request: Request, exc: sqlite3.Error):
    logger.error(f"Storage failure for {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/")
async def root():
    return {
        "service": "Bitespeed Contact Reconciliation API",
        "version": app.version,
        "endpoints": {
            "identify": "POST /identify",
            "add_contact": "POST /add-contact",
        },
    }


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, store: ContactStore = Depends(get_store)):

    errors = validate_contact_data(request.email, request.phoneNumber)
    if errors:
        return _validation_failed(errors)

    result = identify_contact(
        store,
        request.email,
        request.phoneNumber,
        serialize=settings.serialize_identify,
        max_depth=settings.max_link_depth,
    )
    logger.info(
        f"Identified contact {result.contact.primaryContactId} ({result.outcome.value})"
    )
    return FinalResponse(contact=result.contact)


@app.post("/add-contact")
def add_contact(request: AddContactRequest, store: ContactStore = Depends(get_store)):
    """Add a raw contact row with explicit id and link fields"""
    if not settings.enable_add_contact:
        raise HTTPException(status_code=404, detail="Not Found")

    try:
        contact = store.create(
            email=request.email,
            phone_number=request.phoneNumber,
            linked_id=request.linkedId,
            link_precedence=request.linkPrecedence,
            contact_id=request.id
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail=f"Contact {request.id} already exists")
    return {"message": "Contact added successfully", "contact_id": contact.id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
