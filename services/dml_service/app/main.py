"""
DML Service - Insert / Update / Upsert / Delete on CRM records.
Exposes each DML operation as an endpoint and runs it against the configured
record store (Salesforce, or a local SQL store) via the Adapter Pattern.
"""
import os
import logging

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from simple_salesforce.exceptions import SalesforceError

from .database import engine, Base
from .schemas import (
    AccountCreate,
    AccountUpdate,
    LastNameUpdate,
    StageUpdate,
    OpportunityListRequest,
    NameListRequest,
    ContactListRequest,
    CaseBatchRequest,
    RecordIdResponse,
    RecordListResponse,
    DeletedResponse,
)
from .adapters.base import RecordStore
from . import dml

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# Record Store Factory
# =============================================================================

_record_store = None  # Singleton


def get_record_store() -> RecordStore | None:
    """
    Factory function that creates the appropriate record store
    based on the CRM_PROVIDER environment variable.
    Returns None if the provider is unknown or fails to initialize.
    """
    global _record_store
    if _record_store is not None:
        return _record_store

    provider = os.getenv("CRM_PROVIDER", "local").lower()

    if provider == "salesforce":
        try:
            from .adapters.salesforce_client import SalesforceStore
            _record_store = SalesforceStore()
            return _record_store
        except Exception as e:
            logger.error(f"❌ Failed to init Salesforce store: {e}")
            return None

    elif provider == "local":
        from .adapters.local_store import LocalStore
        _record_store = LocalStore()
        return _record_store

    else:
        logger.error(f"❌ Unknown CRM_PROVIDER '{provider}' — no record store available")
        return None


def require_store() -> RecordStore:
    """Dependency: the configured record store, or 503 when there is none."""
    store = get_record_store()
    if store is None:
        raise HTTPException(
            status_code=503,
            detail="No record store configured. Check CRM_PROVIDER and credentials.",
        )
    return store


# =============================================================================
# FastAPI App
# =============================================================================

# Create tables on startup
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="DML Service",
    description="Insert, update, upsert and delete on Account, Contact, Opportunity, Lead and Case",
    version="1.0.0",
)

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


# Store status -> HTTP status. Anything else from the platform is a 502.
PLATFORM_STATUS_MAP = {
    300: 409,
    400: 400,
    403: 403,
    404: 404,
}


@app.exception_handler(SalesforceError)
async def record_store_error_handler(request: Request, exc: SalesforceError):
    """Surface record store errors as-is; nothing is retried."""
    # SalesforceAuthenticationFailed carries no status or content.
    status = getattr(exc, "status", None)
    content = getattr(exc, "content", None) or str(exc)
    logger.error(f"❌ {request.method} {request.url.path} failed ({status}): {content}")
    return JSONResponse(
        status_code=PLATFORM_STATUS_MAP.get(status, 502),
        content={"detail": content, "resource": getattr(exc, "resource_name", None)},
    )


@app.on_event("startup")
async def startup_event():
    """Log record store status on startup."""
    provider = os.getenv("CRM_PROVIDER", "local")
    logger.info(f"🏢 CRM Provider configured: {provider}")
    store = get_record_store()
    if store:
        logger.info(f"✅ Record store ready: {type(store).__name__}")
    else:
        logger.info("ℹ️ No record store — DML endpoints will answer 503")


# =============================================================================
# Health
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check with record store status."""
    store = get_record_store()
    return {
        "status": "ok",
        "service": "dml",
        "version": "1.0.0",
        "crm_provider": os.getenv("CRM_PROVIDER", "local"),
        "store_connected": store is not None,
    }


# =============================================================================
# Insert Endpoints
# =============================================================================

@app.post("/accounts/sample", response_model=RecordIdResponse, status_code=201)
def insert_sample_account(store: RecordStore = Depends(require_store)):
    """Insert an account with preset fields."""
    account_id = dml.insert_new_account(store)
    return RecordIdResponse(id=account_id, sobject="Account", provider=store.provider)


@app.post("/accounts", response_model=RecordIdResponse, status_code=201)
def create_account(account: AccountCreate, store: RecordStore = Depends(require_store)):
    account_id = dml.create_account(store, account.name, account.industry)
    return RecordIdResponse(id=account_id, sobject="Account", provider=store.provider)


@app.post("/accounts/{account_id}/contacts", response_model=RecordIdResponse, status_code=201)
def insert_contact(account_id: str, store: RecordStore = Depends(require_store)):
    """Insert a contact under an existing account."""
    contact_id = dml.insert_new_contact(store, account_id)
    return RecordIdResponse(id=contact_id, sobject="Contact", provider=store.provider)


# =============================================================================
# Update Endpoints
# =============================================================================

@app.patch("/contacts/{contact_id}/last-name", response_model=RecordListResponse)
def update_contact_last_name(
    contact_id: str, body: LastNameUpdate, store: RecordStore = Depends(require_store)
):
    dml.update_contact_last_name(store, contact_id, body.last_name)
    return RecordListResponse(
        sobject="Contact", provider=store.provider, records=[store.get("Contact", contact_id)]
    )


@app.patch("/opportunities/{opp_id}/stage", response_model=RecordListResponse)
def update_opportunity_stage(
    opp_id: str, body: StageUpdate, store: RecordStore = Depends(require_store)
):
    dml.update_opportunity_stage(store, opp_id, body.stage)
    return RecordListResponse(
        sobject="Opportunity", provider=store.provider, records=[store.get("Opportunity", opp_id)]
    )


@app.patch("/accounts/{account_id}", response_model=RecordListResponse)
def update_account(
    account_id: str, body: AccountUpdate, store: RecordStore = Depends(require_store)
):
    """Change an account's name and industry; other fields are left alone."""
    dml.update_account_fields(store, account_id, body.name, body.industry)
    return RecordListResponse(
        sobject="Account", provider=store.provider, records=[store.get("Account", account_id)]
    )


# =============================================================================
# Upsert Endpoints
# =============================================================================

@app.post("/opportunities/upsert", response_model=RecordListResponse)
def upsert_opportunity_list(
    body: OpportunityListRequest, store: RecordStore = Depends(require_store)
):
    records = dml.upsert_opportunity_list(store, body.opportunities)
    return RecordListResponse(sobject="Opportunity", provider=store.provider, records=records)


@app.post("/accounts/by-name/{account_name}/opportunities", response_model=RecordListResponse)
def upsert_opportunities(
    account_name: str, body: NameListRequest, store: RecordStore = Depends(require_store)
):
    """One opportunity per distinct name on the named account (created if missing)."""
    records = dml.upsert_opportunities(store, account_name, body.names)
    return RecordListResponse(sobject="Opportunity", provider=store.provider, records=records)


@app.put("/accounts/by-name/{account_name}", response_model=RecordListResponse)
def upsert_account(account_name: str, store: RecordStore = Depends(require_store)):
    """Create the account, or mark the existing one with that name as updated."""
    record = dml.upsert_account(store, account_name)
    return RecordListResponse(sobject="Account", provider=store.provider, records=[record])


@app.post("/contacts/link-accounts", response_model=RecordListResponse)
def link_contacts_to_accounts(
    body: ContactListRequest, store: RecordStore = Depends(require_store)
):
    """Upsert contacts, each linked to the account named after its LastName."""
    invalid = [
        i for i, c in enumerate(body.contacts)
        if not isinstance(c.get("LastName"), str) or not c["LastName"]
    ]
    if invalid:
        raise HTTPException(
            status_code=422,
            detail=f"LastName must be a non-empty string on every contact (invalid at {invalid})",
        )
    records = dml.upsert_accounts_with_contacts(store, body.contacts)
    return RecordListResponse(sobject="Contact", provider=store.provider, records=records)


# =============================================================================
# Delete Endpoints
# =============================================================================

@app.post("/leads/insert-and-delete", response_model=DeletedResponse)
def insert_and_delete_leads(body: NameListRequest, store: RecordStore = Depends(require_store)):
    ids = dml.insert_and_delete_leads(store, body.names)
    return DeletedResponse(sobject="Lead", provider=store.provider, deleted_ids=ids)


@app.post("/accounts/{account_id}/cases/insert-and-delete", response_model=DeletedResponse)
def delete_cases(
    account_id: str, body: CaseBatchRequest, store: RecordStore = Depends(require_store)
):
    ids = dml.delete_cases(store, account_id, body.count)
    return DeletedResponse(sobject="Case", provider=store.provider, deleted_ids=ids)


# =============================================================================
# Records
# =============================================================================

@app.get("/records/{sobject}/{record_id}")
def get_record(sobject: str, record_id: str, store: RecordStore = Depends(require_store)):
    """Fetch a single record by id (all stored fields)."""
    try:
        return store.get(sobject, record_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# Root Info
# =============================================================================

@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "DML Service",
        "version": "1.0.0",
        "endpoints": {
            "/health": "Health check (includes record store status)",
            "/accounts": "POST - Create account",
            "/accounts/sample": "POST - Insert account with preset fields",
            "/accounts/{id}": "PATCH - Change account name and industry",
            "/accounts/{id}/contacts": "POST - Insert contact on account",
            "/accounts/{id}/cases/insert-and-delete": "POST - Insert N cases, then delete them",
            "/accounts/by-name/{name}": "PUT - Upsert account by name",
            "/accounts/by-name/{name}/opportunities": "POST - Upsert opportunities on account",
            "/contacts/{id}/last-name": "PATCH - Change contact last name",
            "/contacts/link-accounts": "POST - Upsert contacts linked to accounts by LastName",
            "/opportunities/{id}/stage": "PATCH - Change opportunity stage",
            "/opportunities/upsert": "POST - Upsert opportunity list",
            "/leads/insert-and-delete": "POST - Insert leads, then delete them",
            "/records/{sobject}/{id}": "GET - Fetch a record",
        },
    }
