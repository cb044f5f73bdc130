# boxoffice/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from boxoffice.config import configure_logging
from boxoffice.errors import Conflict, TicketingError
from boxoffice.routes import customer, event_manager, scan, tickets
from boxoffice.store.base import TransactionConflict

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Box Office")


@app.exception_handler(TicketingError)
async def ticketing_error_handler(request: Request, exc: TicketingError):
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


@app.exception_handler(TransactionConflict)
async def transaction_conflict_handler(request: Request, exc: TransactionConflict):
    logger.warning("%s %s aborted by a concurrent update: %s", request.method, request.url.path, exc)
    conflict = Conflict("Another request changed these tickets at the same time. Please try again.",
                        code="concurrent_update")
    return await ticketing_error_handler(request, conflict)


# Include routers with appropriate prefixes
app.include_router(event_manager.router, prefix="/manager", tags=["Event Manager"])
app.include_router(customer.router, prefix="/customer", tags=["Customer"])
app.include_router(tickets.router, prefix="/tickets", tags=["Tickets"])
app.include_router(scan.router, prefix="/scan", tags=["Scanning"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
