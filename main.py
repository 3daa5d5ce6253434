import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
import database

import analytics
import auth
import billing
import file_storage
import health
import journal_entries
import market_data
import notebook
import trade_journal
import trading_sessions

logger = logging.getLogger(__name__)

app = FastAPI(title="FlowdeX API")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(trading_sessions.router)
app.include_router(trade_journal.router)
app.include_router(journal_entries.router)
app.include_router(notebook.router)
app.include_router(analytics.router)
app.include_router(market_data.router)
app.include_router(billing.router)
app.include_router(file_storage.router)
app.include_router(health.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.info("Invalid request data on %s %s: %s", request.method, request.url.path, errors)
    return JSONResponse(status_code=400, content={"detail": "Invalid request data", "errors": errors})


@app.on_event("startup")
def startup():
    config.setup_logging()
    config.report_integrations()
    database.init_db()
    logger.info("FlowdeX API started (%s, %s)", config.APP_ENV, database.describe_backend())


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=config.APP_ENV == "development")
