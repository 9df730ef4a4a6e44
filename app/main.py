"""
FastAPI Application - Unified Exchange Connector API

Exposes every exchange adapter behind one REST surface. Each request names
its exchange (query parameter for public market data, `exchange` header for
account operations) and gets back the adapter's result envelope:

    {"status": "OK", "data": ..., "usage": [...], "timeProfile": {...}}
    {"status": "NOTOK", "reason": "...", "usage": [...], "timeProfile": {...}}

Envelopes are always returned with HTTP 200; only an unknown exchange is
answered with HTTP 400.

Authenticated requests carry credentials in headers:
    key, secret, passphrase, exchange, keystype, okxsource, code, bybithost

Public Endpoints:
    - `GET /latestPrice?exchange=&symbol=`
    - `GET /exchange?exchange=&symbol=`
    - `GET /exchange/all?exchange=`
    - `GET /candles?exchange=&symbol=&interval=&from=&to=&count=`
    - `GET /trades?exchange=&symbol=&fromId=&startTime=&endTime=`
    - `GET /prices?exchange=`
    - `GET /usage?exchange=`

Datafeed Endpoints (public, same envelopes):
    - `GET /datafeed/prices?exchange=`
    - `GET /datafeed/candles?exchange=&symbol=&type=&startAt=&endAt=`

Authenticated Endpoints:
    - `POST|GET|DELETE /order`, `GET /open/all`, `DELETE /orders/byId`
    - `GET /fees`, `GET /fees/all`, `GET /balance`
    - `POST|GET /hedge`, `POST /leverage`, `POST /margin`
    - `GET /leverageBracket`, `GET /positions`
    - `GET /uid`, `GET /affiliate`, `GET /rebateRecords`, `GET /rebateOverview`
    - `GET /verify?tradeType=` answers `{"status": bool, "reason": str}`
    - `GET /accountType` answers `{"type": int}` for the Bybit key in the headers

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from typing import Any, AsyncIterator, Dict, Optional
from contextlib import asynccontextmanager

from core.config import settings, validate_configuration
from core.exceptions import ConfigurationError
from core.exchange_chooser import ExchangeChooser
from core.exchange_interface import ExchangeInterface
from core.logging import logger
from core.schemas import (
    BybitHost,
    CamelModel,
    CoinbaseKeysType,
    Credentials,
    Envelope,
    ExchangeIntervals,
    MarginType,
    OKXSource,
    OrderRequest,
    TradeType,
    VerifyResult,
)


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("=== Application Starting ===")
    try:
        validate_configuration()
        logger.info(f"Exchanges: {', '.join(ExchangeChooser.list_exchanges())}")
        logger.info("=== Started Successfully ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    logger.info("=== Shutdown Complete ===")


# ============================================
# FastAPI Application
# ============================================

app = FastAPI(
    title="Exchange Connector API",
    description=(
        "Unified REST API over Binance, Bybit, Kucoin, OKX, Bitget, Coinbase and Hyperliquid.\n\n"
        "Every operation answers with a result envelope: `status` (OK / NOTOK), "
        "`data` or `reason`, rate-limit `usage` and a `timeProfile`.\n\n"
        "Account endpoints read credentials from the `key`, `secret`, `passphrase`, "
        "`exchange`, `keystype`, `okxsource`, `code` and `bybithost` headers."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


# ============================================
# Request Bodies
# ============================================

class CancelOrderBody(CamelModel):
    symbol: str
    new_client_order_id: str


class CancelByIdBody(CamelModel):
    symbol: str
    order_id: str


class LeverageBody(CamelModel):
    symbol: str
    leverage: int


class MarginBody(CamelModel):
    symbol: str
    margin: MarginType
    leverage: int


class HedgeBody(CamelModel):
    value: bool


# ============================================
# Adapter Resolution
# ============================================

def open_exchange(identifier: Optional[str], credentials: Optional[Credentials] = None) -> ExchangeInterface:
    """
    Build the adapter for one request.

    Raises:
        HTTPException: 400 when the exchange identifier is unknown
    """
    try:
        return ExchangeChooser.from_credentials(identifier, credentials or Credentials())
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def public_exchange(
    exchange: str = Query(..., description="Exchange identifier (e.g., binance, bybitLinear)")
) -> AsyncIterator[ExchangeInterface]:
    """Credential-less adapter for market data endpoints."""
    adapter = open_exchange(exchange)
    try:
        yield adapter
    finally:
        await adapter.close()


def header_credentials(
    key: Optional[str] = Header(default=None),
    secret: Optional[str] = Header(default=None),
    passphrase: Optional[str] = Header(default=None),
    keystype: Optional[CoinbaseKeysType] = Header(default=None),
    okxsource: Optional[OKXSource] = Header(default=None),
    code: Optional[str] = Header(default=None),
    bybithost: Optional[BybitHost] = Header(default=None)
) -> Credentials:
    return Credentials(
        key=key,
        secret=secret,
        passphrase=passphrase,
        keys_type=keystype,
        okx_source=okxsource,
        code=code,
        bybit_host=bybithost
    )


async def private_exchange(
    exchange: str = Header(..., description="Exchange identifier"),
    credentials: Credentials = Depends(header_credentials)
) -> AsyncIterator[ExchangeInterface]:
    """Adapter bound to the credentials carried in the request headers."""
    adapter = open_exchange(exchange, credentials)
    try:
        yield adapter
    finally:
        await adapter.close()


def respond(envelope: Envelope) -> Dict[str, Any]:
    if not envelope.ok:
        logger.debug(f"NOTOK envelope returned: {envelope.reason}")
    return envelope.to_response()


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"])
async def root():
    """API information and available exchanges."""
    return {
        "name": "Exchange Connector API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "exchanges": ExchangeChooser.list_exchanges()
    }


@app.get("/exchanges", tags=["System"])
async def list_exchanges():
    """List all supported exchange identifiers and their capabilities."""
    return {
        "exchanges": [
            {
                "name": name,
                "capabilities": ExchangeChooser.get_capabilities(name)
            }
            for name in ExchangeChooser.list_exchanges()
        ]
    }


# ============================================
# Market Data Endpoints
# ============================================

@app.get("/latestPrice", tags=["Market Data"])
async def get_latest_price(
    symbol: str = Query(..., description="Exchange symbol (e.g., BTCUSDT)"),
    exchange: ExchangeInterface = Depends(public_exchange)
):
    return respond(await exchange.latest_price(symbol))


@app.get("/exchange", tags=["Market Data"])
async def get_exchange_info(
    symbol: str = Query(..., description="Exchange symbol"),
    exchange: ExchangeInterface = Depends(public_exchange)
):
    return respond(await exchange.get_exchange_info(symbol))


@app.get("/exchange/all", tags=["Market Data"])
async def get_all_exchange_info(exchange: ExchangeInterface = Depends(public_exchange)):
    return respond(await exchange.get_all_exchange_info())


@app.get("/candles", tags=["Market Data"])
async def get_candles(
    symbol: str = Query(..., description="Exchange symbol"),
    interval: ExchangeIntervals = Query(..., description="1m, 3m, 5m, 15m, 30m, 1h, 2h, 4h, 8h, 1d, 1w"),
    start: Optional[int] = Query(default=None, alias="from", description="Start time (epoch ms)"),
    end: Optional[int] = Query(default=None, alias="to", description="End time (epoch ms)"),
    count: Optional[int] = Query(default=None, ge=1, description="Number of candles"),
    exchange: ExchangeInterface = Depends(public_exchange)
):
    return respond(await exchange.get_candles(symbol, interval, start, end, count))


@app.get("/trades", tags=["Market Data"])
async def get_trades(
    symbol: str = Query(..., description="Exchange symbol"),
    from_id: Optional[int] = Query(default=None, alias="fromId"),
    start_time: Optional[int] = Query(default=None, alias="startTime"),
    end_time: Optional[int] = Query(default=None, alias="endTime"),
    exchange: ExchangeInterface = Depends(public_exchange)
):
    return respond(await exchange.get_trades(symbol, from_id, start_time, end_time))


@app.get("/prices", tags=["Market Data"])
async def get_all_prices(exchange: ExchangeInterface = Depends(public_exchange)):
    return respond(await exchange.get_all_prices())


@app.get("/usage", tags=["Market Data"])
async def get_usage(exchange: ExchangeInterface = Depends(public_exchange)):
    """Current rate-limit usage of the exchange's process-wide limiter."""
    return [item.model_dump(by_alias=True) for item in exchange.get_usage()]


# ============================================
# Datafeed Endpoints
# ============================================

@app.get("/datafeed/prices", tags=["Datafeed"])
async def get_datafeed_prices(exchange: ExchangeInterface = Depends(public_exchange)):
    return respond(await exchange.get_all_prices())


@app.get("/datafeed/candles", tags=["Datafeed"])
async def get_datafeed_candles(
    symbol: str = Query(..., description="Exchange symbol"),
    interval: ExchangeIntervals = Query(..., alias="type", description="1m, 3m, 5m, 15m, 30m, 1h, 2h, 4h, 8h, 1d, 1w"),
    start_at: Optional[int] = Query(default=None, alias="startAt", description="Start time (epoch ms)"),
    end_at: Optional[int] = Query(default=None, alias="endAt", description="End time (epoch ms)"),
    exchange: ExchangeInterface = Depends(public_exchange)
):
    return respond(await exchange.get_candles(symbol, interval, start_at, end_at))


# ============================================
# Order Endpoints
# ============================================

@app.post("/order", tags=["Orders"])
async def create_order(order: OrderRequest, exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.open_order(order))


@app.get("/order", tags=["Orders"])
async def get_order(
    symbol: str = Query(...),
    new_client_order_id: str = Query(..., alias="newClientOrderId"),
    exchange: ExchangeInterface = Depends(private_exchange)
):
    return respond(await exchange.get_order(symbol, new_client_order_id))


@app.delete("/order", tags=["Orders"])
async def cancel_order(body: CancelOrderBody, exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.cancel_order(body.symbol, body.new_client_order_id))


@app.delete("/orders/byId", tags=["Orders"])
async def cancel_order_by_order_id(body: CancelByIdBody, exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.cancel_order_by_order_id(body.symbol, body.order_id))


@app.get("/open/all", tags=["Orders"])
async def get_all_open_orders(
    symbol: Optional[str] = Query(default=None),
    return_orders: bool = Query(default=False, alias="returnOrders", description="List orders instead of counting them"),
    exchange: ExchangeInterface = Depends(private_exchange)
):
    if return_orders:
        return respond(await exchange.get_all_open_orders(symbol))
    return respond(await exchange.count_open_orders(symbol))


# ============================================
# Account Endpoints
# ============================================

@app.get("/fees/all", tags=["Account"])
async def get_all_user_fees(exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.get_all_user_fees())


@app.get("/fees", tags=["Account"])
async def get_user_fees(symbol: str = Query(...), exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.get_user_fees(symbol))


@app.get("/balance", tags=["Account"])
async def get_balance(exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.get_balance())


@app.get("/uid", tags=["Account"])
async def get_uid(exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.get_uid())


@app.get("/verify", tags=["Account"], response_model=VerifyResult)
async def verify_keys(
    trade_type: Optional[TradeType] = Query(default=None, alias="tradeType"),
    exchange: Optional[str] = Header(default=None, description="Exchange identifier"),
    credentials: Credentials = Depends(header_credentials)
):
    """
    Check that the header credentials may trade.

    Unlike the other account endpoints, an unknown exchange is not an HTTP
    error here: it is reported as a failed verification.
    """
    if ExchangeChooser.choose_exchange_factory(exchange) is None:
        return VerifyResult(status=False, reason="Exchange not supported")
    adapter = open_exchange(exchange, credentials)
    try:
        envelope = await adapter.verify_permissions(trade_type)
    finally:
        await adapter.close()
    status = envelope.ok and envelope.data is True
    return VerifyResult(status=status, reason="" if status else (envelope.reason or "Check permissions"))


@app.get("/accountType", tags=["Account"])
async def get_account_type(credentials: Credentials = Depends(header_credentials)):
    """Bybit account type of the header key; 1 (classic) when it cannot be read."""
    adapter = open_exchange("bybit", credentials)
    try:
        envelope = await adapter.get_account_type()
    finally:
        await adapter.close()
    return {"type": envelope.data if envelope.ok else 1}


@app.get("/affiliate", tags=["Account"])
async def get_affiliate(uid: str = Query(...), exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.get_affiliate(uid))


@app.get("/rebateRecords", tags=["Account"])
async def get_rebate_records(
    timestamp: int = Query(..., description="Reference time (epoch ms)"),
    start_time: Optional[int] = Query(default=None, alias="startTime"),
    end_time: Optional[int] = Query(default=None, alias="endTime"),
    exchange: ExchangeInterface = Depends(private_exchange)
):
    return respond(await exchange.get_rebate_records(timestamp, start_time, end_time))


@app.get("/rebateOverview", tags=["Account"])
async def get_rebate_overview(
    timestamp: int = Query(..., description="Reference time (epoch ms)"),
    exchange: ExchangeInterface = Depends(private_exchange)
):
    return respond(await exchange.get_rebate_overview(timestamp))


# ============================================
# Futures Endpoints
# ============================================

@app.post("/leverage", tags=["Futures"])
async def change_leverage(body: LeverageBody, exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.futures_change_leverage(body.symbol, body.leverage))


@app.post("/margin", tags=["Futures"])
async def change_margin(body: MarginBody, exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.futures_change_margin_type(body.symbol, body.margin, body.leverage))


@app.post("/hedge", tags=["Futures"])
async def set_hedge(body: HedgeBody = Body(...), exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.futures_set_hedge(body.value))


@app.get("/hedge", tags=["Futures"])
async def get_hedge(symbol: Optional[str] = Query(default=None), exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.futures_get_hedge(symbol))


@app.get("/leverageBracket", tags=["Futures"])
async def get_leverage_bracket(exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.futures_leverage_bracket())


@app.get("/positions", tags=["Futures"])
async def get_positions(symbol: Optional[str] = Query(default=None), exchange: ExchangeInterface = Depends(private_exchange)):
    return respond(await exchange.futures_get_positions(symbol))
