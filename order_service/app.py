"""
OrderService: HTTP API for the order-creation UI and the admin dashboards.

Writes order documents and fires the order lifecycle events (in-process or via
RabbitMQ, see ORDER_EVENTS_TRANSPORT). Also serves product stock and the
cooperative time.
"""

import logging

from fastapi import FastAPI, HTTPException

from common import Order, OrderStatus, new_order_id, setup_logging
from common.config import ORDER_EVENTS_TRANSPORT
from common.context import AppContext, build_context
from common.models import (
    FINAL_STATUSES,
    CooperativeTime,
    OrderCreateRequest,
    Product,
    ProductStockRequest,
    StatusUpdateRequest,
)
from common.storage import ORDERS, PRODUCTS
from common.timeutils import epoch_ms

from order_service.publishers import BrokerPublisher, InProcessPublisher

setup_logging("order-service")
logger = logging.getLogger(__name__)

app = FastAPI(title="AgriCart OrderService")


def _ctx() -> AppContext:
    return app.state.ctx


@app.on_event("startup")
def startup():
    """Build the process-wide context unless one was provided."""
    if getattr(app.state, "ctx", None) is None:
        app.state.ctx = build_context()
    if ORDER_EVENTS_TRANSPORT == "rabbitmq":
        app.state.publisher = BrokerPublisher()
    else:
        app.state.publisher = InProcessPublisher(app.state.ctx.bus)
    logger.info("OrderService started (events via %s)", ORDER_EVENTS_TRANSPORT)


@app.on_event("shutdown")
async def shutdown():
    await app.state.publisher.close()
    await app.state.ctx.close()
    app.state.ctx = None


def _product_view(product_id: str, doc: dict) -> dict:
    product = Product.model_validate(doc)
    return {"id": product_id, **product.to_document(), "availableQty": product.available_qty}


@app.post("/orders", status_code=201)
async def create_order(payload: OrderCreateRequest):
    store = _ctx().store
    order_id = new_order_id()
    order = Order(
        items=[item.model_dump(by_alias=True) for item in payload.items],
        status=OrderStatus.PENDING,
        customer_id=payload.customer_id,
        updated_at=epoch_ms(),
    )
    doc = order.to_document()
    store.set(ORDERS, order_id, doc)
    await app.state.publisher.order_created(order_id, doc)
    logger.info("Order %s created", order_id)
    return {"id": order_id, **(store.get(ORDERS, order_id) or doc)}


@app.get("/orders/{order_id}")
def get_order(order_id: str):
    doc = _ctx().store.get(ORDERS, order_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"id": order_id, **doc}


@app.patch("/orders/{order_id}/status")
async def update_order_status(order_id: str, payload: StatusUpdateRequest):
    store = _ctx().store
    before = store.get(ORDERS, order_id)
    if before is None:
        raise HTTPException(status_code=404, detail="Order not found")
    current = before.get("status")
    if current == payload.status.value:
        raise HTTPException(status_code=409, detail=f"Order is already {current}")
    if current in {s.value for s in FINAL_STATUSES}:
        raise HTTPException(status_code=409, detail=f"Order is {current} and can no longer change")

    changes = {"status": payload.status.value, "updatedAt": epoch_ms()}
    if not store.update(ORDERS, order_id, changes):
        raise HTTPException(status_code=404, detail="Order not found")
    after = {**before, **changes}
    await app.state.publisher.order_status_changed(order_id, before, after)
    return {"id": order_id, **(store.get(ORDERS, order_id) or after)}


@app.put("/products/{product_id}")
def put_product_stock(product_id: str, payload: ProductStockRequest):
    """Set base and sold stock; the reserved counter belongs to the reservation protocol."""
    store = _ctx().store
    store.upsert(PRODUCTS, product_id, payload.model_dump(by_alias=True))
    return _product_view(product_id, store.get(PRODUCTS, product_id))


@app.get("/products/{product_id}")
def get_product(product_id: str):
    doc = _ctx().store.get(PRODUCTS, product_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return _product_view(product_id, doc)


@app.get("/coop-time", response_model=CooperativeTime)
async def get_coop_time():
    return await _ctx().time_reader.get_cooperative_time()


@app.get("/health")
def health():
    return {"status": "ok", "service": "order-service"}
