from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from typing import Optional
import os
import uuid

app = FastAPI(title="Mock Payment Server", version="1.0.0")

# Reader ids listed in MOCK_ONLINE_READERS start online, MOCK_OFFLINE_READERS start offline
READERS = {
    reader_id: {"id": reader_id, "label": f"Mock reader {reader_id}", "status": status}
    for status, env in (("online", "MOCK_ONLINE_READERS"), ("offline", "MOCK_OFFLINE_READERS"))
    for reader_id in os.environ.get(env, "tmr_mock_1" if status == "online" else "").split(",")
    if reader_id
}
# Amounts in cents that the fake terminal declines
DECLINED_AMOUNTS = {int(a) for a in os.environ.get("MOCK_DECLINED_AMOUNTS", "").split(",") if a}


class PaymentIntentRequest(BaseModel):
    amount: int
    currency: str = "usd"
    metadata: dict = {}


class TerminalPaymentRequest(BaseModel):
    amount: int
    currency: str = "usd"
    description: Optional[str] = None


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/payment-intents")
def create_payment_intent(body: PaymentIntentRequest):
    if body.amount <= 0:
        raise HTTPException(status_code=400, detail="amount must be positive")
    intent_id = f"pi_{uuid.uuid4().hex[:24]}"
    return {"id": intent_id, "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:12]}"}

@app.get("/terminal/readers")
def list_readers(): return {"readers": list(READERS.values())}

@app.get("/terminal/readers/{reader_id}")
def get_reader(reader_id: str):
    if reader_id not in READERS:
        raise HTTPException(status_code=404, detail="reader not found")
    return {"reader": READERS[reader_id]}

@app.post("/terminal/readers/{reader_id}/connect")
def connect_reader(reader_id: str):
    if reader_id not in READERS:
        return {"error": {"code": "not_found", "message": "Reader not found"}}
    if READERS[reader_id]["status"] != "online":
        return {"error": {"code": "reader_offline", "message": "Reader is offline"}}
    return {"reader": READERS[reader_id]}

@app.post("/terminal/readers/{reader_id}/process-payment")
def process_payment(reader_id: str, body: TerminalPaymentRequest):
    if reader_id not in READERS or READERS[reader_id]["status"] != "online":
        raise HTTPException(status_code=409, detail="reader not available")
    if body.amount in DECLINED_AMOUNTS:
        return {"status": "failed", "error": "Card declined"}
    return {
        "status": "succeeded",
        "payment_intent_id": f"pi_{uuid.uuid4().hex[:24]}",
        "payment_method_id": f"pm_{uuid.uuid4().hex[:24]}",
        "card": {"last4": "4242", "brand": "visa"},
    }
