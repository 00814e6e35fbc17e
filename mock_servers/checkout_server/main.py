from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from typing import Dict, Optional
import uuid

app = FastAPI(title="Mock Checkout Server", version="1.0.0")

# session_ref -> session; lives for the process
SESSIONS: Dict[str, dict] = {}


class CreateSession(BaseModel):
    amount_cents: int
    currency: str = "usd"
    order_ref: str
    description: str = ""
    customer_email: Optional[str] = None


def _session(session_ref: str) -> dict:
    session = SESSIONS.get(session_ref)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    return session


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/checkout/sessions")
def create_session(body: CreateSession):
    if body.amount_cents <= 0:
        raise HTTPException(status_code=422, detail="amount must be positive")
    ref = uuid.uuid4().hex
    SESSIONS[ref] = {
        "session_id": f"cs_{ref[:12]}",
        "session_ref": ref,
        "payment_url": f"http://localhost:8001/pay/{ref}",
        "amount_cents": body.amount_cents,
        "currency": body.currency,
        "order_ref": body.order_ref,
        "settled": False,
        "settled_order_ref": None,
        "cancelled": False,
    }
    return SESSIONS[ref]

@app.get("/checkout/sessions/{session_ref}")
def get_session(session_ref: str):
    return _session(session_ref)

@app.post("/checkout/sessions/{session_ref}/cancel")
def cancel_session(session_ref: str):
    session = _session(session_ref)
    if not session["settled"]:
        session["cancelled"] = True
    return session

@app.post("/checkout/sessions/{session_ref}/settle")
def settle_session(session_ref: str):
    """Test hook standing in for the customer paying"""
    session = _session(session_ref)
    if session["cancelled"]:
        raise HTTPException(status_code=409, detail="session cancelled")
    session["settled"] = True
    session["settled_order_ref"] = f"pay_{session_ref[:8]}"
    return session
