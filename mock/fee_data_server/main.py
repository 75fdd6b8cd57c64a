from datetime import date

from fastapi import FastAPI, HTTPException, Request

from fincalc.domain.fees import (
    ARBITRATION_RULES,
    CURRENT_VERSION,
    CURRENT_VERSION_DATE,
    EXEMPTION_CATEGORIES,
    GENERAL_JURISDICTION_RULES,
    LEGAL_SOURCE,
)

app = FastAPI(title="Mock Fee Data Server", version="1.0.0")
# Flip to simulate an outage of the reference-data endpoint
app.state.unavailable = False
app.state.version = CURRENT_VERSION


def ensure_available(request: Request):
    if request.app.state.unavailable:
        raise HTTPException(status_code=503, detail="fee data temporarily unavailable")


@app.get("/health")
def health(): return {"status": "ok"}

@app.get("/fee-schedule")
def get_fee_schedule(request: Request):
    ensure_available(request)
    return {
        "version": request.app.state.version,
        "effective_date": date(2024, 1, 1).isoformat(),
        "source": LEGAL_SOURCE,
        "court_types": {
            "general": [r.model_dump(mode="json") for r in GENERAL_JURISDICTION_RULES],
            "arbitration": [r.model_dump(mode="json") for r in ARBITRATION_RULES],
        },
        "exemptions": [e.model_dump(mode="json") for e in EXEMPTION_CATEGORIES],
    }

@app.get("/fee-schedule/updates")
def check_updates(version: str, request: Request):
    ensure_available(request)
    return {
        "has_updates": version != request.app.state.version,
        "last_update": CURRENT_VERSION_DATE.isoformat(),
    }
