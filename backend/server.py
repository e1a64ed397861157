from fastapi import FastAPI, APIRouter, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import logging
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone

from app_config import ReconciliationSettings, load_config
from carbonation_calculator import (
    CO2_RANGES,
    CO2VolumesRequest,
    PrimingSugarRequest,
    RequiredPressureRequest,
    calculate_co2_volumes,
    calculate_priming_sugar,
    calculate_required_pressure,
    estimate_carbonation_duration,
    get_carbonation_level,
    is_pressure_safe,
    validate_temperature,
)
from operation_form import (
    OperationContext,
    SubmissionPayload,
    SubmissionRejectedError,
    SubmissionResult,
)
from operation_schemas import FieldError, PressRunCompletionPayload, parse_operation_payload
from operation_store import MongoOperationStore, OperationNotFoundError
from reconciliation_engine import (
    Operation,
    PackagingLoss,
    Ratio,
    ReconciliationResult,
    ReconciliationStatus,
    allocation_percent,
    margin_percent,
    markup_percent,
    packaging_loss,
    reconcile,
)
from volume_conversion_engine import ConversionRequest, ConversionResult, convert_request

config = load_config()

# MongoDB connection
client = AsyncIOMotorClient(config.mongo_url)
db = client[config.db_name]

app = FastAPI(title="Cidery Reconciliation Service")

# ==================== CORS CONFIGURATION ====================
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "Accept",
        "Origin",
    ],
    max_age=600,
)

# ==================== VALIDATION ERRORS ====================
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """422 with location and message only; rejected inputs such as NaN are not echoed back"""
    detail = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    logger.info(f"Rejected request to {request.url.path}: {len(detail)} validation error(s)")
    return JSONResponse(status_code=422, content={"detail": detail})

# ==================== HEALTH ENDPOINT (ROOT LEVEL) ====================
@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "service": "Cidery Reconciliation API",
        "version": "1.0.0"
    }

api_router = APIRouter(prefix="/api")

# ==================== DEPENDENCIES ====================

def get_data_source():
    return MongoOperationStore(db)

def get_settings() -> ReconciliationSettings:
    return config.reconciliation

# ==================== MODELS ====================

class ReconciliationResponse(BaseModel):
    result: ReconciliationResult
    allocation_percent: Ratio
    can_submit: bool

class OperationValidationResponse(BaseModel):
    valid: bool
    field_errors: List[FieldError] = []
    reconciliation: Optional[ReconciliationResult] = None
    can_submit: bool = False
    extraction_rate: Optional[Ratio] = None

class PricingRequest(BaseModel):
    retail_price: Optional[float] = Field(default=None, ge=0)
    wholesale_price: Optional[float] = Field(default=None, ge=0)

class PricingResponse(BaseModel):
    margin_percent: Ratio
    markup_percent: Ratio

class PackagingLossRequest(BaseModel):
    volume_taken_l: Optional[float] = None
    units_produced: Optional[int] = None
    package_size_ml: Optional[float] = None

# ==================== CONVERSION ====================

@api_router.post("/conversions", response_model=ConversionResult)
async def convert_quantity(data: ConversionRequest):
    return convert_request(data)

# ==================== RECONCILIATION ====================

@api_router.post("/reconciliations", response_model=ReconciliationResponse)
async def reconcile_operation(data: Operation, settings: ReconciliationSettings = Depends(get_settings)):
    result = reconcile(data, settings)
    return ReconciliationResponse(
        result=result,
        allocation_percent=allocation_percent(data),
        can_submit=result.can_submit,
    )

@api_router.post("/operations/validate", response_model=OperationValidationResponse)
async def validate_operation(data: Dict[str, Any], settings: ReconciliationSettings = Depends(get_settings)):
    payload, errors = parse_operation_payload(data)
    if payload is None:
        return OperationValidationResponse(valid=False, field_errors=errors)

    result = reconcile(payload.to_operation(), settings)
    return OperationValidationResponse(
        valid=True,
        reconciliation=result,
        can_submit=result.can_submit,
        extraction_rate=payload.extraction_rate() if isinstance(payload, PressRunCompletionPayload) else None,
    )

# ==================== OPERATIONS ====================

@api_router.get("/operations/{operation_id}/context", response_model=OperationContext)
async def get_operation_context(operation_id: str, data_source=Depends(get_data_source)):
    try:
        return await data_source.fetch_operation_context(operation_id)
    except OperationNotFoundError:
        raise HTTPException(status_code=404, detail="Operation not found")

@api_router.post("/operations/{operation_id}/submit", response_model=SubmissionResult)
async def submit_operation(
    operation_id: str,
    data: Dict[str, Any],
    data_source=Depends(get_data_source),
    settings: ReconciliationSettings = Depends(get_settings),
):
    payload, errors = parse_operation_payload(data)
    if payload is None:
        raise HTTPException(status_code=422, detail=[e.model_dump() for e in errors])

    operation = payload.to_operation()
    result = reconcile(operation, settings)
    if result.status != ReconciliationStatus.BALANCED:
        raise HTTPException(status_code=409, detail=result.issue.message if result.issue else "Operation is not balanced")

    submission = SubmissionPayload(
        operation_id=operation_id,
        kind=payload.kind,
        payload=payload.model_dump(mode="json"),
        line_items=operation.line_items,
        reconciliation=result,
    )
    try:
        return await data_source.submit_operation(submission)
    except SubmissionRejectedError as e:
        logger.warning(f"Operation {operation_id} rejected: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

# ==================== PRICING / PACKAGING ====================

@api_router.post("/pricing/margin", response_model=PricingResponse)
async def pricing_margin(data: PricingRequest):
    return PricingResponse(
        margin_percent=margin_percent(data.retail_price, data.wholesale_price),
        markup_percent=markup_percent(data.retail_price, data.wholesale_price),
    )

@api_router.post("/packaging/loss", response_model=PackagingLoss)
async def packaging_run_loss(data: PackagingLossRequest):
    return packaging_loss(data.volume_taken_l, data.units_produced, data.package_size_ml)

# ==================== CARBONATION ====================

@api_router.post("/carbonation/co2-volumes")
async def carbonation_co2_volumes(data: CO2VolumesRequest):
    volumes = calculate_co2_volumes(data.pressure_psi, data.temperature_c)
    level = get_carbonation_level(volumes)
    return {
        "co2_volumes": volumes,
        "level": level.value,
        "label": CO2_RANGES[level]["label"],
        "temperature": validate_temperature(data.temperature_c).model_dump(),
    }

@api_router.post("/carbonation/required-pressure")
async def carbonation_required_pressure(data: RequiredPressureRequest):
    pressure = calculate_required_pressure(data.target_co2_volumes, data.temperature_c)
    response = {
        "pressure_psi": pressure,
        "estimated_hours": estimate_carbonation_duration(data.current_co2_volumes, data.target_co2_volumes, pressure),
        "temperature": validate_temperature(data.temperature_c).model_dump(),
    }
    if data.vessel_max_pressure_psi is not None:
        response["pressure_safe"] = is_pressure_safe(pressure, data.vessel_max_pressure_psi)
    return response

@api_router.post("/carbonation/priming-sugar")
async def carbonation_priming_sugar(data: PrimingSugarRequest):
    grams = calculate_priming_sugar(
        data.target_co2_volumes,
        data.volume_liters,
        data.residual_co2_volumes,
        data.sugar_type,
    )
    return {"sugar_grams": grams, "sugar_type": data.sugar_type.value}

app.include_router(api_router)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@app.on_event("startup")
async def startup_event():
    try:
        await db.operation_contexts.create_index([("id", 1)], unique=True, name="operation_id_unique")
        await db.operation_line_items.create_index([("operation_id", 1)], name="operation_id_idx")
        logging.info("Operation indexes created")
    except Exception as e:
        logging.warning(f"Failed to create operation indexes: {e}")

@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
