from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from onboarding.api.routes import router
from onboarding.api.admin_routes import router as admin_router
from onboarding.api.webhook_routes import router as webhook_router
from onboarding.errors import OnboardingError
from onboarding.observability.logging import log
from onboarding.settings import settings

app = FastAPI(title="Merchant Onboarding API")

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)
app.include_router(webhook_router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.exception_handler(OnboardingError)
async def onboarding_error_handler(request: Request, exc: OnboardingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [
        {
            "field": ".".join(str(p) for p in (e.get("loc") or ())[1:]) or "body",
            "message": e.get("msg", ""),
            "code": "INVALID_FIELD",
        }
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {"code": "VALIDATION_ERROR", "message": "Request validation failed", "fields": fields},
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log(event="unhandled_exception", level="error", path=request.url.path, method=request.method,
        errorType=type(exc).__name__, error=str(exc)[:300])
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": {"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error"}},
    )


log(
    event="app_boot",
    environment=settings.ENVIRONMENT,
    webhookSecretConfigured=bool(settings.WEBHOOK_SECRET),
    notificationsEnabled=settings.NOTIFICATIONS_ENABLED,
    callbackUrl=settings.bank_callback_url,
)
if not settings.WEBHOOK_SECRET:
    log(event="webhook_secret_missing", level="warning",
        detail="all bank webhooks will be rejected until WEBHOOK_SECRET is set")
