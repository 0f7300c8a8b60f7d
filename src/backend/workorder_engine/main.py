from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from workorder_engine.config import settings
from workorder_engine.routers import review, templates, upload
from workorder_engine.services.pdf_engine import PyMuPDFEngine
from workorder_engine.utils.log_config import configure_logging

app = FastAPI(
    title=settings.APP_NAME,
    description="Signed work-order geometry and decision engine",
    version="0.1.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    configure_logging(settings.LOG_LEVEL)
    # One engine handle for the process, passed to services per request
    app.state.pdf_engine = PyMuPDFEngine()


@app.get("/")
async def root():
    return {
        "message": settings.APP_NAME,
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(upload.router)
app.include_router(review.router)
app.include_router(templates.router)
