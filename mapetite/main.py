"""
FastAPI application with all routes.
"""
import logging

from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.middleware.cors import CORSMiddleware

from mapetite.config import get_settings
from mapetite.detours.routes import router as detour_router
from mapetite.debug.routes import router as debug_router

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mapetite API",
    description="Restaurants along a driving route, ranked by the time a detour adds",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ Auth Dependency ============

def verify_api_key(x_api_key: str = Header(...)) -> str:
    """Verify API key from header."""
    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


app.include_router(detour_router, dependencies=[Depends(verify_api_key)])
app.include_router(debug_router, dependencies=[Depends(verify_api_key)])


# ============ Health Check ============

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
