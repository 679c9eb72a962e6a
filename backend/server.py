from fastapi import FastAPI, APIRouter
from dotenv import load_dotenv
load_dotenv()  # Load .env file before any os.environ calls
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from services import legal_config
from services.configuration_service import ConfigurationService
from services.permission_service import create_permission_service
from services.request_store import MongoRequestStore
from services.time_tracking_service import TimeTrackingService
from services.workflow_engine import WorkflowEngine
from routes import requests_router, set_requests_deps

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# MongoDB connection
client = AsyncIOMotorClient(legal_config.MONGO_URL)
db = client[legal_config.DB_NAME]

# ==================== WORKFLOW WIRING ====================

request_store = MongoRequestStore(db, legal_config.REQUESTS_COLLECTION, max_retries=legal_config.STORE_MAX_RETRIES)
configuration_service = ConfigurationService(db)
time_tracking_service = TimeTrackingService(configuration_service)
workflow_engine = WorkflowEngine(
    store=request_store,
    permission_service=create_permission_service(),
    time_tracking=time_tracking_service,
)

app = FastAPI(title="Legal Review Hub API")
api_router = APIRouter(prefix="/api")

set_requests_deps(workflow_engine)
api_router.include_router(requests_router)

# ==================== APP SETUP ====================

app.include_router(api_router)

@app.get("/api/health")
async def health_check():
    """Health check endpoint for Docker/Kubernetes liveness checks."""
    return {"status": "healthy", "service": "legal-review-hub"}

@app.post("/api/configuration/working-hours/refresh")
async def refresh_working_hours():
    """Drop the cached working-hours calendar so the next accrual reloads it."""
    configuration_service.clear_cache()
    config = await configuration_service.get_working_hours_config()
    return {"working_hours": config.to_dict()}

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    await db[legal_config.REQUESTS_COLLECTION].create_index("id", unique=True)
    await db[legal_config.REQUESTS_COLLECTION].create_index("status")
    await db[legal_config.CONFIGURATION_COLLECTION].create_index("key")
    logger.info(
        "Legal Review Hub started. Permissions integration: %s, working hours tz: %s",
        legal_config.AZURE_FUNCTIONS_ENABLED, legal_config.WORKING_HOURS_TIMEZONE
    )

@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
