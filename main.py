from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.auth import router as auth_router
from routers.documents import router as documents_router
from routers.chat import router as chat_router
from routers.history import router as history_router
from utils.logging_config import init_logging, install_request_logging
from utils.exception_handlers import install_exception_handlers

app = FastAPI(
    title="Legal Document Analyzer API",
    description="Upload contracts, run AI risk analysis in the background, chat about results and export PDF reports.",
    version="1.0.0"
)

# Initialize logging and request middleware
init_logging()
install_request_logging(app)
install_exception_handlers(app)

app.include_router(auth_router)
app.include_router(documents_router)
app.include_router(chat_router)
app.include_router(history_router)

# CORS settings (adjust origins as needed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Legal Document Analyzer API"}
