import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import jwt
import uvicorn
from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from datachat import config
from datachat.chart_normalizer import ChartSpec, normalize_chart_response
from datachat.chart_renderer import render_chart, render_png
from datachat.dashboard_generator import NoDataError, generate_dashboard
from datachat.file_ingestor import (
    UnsupportedFileError,
    build_preview,
    describe_columns,
    load_dataframe,
    read_upload,
    validate_filename,
)
from datachat.gemini_client import (
    AIServiceError,
    GeminiClient,
    PaymentRequiredError,
    RateLimitError,
)
from datachat.prompt_composer import (
    EmptyPromptError,
    compose_chart_prompt,
    compose_prompt,
)
from datachat.supabase_store import SupabaseStore

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("datachat.api")

GENERIC_AI_ERROR = "Failed to get AI response. Please try again."
ANONYMOUS_USER = "anonymous"


# Pydantic models for request/response
class InvokeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    type: str = "general"
    dataset_id: Optional[str] = Field(default=None, alias="datasetId")


class ChatRequest(BaseModel):
    question: str
    file_id: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    execution_time: Optional[float] = None


class ChartRequest(BaseModel):
    prompt: str
    file_id: Optional[str] = None


class DashboardRequest(BaseModel):
    file_id: str


class FileUploadResponse(BaseModel):
    success: bool
    file_id: str
    file_name: str
    file_size: int
    columns: List[str]
    shape: List[int]
    preview: Dict[str, Any]


# Initialize FastAPI app
app = FastAPI(title="DataChat Insights API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

gemini_client: Optional[GeminiClient] = None
store = SupabaseStore()

# In-memory storage for uploaded files, keyed by file id
user_files: Dict[str, Dict[str, Any]] = {}


@app.on_event("startup")
async def startup_event():
    """Initialize the gateway client on startup"""
    global gemini_client
    try:
        gemini_client = GeminiClient()
        logger.info("Gemini client initialized")
    except ValueError as e:
        logger.error("Failed to initialize Gemini client: %s", e)
        gemini_client = None


security = HTTPBearer(auto_error=False)


def decode_user(token: str) -> Dict[str, Any]:
    """Read the user from a Supabase JWT; verified when a secret is configured"""
    if config.SUPABASE_JWT_SECRET:
        payload = jwt.decode(
            token,
            config.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience="authenticated",
        )
    else:
        logger.warning("SUPABASE_JWT_SECRET not configured, token signature not verified")
        payload = jwt.decode(token, options={"verify_signature": False})

    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token has no subject")
    return {"user_id": user_id, "email": payload.get("email")}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Dict[str, Any]:
    """Extract user info from a Supabase JWT token"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        return decode_user(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info("JWT decode error: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_optional_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Optional[str]:
    if not credentials:
        return None
    try:
        return decode_user(credentials.credentials)["user_id"]
    except jwt.InvalidTokenError:
        return None


def require_client() -> GeminiClient:
    if gemini_client is None:
        raise HTTPException(status_code=503, detail="AI service not configured")
    return gemini_client


def get_file(file_id: str, user_id: Optional[str]) -> Dict[str, Any]:
    """Look up an uploaded file; only its uploader may use it"""
    if file_id not in user_files:
        raise HTTPException(
            status_code=404, detail="File not found. Please upload a file first."
        )

    file_info = user_files[file_id]
    if file_info["user_id"] != (user_id or ANONYMOUS_USER):
        raise HTTPException(status_code=403, detail="Access denied")
    return file_info


def file_context(
    file_id: Optional[str], user_id: Optional[str]
) -> Tuple[Optional[str], Optional[str]]:
    if not file_id:
        return None, None
    file_info = get_file(file_id, user_id)
    return file_info["text"], file_info["name"]


def ai_error_to_http(error: AIServiceError) -> HTTPException:
    if isinstance(error, RateLimitError):
        return HTTPException(
            status_code=429, detail="Rate limit exceeded. Please try again later."
        )
    if isinstance(error, PaymentRequiredError):
        return HTTPException(
            status_code=402,
            detail="Payment required. Please add credits to your workspace.",
        )
    return HTTPException(status_code=502, detail=GENERIC_AI_ERROR)


def log_request(
    query: str,
    request_type: str,
    start_time: datetime,
    user_id: Optional[str],
    file_id: Optional[str] = None,
    result: Any = None,
    error: Optional[str] = None,
) -> None:
    if not store.enabled:
        return

    dataset_info = None
    if file_id and file_id in user_files:
        file_info = user_files[file_id]
        dataset_info = {
            "file_id": file_id,
            "file_name": file_info["name"],
            "shape": file_info["shape"],
            "columns": file_info["columns"],
        }

    store.log_query(
        query=query,
        request_type=request_type,
        result=result,
        error=error,
        success=error is None,
        execution_time=(datetime.now() - start_time).total_seconds(),
        dataset_info=dataset_info,
        user_id=user_id,
    )


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "message": "DataChat Insights API is running",
        "ai_available": gemini_client is not None,
        "supabase_available": store.enabled,
    }


@app.post("/api/ai/invoke")
def invoke_ai(request: InvokeRequest, user_id: Optional[str] = Depends(get_optional_user_id)):
    """Send a prompt to the model and return its raw payload"""
    start_time = datetime.now()
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    client = require_client()
    text, name = file_context(request.dataset_id, user_id)
    compose = compose_chart_prompt if request.type == "chart" else compose_prompt
    prompt = compose(request.prompt, text, name)

    try:
        result = client.invoke(prompt, request.type, dataset_id=request.dataset_id)
    except AIServiceError as e:
        logger.error("AI invocation failed: %s", e)
        log_request(
            request.prompt, request.type, start_time, user_id, request.dataset_id, error=str(e)
        )
        raise ai_error_to_http(e)

    log_request(request.prompt, request.type, start_time, user_id, request.dataset_id, result=result)
    return result


@app.post("/api/chat", response_model=ChatResponse)
def chat(request: ChatRequest, user_id: Optional[str] = Depends(get_optional_user_id)):
    """Answer a question, with the uploaded file as context when one is given"""
    start_time = datetime.now()

    try:
        text, name = file_context(request.file_id, user_id)
        prompt = compose_prompt(request.question, text, name)
    except EmptyPromptError:
        raise HTTPException(status_code=400, detail="Question cannot be empty")

    client = require_client()
    try:
        result = client.invoke(prompt, "general", dataset_id=request.file_id)
    except AIServiceError as e:
        logger.error("Chat request failed: %s", e)
        log_request(request.question, "general", start_time, user_id, request.file_id, error=str(e))
        raise ai_error_to_http(e)

    log_request(request.question, "general", start_time, user_id, request.file_id, result=result)
    return ChatResponse(
        response=result["response"],
        execution_time=(datetime.now() - start_time).total_seconds(),
    )


@app.post("/api/charts/generate")
def generate_chart(request: ChartRequest, user_id: Optional[str] = Depends(get_optional_user_id)):
    """Ask for chart recommendations and return the normalized and rendered chart"""
    start_time = datetime.now()

    try:
        text, name = file_context(request.file_id, user_id)
        prompt = compose_chart_prompt(request.prompt, text, name)
    except EmptyPromptError:
        raise HTTPException(status_code=400, detail="Please enter a chart description")

    client = require_client()
    try:
        raw = client.invoke(prompt, "chart", dataset_id=request.file_id)
    except AIServiceError as e:
        logger.error("Chart request failed: %s", e)
        log_request(request.prompt, "chart", start_time, user_id, request.file_id, error=str(e))
        raise ai_error_to_http(e)

    spec = normalize_chart_response(raw)
    rendered = render_chart(spec)
    log_request(
        request.prompt, "chart", start_time, user_id, request.file_id, result=spec.to_payload()
    )
    return {"chart": spec.to_payload(), "rendered": rendered.to_payload()}


@app.post("/api/charts/render")
def render_chart_spec(spec: ChartSpec):
    """Key inference and chart-type dispatch for an existing ChartSpec"""
    return render_chart(spec).to_payload()


@app.post("/api/charts/render.png")
def render_chart_png(spec: ChartSpec):
    png = render_png(render_chart(spec))
    return Response(content=png, media_type="image/png")


@app.post("/api/files/upload", response_model=FileUploadResponse)
def upload_file(
    file: UploadFile = File(...), user_id: Optional[str] = Depends(get_optional_user_id)
):
    """Upload and process a CSV/Excel file for the signed-in user (or anonymously)"""
    try:
        validate_filename(file.filename)
    except UnsupportedFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    owner = user_id or ANONYMOUS_USER
    content = file.file.read()
    try:
        df = load_dataframe(file.filename, content)
        text = read_upload(file.filename, content)
    except Exception as e:
        logger.error("File upload error for %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=f"Could not read file: {e}")

    file_id = f"{owner}_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{file.filename}"
    columns = [str(column) for column in df.columns]

    user_files[file_id] = {
        "id": file_id,
        "name": file.filename,
        "size": len(content),
        "upload_date": datetime.now().isoformat(),
        "columns": columns,
        "shape": list(df.shape),
        "dataframe": df,
        "text": text,
        "user_id": owner,
    }
    store.register_dataset(file_id, file.filename, columns, len(df), owner)
    logger.info("Stored %s as %s (%d rows)", file.filename, file_id, len(df))

    return FileUploadResponse(
        success=True,
        file_id=file_id,
        file_name=file.filename,
        file_size=len(content),
        columns=columns,
        shape=list(df.shape),
        preview=build_preview(df),
    )


@app.get("/api/files/{file_id}/datatypes")
def get_file_datatypes(file_id: str, user_id: Optional[str] = Depends(get_optional_user_id)):
    """Get column datatypes for a specific file"""
    file_info = get_file(file_id, user_id)
    return {
        "success": True,
        "file_name": file_info["name"],
        "datatypes": describe_columns(file_info["dataframe"]),
    }


@app.post("/api/dashboards/generate")
def create_dashboard(
    request: DashboardRequest, user_id: Optional[str] = Depends(get_optional_user_id)
):
    """Generate a whole dashboard configuration for an uploaded file"""
    start_time = datetime.now()
    file_info = get_file(request.file_id, user_id)
    client = require_client()

    try:
        result = generate_dashboard(client, file_info["text"], file_info["name"])
    except NoDataError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AIServiceError as e:
        logger.error("Dashboard generation failed: %s", e)
        log_request(file_info["name"], "dashboard", start_time, user_id, request.file_id, error=str(e))
        raise ai_error_to_http(e)

    log_request(
        file_info["name"], "dashboard", start_time, user_id, request.file_id,
        result=result["dashboardConfig"],
    )
    return {"success": True, **result}


@app.get("/api/datasets")
def list_datasets(current_user: dict = Depends(get_current_user)):
    """Datasets for the optional dataset selector"""
    return {"datasets": store.list_datasets(current_user["user_id"])}


@app.get("/api/query/history")
def get_query_history(limit: int = 50, current_user: dict = Depends(get_current_user)):
    """Get the user's query history from Supabase"""
    if not store.enabled:
        return {"queries": [], "message": "Query history not available"}

    history = store.get_query_history(limit=limit, user_id=current_user["user_id"])
    return {"queries": history}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
