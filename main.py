import os
import re
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File as FastAPIFile, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

load_dotenv()

import database
from auth import AuthError, authenticate, current_user, hash_password, issue_token, verify_password
from charts import AGGREGATIONS
from database import create_document, get_documents
from insights import summarize_chart, summary_lines
from logger import get_logger, setup_logging
from schemas import Analysis as AnalysisSchema, ChartType, File as FileSchema, User
from spreadsheet import SpreadsheetError, read_headers

setup_logging()
logger = get_logger(__name__)

app = FastAPI(title="SageExcel API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ----------------------
# Error handling
# ----------------------
@app.exception_handler(AuthError)
async def auth_exception_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error("%s failed: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------
# Helpers
# ----------------------
class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class AnalysisRequest(BaseModel):
    chartTitle: Optional[str] = None
    chartType: Optional[str] = None
    selectedFields: Optional[List[Optional[str]]] = None
    chartOptions: Optional[Dict[str, Any]] = None
    filters: Optional[Dict[str, Any]] = None
    fileId: Optional[str] = None
    summary: Optional[Union[List[str], str]] = None


class ChangePasswordRequest(BaseModel):
    oldPassword: Optional[str] = None
    newPassword: Optional[str] = None


class SummaryRequest(BaseModel):
    chartTitle: str = "My Chart"
    chartType: str = "bar"
    headers: List[str] = []
    data: List[Dict[str, Any]] = []


def _collection(name: str):
    return database.get_db()[name]


def _serialize(value: Any) -> Any:
    """Make a Mongo document JSON serializable (ObjectId -> str)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    return value


def _object_id(value: Optional[str], not_found: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=not_found)


def _load_user(profile: Dict[str, Any], projection: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    user_id = _object_id(profile.get("_id"), "user doesnt exist")
    user = _collection("user").find_one({"_id": user_id}, projection)
    if not user:
        raise HTTPException(status_code=404, detail="user doesnt exist")
    return user


def _owned(collection: str, doc_id: str, owner_field: str, profile: Dict[str, Any], not_found: str,
           projection: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    doc = _collection(collection).find_one({"_id": _object_id(doc_id, not_found)}, projection)
    if not doc or str(doc.get(owner_field)) != profile.get("_id"):
        raise HTTPException(status_code=404, detail=not_found)
    return doc


def _update_refs(collection: str, doc_id: ObjectId, op: str, field: str, ref_id: ObjectId) -> None:
    result = _collection(collection).update_one({"_id": doc_id}, {op: {field: ref_id}})
    if result.matched_count == 0:
        logger.warning("Back-reference %s on %s.%s matched no document %s (ref %s)", op, collection, field, doc_id, ref_id)


def _populate(collection: str, ids: List[ObjectId], projection: Dict[str, int]) -> List[Dict[str, Any]]:
    """Resolve a back-reference list, keeping its order and skipping dangling ids."""
    docs = {d["_id"]: d for d in _collection(collection).find({"_id": {"$in": list(ids)}}, projection)}
    return [_serialize(docs[i]) for i in ids if i in docs]


# ----------------------
# Auth Endpoints
# ----------------------
@router.post("/register", status_code=201)
def register(req: RegisterRequest):
    name = (req.name or "").strip()
    email = (req.email or "").strip().lower()
    if not name or not email or not req.password:
        raise HTTPException(status_code=400, detail="All fields are required")
    if not re.match(r"[^@]+@[^@]+\.[^@]+", email):
        raise HTTPException(status_code=400, detail="Invalid email")
    if _collection("user").find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")

    try:
        user_id = create_document("user", User(name=name, email=email, password=hash_password(req.password)))
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered")
    logger.info("Registered user %s (%s)", user_id, email)
    return {"message": "User registered"}


@router.post("/login")
def login(req: LoginRequest):
    email = req.email.strip().lower()
    try:
        user = authenticate(_collection("user"), email, req.password)
    except AuthError as e:
        logger.warning("Failed login for %s: %s", email, e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "token": issue_token(user),
        "name": user["name"],
        "isAdmin": bool(user.get("isAdmin", False)),
        "message": "successfully logged in",
    }


@router.post("/verify")
def verify(profile: Dict[str, Any] = Depends(current_user)):
    return {"message": "user is verified"}


@router.get("/getUser")
def get_user(profile: Dict[str, Any] = Depends(current_user)):
    return {"user": _serialize(_load_user(profile, {"password": 0}))}


@router.put("/changePassword")
def change_password(req: ChangePasswordRequest, profile: Dict[str, Any] = Depends(current_user)):
    if not req.oldPassword or not req.newPassword:
        raise HTTPException(status_code=400, detail="Old and new password are required")
    user = _load_user(profile)
    if not verify_password(req.oldPassword, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Old password is incorrect")

    _collection("user").update_one({"_id": user["_id"]}, {"$set": {"password": hash_password(req.newPassword)}})
    logger.info("Password changed for user %s", user["_id"])
    return {"message": "Password changed successfully"}


# ----------------------
# Files: Upload, List, Download, Delete
# ----------------------
@router.post("/upload")
def upload_file(file: Optional[UploadFile] = FastAPIFile(None), profile: Dict[str, Any] = Depends(current_user)):
    if file is None:
        raise HTTPException(status_code=400, detail="No file Uploaded")
    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file Uploaded")

    user = _load_user(profile)
    content_type = file.content_type or "application/octet-stream"
    try:
        headers = read_headers(content, file.filename, content_type)
    except SpreadsheetError as e:
        raise HTTPException(status_code=400, detail=str(e))

    file_doc = FileSchema(
        filename=file.filename or "upload",
        headers=headers,
        size=len(content),
        uploadedBy=user["_id"],
        contentType=content_type,
        data=content,
    )
    file_id = create_document("file", file_doc)
    _update_refs("user", user["_id"], "$push", "uploadedFiles", ObjectId(file_id))
    logger.info("File %s (%s, %d bytes) uploaded by %s", file_id, file_doc.filename, file_doc.size, user["email"])
    return {"message": "File uploaded successfully", "fileId": file_id, "headers": headers}


@router.get("/getFiles")
def list_files(profile: Dict[str, Any] = Depends(current_user)):
    user = _load_user(profile)
    return {"files": _populate("file", user.get("uploadedFiles", []), {"data": 0})}


@router.get("/download/{file_id}")
def download_file(file_id: str, profile: Dict[str, Any] = Depends(current_user)):
    doc = _owned("file", file_id, "uploadedBy", profile, "file not found")
    return Response(
        content=bytes(doc["data"]),
        media_type=doc["contentType"],
        headers={"Content-Disposition": f'attachment; filename="{doc["filename"]}"'},
    )


@router.get("/preview/{file_id}")
def preview_file(file_id: str, profile: Dict[str, Any] = Depends(current_user)):
    doc = _owned("file", file_id, "uploadedBy", profile, "File not found")
    return Response(content=bytes(doc["data"]), media_type=doc["contentType"])


@router.delete("/delete/{file_id}")
def delete_file(file_id: str, profile: Dict[str, Any] = Depends(current_user)):
    doc = _owned("file", file_id, "uploadedBy", profile, "file not found", {"data": 0})
    _collection("file").delete_one({"_id": doc["_id"]})
    _update_refs("user", doc["uploadedBy"], "$pull", "uploadedFiles", doc["_id"])
    if doc.get("analyses"):
        logger.info("File %s deleted with %d saved analyses still referencing it", doc["_id"], len(doc["analyses"]))
    return {"message": "File deleted successfully"}


# ----------------------
# Analyses
# ----------------------
@router.post("/saveAnalysis", status_code=201)
def save_analysis(req: AnalysisRequest, profile: Dict[str, Any] = Depends(current_user)):
    if not req.chartType or not req.selectedFields or not req.fileId:
        raise HTTPException(status_code=400, detail="Missing required fields.")
    try:
        chart_type = ChartType(req.chartType)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported chart type: {req.chartType}")

    user = _load_user(profile, {"password": 0})
    source = _owned("file", req.fileId, "uploadedBy", profile, "file not found", {"data": 0})
    chart_options = req.chartOptions or {}
    if chart_options.get("aggregation") and chart_options["aggregation"] not in AGGREGATIONS:
        raise HTTPException(status_code=400, detail=f"Unsupported aggregation: {chart_options['aggregation']}")

    analysis = AnalysisSchema(
        userId=user["_id"],
        fileId=source["_id"],
        chartTitle=req.chartTitle or chart_options.get("title"),
        chartType=chart_type,
        selectedFields=req.selectedFields,
        chartOptions=chart_options,
        filters=req.filters or {},
        summary=summary_lines(req.summary),
    )
    analysis_id = ObjectId(create_document("analysis", analysis))
    _update_refs("user", user["_id"], "$push", "savedAnalyses", analysis_id)
    _update_refs("file", source["_id"], "$push", "analyses", analysis_id)
    logger.info("Analysis %s (%s) saved for file %s", analysis_id, chart_type.value, source["_id"])

    doc = _collection("analysis").find_one({"_id": analysis_id})
    return {"message": "Analysis saved successfully", "analysis": _serialize(doc)}


@router.get("/getAnalysis")
def list_analyses(profile: Dict[str, Any] = Depends(current_user)):
    user_id = _object_id(profile.get("_id"), "user doesnt exist")
    return {"analysis": _serialize(get_documents("analysis", {"userId": user_id}))}


@router.get("/analysis/{analysis_id}")
def get_analysis(analysis_id: str, profile: Dict[str, Any] = Depends(current_user)):
    return _serialize(_owned("analysis", analysis_id, "userId", profile, "Chart not found"))


@router.delete("/analysis/{analysis_id}")
def delete_analysis(analysis_id: str, profile: Dict[str, Any] = Depends(current_user)):
    doc = _owned("analysis", analysis_id, "userId", profile, "Analysis not found")
    _collection("analysis").delete_one({"_id": doc["_id"]})
    _update_refs("user", doc["userId"], "$pull", "savedAnalyses", doc["_id"])
    _update_refs("file", doc["fileId"], "$pull", "analyses", doc["_id"])
    return {"message": "Analysis deleted successfully"}


@router.post("/summary")
def generate_summary(req: SummaryRequest, profile: Dict[str, Any] = Depends(current_user)):
    return {"summary": summarize_chart(req.chartTitle, req.chartType, req.headers, req.data)}


# ----------------------
# Dashboard & Admin
# ----------------------
@router.get("/getData")
def dashboard_summary(profile: Dict[str, Any] = Depends(current_user)):
    user = _load_user(profile)
    return {
        "files": _populate("file", user.get("uploadedFiles", []), {"filename": 1, "uploadDate": 1}),
        "analyses": _populate("analysis", user.get("savedAnalyses", []), {"chartTitle": 1, "createdAt": 1}),
    }


@router.get("/getAllUsers")
def list_users(profile: Dict[str, Any] = Depends(current_user)):
    # role is read from the store, not the token, so revoked admins lose access at once
    caller = _load_user(profile, {"isAdmin": 1})
    if not caller.get("isAdmin"):
        raise HTTPException(status_code=403, detail="Admin access required")

    users = _collection("user").find({}, {"password": 0})
    return {
        "users": [
            {
                "_id": str(u["_id"]),
                "name": u.get("name"),
                "isAdmin": bool(u.get("isAdmin", False)),
                "filesUploaded": len(u.get("uploadedFiles") or []),
                "analysesMade": len(u.get("savedAnalyses") or []),
            }
            for u in users
        ]
    }


app.include_router(router)


@app.on_event("startup")
def startup_event():
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; database unavailable")
    logger.info("SageExcel API ready")


@app.get("/")
def root():
    return {"name": "SageExcel API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is not None:
        response["connection_status"] = "Connected"
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "Connected & Working"
        except Exception as e:
            response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
