##########
# Imports
##########
from fastapi import FastAPI, Depends, Request, Query, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.exceptions import HTTPException
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, Literal
from datetime import datetime, timedelta, timezone
import jwt
import bcrypt
import logging
import os
from dotenv import load_dotenv
# MongoDB
from motor.motor_asyncio import AsyncIOMotorClient

from utils.errors import QAError, AuthError, ForbiddenError, ValidationError
from utils.markdown_utils import convert_markdown
from utils.stats import UserStats, user_stats
from utils.store import ItemRef, QuestionStore, UserStore, ensure_indexes, SORT_RECENT
from utils.votes import Direction, VoteTally


#################
# Configuration
#################
# Secret key and JWT config
load_dotenv()
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-this")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7"))

# MongoDB config
MONGODB_URL = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "fastqa")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


#####################
# FastAPI App Setup
#####################
app = FastAPI(title="FastQA", description="Question and answer API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


##########
# Security
##########
# HTTP Bearer token dependency
security = HTTPBearer(auto_error=False)


######################
# Database Connection
######################
client = AsyncIOMotorClient(MONGODB_URL)
db = client[DATABASE_NAME]


def get_db():
    return db


#################
# Pydantic Models
#################
class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=80)
    email: EmailStr
    password: str = Field(..., min_length=1)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class QuestionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1)

class AnswerCreate(BaseModel):
    content: str = Field(..., min_length=1)

class VoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vote_type: Literal["upvote", "downvote"] = Field(..., alias="voteType")


######################
# Utility Functions
######################

##########
# JWT Token
##########
def create_access_token(data: dict):
    """Create JWT token with expiration"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def verify_token(token: str):
    """Verify JWT token, return payload or None if invalid"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.PyJWTError:
        return None

def token_for(user: dict):
    return create_access_token({
        "user_id": user["user_id"],
        "username": user["username"],
        "email": user["email"],
    })

##########
# Passwords
##########
def hash_password(password: str):
    """Hash password using bcrypt"""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

def verify_password(password: str, hashed: str):
    """Verify password against hashed value"""
    return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))

##########
# Serialization
##########
def isoformat(value):
    if value is None:
        return None
    if value.tzinfo is None:
        # MongoDB hands back naive UTC datetimes
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()

def serialize_author(user_id: str, username: Optional[str]):
    return {"id": user_id, "username": username}

def serialize_answer(answer: dict, viewer_id: Optional[str] = None):
    return {
        "id": answer["answer_id"],
        "questionId": answer["question_id"],
        "content": answer["content"],
        "contentHtml": convert_markdown(answer["content"]),
        "author": serialize_author(answer["author"], answer.get("author_name")),
        "createdAt": isoformat(answer.get("created_at")),
        "upvotes": list(answer.get("upvotes", [])),
        "downvotes": list(answer.get("downvotes", [])),
        **votes_summary(answer, viewer_id),
    }

def serialize_question(question: dict, viewer_id: Optional[str] = None):
    return {
        "id": question["question_id"],
        "title": question["title"],
        "content": question["content"],
        "contentHtml": convert_markdown(question["content"]),
        "author": serialize_author(question["author"], question.get("author_name")),
        "createdAt": isoformat(question.get("created_at")),
        "updatedAt": isoformat(question.get("updated_at")),
        "answers": [serialize_answer(a, viewer_id) for a in question.get("answers", [])],
        "upvotes": list(question.get("upvotes", [])),
        "downvotes": list(question.get("downvotes", [])),
        **votes_summary(question, viewer_id),
    }

def votes_summary(item: dict, viewer_id: Optional[str]):
    tally = VoteTally.from_item(item, viewer_id)
    return {"score": tally.score, "userVote": tally.to_dict()["userVote"]}

def serialize_user(user: dict):
    return {"id": user["user_id"], "username": user["username"], "email": user["email"]}

##########
# Current User
##########
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Return current user if token is valid, else None"""
    if not credentials:
        return None

    payload = verify_token(credentials.credentials)
    if not payload:
        return None

    return await UserStore(db).get_user(payload.get("user_id"))

async def get_current_user_required(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Return current user or raise 401/403 if not authenticated"""
    if not credentials:
        raise AuthError("Access token required")

    payload = verify_token(credentials.credentials)
    if not payload:
        raise ForbiddenError("Invalid token")

    user = await UserStore(db).get_user(payload.get("user_id"))
    if not user:
        raise AuthError("User no longer exists")
    return user

def viewer_id(user: Optional[dict]):
    return user["user_id"] if user else None


##################
# Error Handlers
##################
@app.exception_handler(QAError)
async def qa_error_handler(request: Request, exc: QAError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": message})


##############
# Startup Hook
##############
@app.on_event("startup")
async def startup_event():
    """Initialize DB indexes on startup"""
    await ensure_indexes(db)


##########
# Routes
##########
@app.get("/")
async def read_root():
    return {"message": "FastQA API running"}


##########
# Authentication
##########
@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
async def register(payload: UserCreate, db=Depends(get_db)):
    """Create a user and log them in"""
    user = await UserStore(db).create_user(
        payload.username, payload.email, hash_password(payload.password)
    )
    return {"token": token_for(user), "user": serialize_user(user)}

@app.post("/api/auth/login")
async def login(payload: UserLogin, db=Depends(get_db)):
    user = await UserStore(db).find_by_email(payload.email)
    if not user or not verify_password(payload.password, user["password"]):
        raise AuthError("Invalid credentials")
    return {"token": token_for(user), "user": serialize_user(user)}

@app.get("/api/auth/me")
async def me(user: dict = Depends(get_current_user_required)):
    return serialize_user(user)


##################
# Questions
##################
@app.get("/api/questions")
async def list_questions(
    sort: Literal["recent", "popular"] = Query(SORT_RECENT),
    user: Optional[dict] = Depends(get_current_user),
    db=Depends(get_db),
):
    questions = await QuestionStore(db).list_questions(sort)
    return [serialize_question(question, viewer_id(user)) for question in questions]

@app.get("/api/questions/{question_id}")
async def get_question(
    question_id: str,
    user: Optional[dict] = Depends(get_current_user),
    db=Depends(get_db),
):
    question = await QuestionStore(db).get_question(question_id)
    return serialize_question(question, viewer_id(user))

@app.post("/api/questions", status_code=status.HTTP_201_CREATED)
async def create_question(
    payload: QuestionCreate,
    user: dict = Depends(get_current_user_required),
    db=Depends(get_db),
):
    question = await QuestionStore(db).create_question(user["user_id"], payload.title, payload.content)
    return serialize_question(question, user["user_id"])

@app.post("/api/questions/{question_id}/vote")
async def vote_question(
    question_id: str,
    payload: VoteRequest,
    user: dict = Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Toggle the caller's vote on a question"""
    tally = await QuestionStore(db).cast_vote(
        ItemRef(question_id), user["user_id"], Direction(payload.vote_type)
    )
    return {"message": "Vote recorded", **tally.to_dict()}


##################
# Answers
##################
@app.post("/api/questions/{question_id}/answers", status_code=status.HTTP_201_CREATED)
async def create_answer(
    question_id: str,
    payload: AnswerCreate,
    user: dict = Depends(get_current_user_required),
    db=Depends(get_db),
):
    answer = await QuestionStore(db).append_answer(question_id, user["user_id"], payload.content)
    return serialize_answer(answer, user["user_id"])

@app.post("/api/questions/{question_id}/answers/{answer_id}/vote")
async def vote_answer(
    question_id: str,
    answer_id: str,
    payload: VoteRequest,
    user: dict = Depends(get_current_user_required),
    db=Depends(get_db),
):
    """Toggle the caller's vote on an answer"""
    tally = await QuestionStore(db).cast_vote(
        ItemRef(question_id, answer_id), user["user_id"], Direction(payload.vote_type)
    )
    return {"message": "Vote recorded", **tally.to_dict()}


#############
# Users
#############
@app.get("/api/users/stats", response_model=UserStats)
async def stats(user: dict = Depends(get_current_user_required), db=Depends(get_db)):
    return await user_stats(db, user["user_id"])

@app.get("/api/users/questions")
async def my_questions(user: dict = Depends(get_current_user_required), db=Depends(get_db)):
    questions = await QuestionStore(db).list_questions_by_author(user["user_id"])
    return [serialize_question(q, user["user_id"]) for q in questions]


#############
# Search
#############
@app.get("/api/search")
async def search(
    q: Optional[str] = Query(None),
    user: Optional[dict] = Depends(get_current_user),
    db=Depends(get_db),
):
    if not q or not q.strip():
        raise ValidationError("Search query required")
    questions = await QuestionStore(db).find_by_text(q.strip())
    return [serialize_question(question, viewer_id(user)) for question in questions]


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
