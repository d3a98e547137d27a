from fastapi import FastAPI, HTTPException, Depends, Query, status, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Optional, List, Dict, Any, Callable
from datetime import datetime, timedelta, timezone
import asyncio
import math
import time
import uuid

import jwt

import performance
from auth_gates import (
    authenticate_request,
    get_current_user,
    public_user,
    require_admin,
    require_roles,
)
from config import Settings, get_settings
from database import get_db
from email_service import send_password_reset_email
from mongodb_manager import MongoDBManager, DuplicateRecordError, normalize_email, utc_now
from schemas import (
    AdminSignupRequest,
    AdmissionCreateRequest,
    AdmissionUpdateRequest,
    AttendanceMarkRequest,
    ChangePasswordRequest,
    CheckEmailRequest,
    ClassPerformanceRequest,
    CompleteRegistrationRequest,
    ExamResultRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MonthlyAttendanceRequest,
    ParentCreateRequest,
    ParentUpdateRequest,
    PerformanceReviewRequest,
    PerformanceScoresRequest,
    ResetPasswordRequest,
    StudentCreateRequest,
    StudentPerformanceCreateRequest,
    StudentRemarkRequest,
    StudentUpdateRequest,
    SubjectAssignmentRequest,
    TeacherAttendanceRequest,
    TeacherCreateRequest,
    TeacherInfoUpdateRequest,
    TeacherPerformanceCreateRequest,
    TeacherRemarkRequest,
    TeacherUpdateRequest,
    UpdateProfileRequest,
)
from security import (
    create_access_token,
    decode_token,
    generate_temporary_password,
    get_password_hash,
    session_payload,
    verify_password,
)

settings = get_settings()

app = FastAPI(title="School Administration API")

# CORS Configuration
# In production set CORS_ORIGINS to a comma-separated list, e.g.
#   CORS_ORIGINS=https://school.example.com,https://admin.school.example.com
cors_kwargs: Dict[str, Any] = {
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
}

if settings.cors_origins:
    # Strict allow-list
    cors_kwargs["allow_origins"] = settings.cors_origins
else:
    # Dev-friendly defaults (localhost + LAN IPs for phone/tablet testing)
    cors_kwargs["allow_origins"] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    cors_kwargs["allow_origin_regex"] = r"https?://(localhost|127\.0\.0\.1|\d+\.\d+\.\d+\.\d+)(:\d+)?$"

app.add_middleware(CORSMiddleware, **cors_kwargs)

# ==================== TIMEOUT MIDDLEWARE ====================

class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce request timeouts
    Prevents requests from hanging indefinitely
    """

    def __init__(self, app, timeout: int = 30):
        super().__init__(app)
        self.timeout = timeout
        print(f"✅ Timeout middleware enabled: {timeout}s per request")

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()

        try:
            response = await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout
            )

            # Log slow requests
            duration = time.time() - start_time
            if duration > 5:
                print(f"⚠️ Slow request: {request.method} {request.url.path} took {duration:.2f}s")

            return response

        except asyncio.TimeoutError:
            duration = time.time() - start_time
            print(f"⏱️ Request timeout: {request.method} {request.url.path} after {duration:.2f}s")

            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={
                    "success": False,
                    "error": "GATEWAY_TIMEOUT",
                    "detail": f"Request timeout - operation took longer than {self.timeout} seconds",
                    "path": str(request.url.path),
                    "method": request.method
                }
            )
        except Exception as e:
            print(f"❌ Request error: {request.method} {request.url.path} - {str(e)}")
            raise


app.add_middleware(TimeoutMiddleware, timeout=settings.request_timeout_seconds)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        print(f"📥 {request.method} {request.url.path}")

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            status_icon = "✅" if response.status_code < 400 else "❌"
            print(f"{status_icon} {request.method} {request.url.path} - {response.status_code} ({duration:.2f}s)")

            response.headers["X-Process-Time"] = f"{duration:.4f}"
            return response

        except Exception as e:
            duration = time.time() - start_time
            print(f"❌ {request.method} {request.url.path} - ERROR ({duration:.2f}s): {str(e)}")
            raise


# Add after TimeoutMiddleware
app.add_middleware(RequestLoggingMiddleware)

# ==================== ERROR HANDLERS ====================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content: Dict[str, Any] = {"success": False}
    if isinstance(exc.detail, dict):
        content.update(exc.detail)
    else:
        content["error"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", []) if part != "body")
        messages.append(f"{field}: {error.get('msg')}" if field else error.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": ", ".join(messages)},
    )


@app.exception_handler(DuplicateRecordError)
async def duplicate_record_handler(request: Request, exc: DuplicateRecordError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"success": False, "error": str(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    print(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}")
    content = {"success": False, "error": "Server error"}
    if get_settings().is_development:
        content["error"] = f"Server error: {str(exc)}"
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# ==================== HELPER FUNCTIONS ====================

# Role gates shared by the performance endpoints; admins always pass
staff_only = require_roles("teacher")
any_member = require_roles("teacher", "student", "parent")


def user_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "username": user["username"],
        "role": user["role"],
        "phone": user.get("phone", ""),
    }


def issue_session_token(user: Dict[str, Any], settings: Settings) -> str:
    return create_access_token(
        data=session_payload(user),
        secret_key=settings.secret_key,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        algorithm=settings.algorithm,
    )


def set_token_cookie(response: Response, token: str, settings: Settings):
    response.set_cookie(
        key="token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        max_age=settings.access_token_expire_minutes * 60,
    )


def current_academic_year(today: Optional[datetime] = None) -> str:
    """Academic years start in July"""
    today = today or datetime.now(timezone.utc)
    if today.month >= 7:
        return f"{today.year}-{today.year + 1}"
    return f"{today.year - 1}-{today.year}"


def new_entry_id() -> str:
    return uuid.uuid4().hex


def email_local_part(email: str) -> str:
    return normalize_email(email).split("@")[0]


def provision_account(
    db: MongoDBManager,
    admin: Dict[str, Any],
    settings: Settings,
    *,
    role: str,
    name: str,
    email: str,
    phone: str,
    username_base: str,
    create_profile: Callable[[str], Dict[str, Any]],
    extra_user_fields: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create the login identity and role profile for a new member.

    The user is created with an empty password so the member can claim the
    account through complete-registration. The temporary access code is only
    returned to the admin.
    """
    if db.get_user_by_email(email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists",
        )

    username = db.generate_username(username_base)
    temporary_password = generate_temporary_password()

    user = db.create_user({
        "name": name,
        "email": email,
        "username": username,
        "phone": phone,
        "role": role,
        "addedBy": admin["id"],
        "isActive": True,
        **(extra_user_fields or {}),
    })

    try:
        profile = create_profile(user["id"])
    except Exception:
        print(f"❌ Profile creation failed, removing user {user['email']}")
        db.delete_user(user["id"])
        raise

    db.update_user(user["id"], **{f"{role}Profile": profile["id"]})
    print(f"✅ {role.upper()} CREATED: {user['email']} (username: {username}) by {admin['email']}")

    return {
        "profile": profile,
        "loginCredentials": {
            "email": user["email"],
            "username": username,
            "temporaryPassword": temporary_password,
            "registrationLink": f"{settings.frontend_url}/complete-registration",
            "note": "Share these details with the user. They set their own password on first sign-in.",
        },
    }


def sync_linked_user(db: MongoDBManager, profile: Dict[str, Any], user_updates: Dict[str, Any],
                     username_base: Optional[str] = None):
    """Mirror identity changes from a profile onto its user"""
    user_id = profile.get("userId")
    user = db.get_user(user_id) if user_id else None
    if not user:
        return

    if username_base is not None:
        user_updates["username"] = db.generate_username(username_base, owner_id=user_id)
    if user_updates:
        db.update_user(user_id, **user_updates)


def ensure_email_available(db: MongoDBManager, email: str, owner_user_id: Optional[str]):
    existing = db.get_user_by_email(email)
    if existing and existing["id"] != owner_user_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists",
        )


def to_number(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{value!r} is not a finite number")
    return int(number) if number.is_integer() else number


def admission_class_code(for_class: str) -> str:
    if for_class in ("Nursery", "LKG", "UKG"):
        return "NUR" if for_class == "Nursery" else for_class
    if for_class.isdigit():
        return f"{int(for_class):02d}"
    return "00"


def generate_admission_code(db: MongoDBManager, academic_year: str, for_class: str) -> str:
    """ADM + year code + class code + 4-digit serial within that year and class"""
    year_code = academic_year[2:4]
    serial = db.count_admissions(academic_year, for_class) + 1
    return f"ADM{year_code}{admission_class_code(for_class)}{serial:04d}"


# ==================== API ENDPOINTS ====================

@app.get("/")
def read_root():
    return {
        "message": "School Administration API",
        "version": "1.0.0",
        "status": "online",
        "database": "MongoDB"
    }


@app.get("/api/health")
def health_check():
    return {
        "success": True,
        "status": "ok",
        "environment": get_settings().app_env,
        "timestamp": utc_now(),
    }


@app.get("/api/stats")
def get_stats(admin: Dict[str, Any] = Depends(require_admin), db: MongoDBManager = Depends(get_db)):
    """Get database statistics"""
    return {"success": True, "data": db.get_database_stats()}


# ==================== AUTH ENDPOINTS ====================

@app.post("/api/auth/check-email")
async def check_email(request: CheckEmailRequest, db: MongoDBManager = Depends(get_db)):
    """Tell the sign-in screen whether this account still needs a password"""
    user = db.get_user_by_email(request.email)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account found with this email. Please contact your administrator."
        )

    if user["role"] != "admin" and not user.get("addedBy"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account was not created by an administrator"
        )

    return {
        "success": True,
        "data": {
            "email": user["email"],
            "name": user["name"],
            "username": user["username"],
            "role": user["role"],
            "isActive": user.get("isActive", True),
            "needsSetup": not user.get("password"),
        }
    }


@app.post("/api/auth/complete-registration")
async def complete_registration(
    request: CompleteRegistrationRequest,
    response: Response,
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Set the first password of an admin-provisioned account"""
    if request.password != request.confirmPassword:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")

    if len(request.password) < 6:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 6 characters"
        )

    user = db.get_user_by_email(request.email)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if user["role"] != "admin" and not user.get("addedBy"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account was not created by an administrator"
        )

    if user.get("password"):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "Account already registered. Please login instead.", "needsLogin": True}
        )

    user = db.update_user(
        user["id"],
        password=get_password_hash(request.password),
        isActive=True,
    )

    token = issue_session_token(user, settings)
    set_token_cookie(response, token, settings)
    print(f"🔐 REGISTRATION COMPLETED: {user['email']} ({user['role']})")

    return {
        "success": True,
        "message": "Registration completed successfully",
        "data": {"token": token, "user": user_summary(user)},
    }


@app.post("/api/auth/login")
async def login(
    request: LoginRequest,
    response: Response,
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Login with email or username"""
    identifier = (request.identifier or request.email or "").strip()
    if not identifier or not request.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email/username and password are required"
        )

    user = db.get_user_by_identifier(identifier)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if not user.get("password"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "Please complete your registration first",
                "needsSetup": True,
                "email": user["email"],
            }
        )

    if user["role"] != "admin" and not user.get("addedBy"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if not user.get("isActive", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    if not verify_password(request.password, user["password"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user = db.update_user(
        user["id"],
        loginCount=user.get("loginCount", 0) + 1,
        lastLogin=utc_now(),
    )

    token = issue_session_token(user, settings)
    set_token_cookie(response, token, settings)
    print(f"🔐 LOGIN: {user['email']} ({user['role']})")

    return {
        "success": True,
        "message": "Login successful",
        "data": {"token": token, "user": user_summary(user)},
    }


@app.get("/api/auth/verify")
async def verify(
    http_request: Request,
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Check a session token and return who it belongs to"""
    user = authenticate_request(http_request, db, settings)
    if not user.get("isActive", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    return {
        "success": True,
        "data": {
            "valid": True,
            "user": {
                "id": user["id"],
                "name": user["name"],
                "email": user["email"],
                "username": user["username"],
                "role": user["role"],
            },
        }
    }


@app.post("/api/auth/admin/signup", status_code=status.HTTP_201_CREATED)
async def admin_signup(
    request: AdminSignupRequest,
    response: Response,
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Create an administrator account"""
    if len(request.password) < 6:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 6 characters"
        )

    if db.get_user_by_email(request.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    if db.username_exists(request.username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")

    user = db.create_user({
        "name": request.name.strip(),
        "email": request.email,
        "username": request.username,
        "phone": request.phone,
        "password": get_password_hash(request.password),
        "role": "admin",
        "isActive": True,
        "loginCount": 1,
        "lastLogin": utc_now(),
    })

    token = issue_session_token(user, settings)
    set_token_cookie(response, token, settings)
    print(f"✅ ADMIN CREATED: {user['email']}")

    return {
        "success": True,
        "message": "Admin account created successfully",
        "data": {"token": token, "user": user_summary(user)},
    }


@app.post("/api/auth/forgot-password")
async def forgot_password(
    request: ForgotPasswordRequest,
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Email a one-hour password reset link"""
    user = db.get_user_by_email(request.email)
    generic = {"success": True, "message": "If an account exists, a reset link has been sent"}
    if not user:
        # Don't reveal whether the email exists
        return generic

    expires_delta = timedelta(minutes=settings.reset_token_expire_minutes)
    reset_token = create_access_token(
        data={"userId": user["id"], "type": "password_reset"},
        secret_key=settings.secret_key,
        expires_delta=expires_delta,
        algorithm=settings.algorithm,
    )
    db.update_user(
        user["id"],
        resetPasswordToken=reset_token,
        resetPasswordExpires=(datetime.now(timezone.utc) + expires_delta).isoformat(),
    )

    reset_link = f"{settings.frontend_url}/reset-password?token={reset_token}"
    email_sent = send_password_reset_email(settings, user["email"], user["name"], reset_link)
    if not email_sent:
        print(f"⚠️ Password reset email not delivered to {user['email']}")

    if settings.is_development:
        return {**generic, "resetToken": reset_token, "resetLink": reset_link}
    return generic


@app.post("/api/auth/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Reset password with a token from forgot-password"""
    if request.password != request.confirmPassword:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")

    if len(request.password) < 6:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 6 characters"
        )

    try:
        payload = decode_token(request.token, settings.secret_key, settings.algorithm)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reset token has expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid reset token")

    if payload.get("type") != "password_reset":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid reset token")

    user = db.get_user(str(payload.get("userId")))
    if not user or user.get("resetPasswordToken") != request.token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    expires = user.get("resetPasswordExpires")
    if not expires or datetime.fromisoformat(expires) < datetime.now(timezone.utc):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    db.update_user(
        user["id"],
        password=get_password_hash(request.password),
        resetPasswordToken=None,
        resetPasswordExpires=None,
    )
    print(f"🔐 PASSWORD RESET: {user['email']}")

    return {"success": True, "message": "Password reset successfully"}


@app.get("/api/auth/profile")
async def get_profile(user: Dict[str, Any] = Depends(get_current_user), db: MongoDBManager = Depends(get_db)):
    """Current user plus their role profile"""
    profile = None
    if user.get("teacherProfile"):
        profile = db.get_teacher(user["teacherProfile"])
    elif user.get("studentProfile"):
        profile = db.get_student(user["studentProfile"])
    elif user.get("parentProfile"):
        profile = db.get_parent(user["parentProfile"])

    return {"success": True, "data": {**public_user(user), "profile": profile}}


@app.put("/api/auth/profile")
async def update_profile(
    request: UpdateProfileRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: MongoDBManager = Depends(get_db),
):
    updates = request.model_dump(exclude_none=True)
    if updates.get("name") is not None and not updates["name"].strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name cannot be empty")

    updated = db.update_user(user["id"], **updates) if updates else user
    return {"success": True, "message": "Profile updated successfully", "data": public_user(updated)}


@app.post("/api/auth/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: MongoDBManager = Depends(get_db),
):
    if len(request.newPassword) < 6:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must be at least 6 characters"
        )

    if not verify_password(request.currentPassword, user.get("password")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")

    db.update_user(user["id"], password=get_password_hash(request.newPassword))
    print(f"🔐 PASSWORD CHANGED: {user['email']}")
    return {"success": True, "message": "Password changed successfully"}


@app.post("/api/auth/logout")
async def logout(response: Response, user: Dict[str, Any] = Depends(get_current_user)):
    """Logout user"""
    response.delete_cookie("token")
    return {"success": True, "message": "Logged out successfully"}


# ==================== TEACHER ENDPOINTS ====================

@app.post("/api/teachers", status_code=status.HTTP_201_CREATED)
async def add_teacher(
    request: TeacherCreateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    data = request.model_dump(mode="json")
    if db.get_teacher_by_email(data["email"]):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Teacher with this email already exists")

    result = provision_account(
        db, admin, settings,
        role="teacher",
        name=data["name"],
        email=data["email"],
        phone=data["phone"],
        username_base=email_local_part(data["email"]),
        extra_user_fields={"teacherSubjects": [data["subject"]]},
        create_profile=lambda user_id: db.create_teacher({
            **data,
            "profilePhoto": None,
            "isActive": True,
            "addedBy": admin["id"],
            "userId": user_id,
        }),
    )

    return {
        "success": True,
        "message": "Teacher added successfully",
        "data": result["profile"],
        "loginCredentials": result["loginCredentials"],
    }


@app.get("/api/teachers")
async def list_teachers(
    page: int = 1,
    limit: int = 10,
    search: str = "",
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    result = db.list_teachers(page=page, limit=limit, search=search)
    return {"success": True, "data": result["items"], "pagination": result["pagination"]}


@app.get("/api/teachers/{teacher_id}")
async def get_teacher(teacher_id: str, admin: Dict[str, Any] = Depends(require_admin),
                      db: MongoDBManager = Depends(get_db)):
    teacher = db.get_teacher(teacher_id)
    if not teacher:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher not found")
    return {"success": True, "data": teacher}


@app.put("/api/teachers/{teacher_id}")
async def update_teacher(
    teacher_id: str,
    request: TeacherUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    teacher = db.get_teacher(teacher_id)
    if not teacher:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher not found")

    updates = request.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    user_updates: Dict[str, Any] = {}
    username_base = None

    if "email" in updates and normalize_email(updates["email"]) != teacher["email"]:
        ensure_email_available(db, updates["email"], teacher.get("userId"))
        user_updates["email"] = updates["email"]
        username_base = email_local_part(updates["email"])
    if "name" in updates:
        user_updates["name"] = updates["name"]
    if "phone" in updates:
        user_updates["phone"] = updates["phone"]
    if "subject" in updates:
        user_updates["teacherSubjects"] = [updates["subject"]]
    if "isActive" in updates:
        user_updates["isActive"] = updates["isActive"]

    updated = db.update_teacher(teacher_id, updates)
    sync_linked_user(db, updated, user_updates, username_base)

    return {"success": True, "message": "Teacher updated successfully", "data": updated}


@app.delete("/api/teachers/{teacher_id}")
async def delete_teacher(teacher_id: str, admin: Dict[str, Any] = Depends(require_admin),
                         db: MongoDBManager = Depends(get_db)):
    teacher = db.get_teacher(teacher_id)
    if not teacher:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher not found")

    if teacher.get("userId"):
        db.delete_user(teacher["userId"])
    db.delete_teacher(teacher_id)
    print(f"✅ TEACHER DELETED: {teacher['email']}")

    return {"success": True, "message": "Teacher deleted successfully"}


# ==================== STUDENT ENDPOINTS ====================

@app.post("/api/students", status_code=status.HTTP_201_CREATED)
async def add_student(
    request: StudentCreateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    data = request.model_dump(mode="json", by_alias=True)
    data["rollNumber"] = data["rollNumber"].strip()

    if db.get_student_by_email(data["email"]):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Student with this email already exists")
    if db.get_student_by_roll_number(data["rollNumber"]):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Roll number already exists")

    result = provision_account(
        db, admin, settings,
        role="student",
        name=data["name"],
        email=data["email"],
        phone=data["parentPhone"],
        username_base=f"stu_{data['rollNumber']}",
        extra_user_fields={"studentId": data["rollNumber"], "classGrade": data["class"]},
        create_profile=lambda user_id: db.create_student({
            **data,
            "parentEmail": normalize_email(data["parentEmail"]),
            "profilePhoto": None,
            "isActive": True,
            "addedBy": admin["id"],
            "userId": user_id,
        }),
    )

    return {
        "success": True,
        "message": "Student added successfully",
        "data": result["profile"],
        "loginCredentials": result["loginCredentials"],
    }


@app.get("/api/students")
async def list_students(
    page: int = 1,
    limit: int = 10,
    search: str = "",
    student_class: Optional[str] = Query(default=None, alias="class"),
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    result = db.list_students(page=page, limit=limit, search=search, student_class=student_class)
    return {"success": True, "data": result["items"], "pagination": result["pagination"]}


@app.get("/api/students/{student_id}")
async def get_student(student_id: str, admin: Dict[str, Any] = Depends(require_admin),
                      db: MongoDBManager = Depends(get_db)):
    student = db.get_student(student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return {"success": True, "data": student}


@app.put("/api/students/{student_id}")
async def update_student(
    student_id: str,
    request: StudentUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    student = db.get_student(student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    updates = request.model_dump(mode="json", by_alias=True, exclude_unset=True, exclude_none=True)
    user_updates: Dict[str, Any] = {}
    username_base = None

    if "email" in updates and normalize_email(updates["email"]) != student["email"]:
        ensure_email_available(db, updates["email"], student.get("userId"))
        user_updates["email"] = updates["email"]
    if "rollNumber" in updates and updates["rollNumber"] != student["rollNumber"]:
        existing = db.get_student_by_roll_number(updates["rollNumber"])
        if existing and existing["id"] != student_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Roll number already exists")
        user_updates["studentId"] = updates["rollNumber"]
        username_base = f"stu_{updates['rollNumber']}"
    if "parentEmail" in updates:
        updates["parentEmail"] = normalize_email(updates["parentEmail"])
    if "name" in updates:
        user_updates["name"] = updates["name"]
    if "parentPhone" in updates:
        user_updates["phone"] = updates["parentPhone"]
    if "class" in updates:
        user_updates["classGrade"] = updates["class"]
    if "isActive" in updates:
        user_updates["isActive"] = updates["isActive"]

    updated = db.update_student(student_id, updates)
    sync_linked_user(db, updated, user_updates, username_base)

    return {"success": True, "message": "Student updated successfully", "data": updated}


@app.delete("/api/students/{student_id}")
async def delete_student(student_id: str, admin: Dict[str, Any] = Depends(require_admin),
                         db: MongoDBManager = Depends(get_db)):
    student = db.get_student(student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    if student.get("userId"):
        db.delete_user(student["userId"])
    db.delete_student(student_id)
    print(f"✅ STUDENT DELETED: {student['email']}")

    return {"success": True, "message": "Student deleted successfully"}


# ==================== PARENT ENDPOINTS ====================

@app.get("/api/parents/search-students")
async def search_students_for_parent(
    search: str = "",
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    """Find students to link a parent to"""
    if len(search.strip()) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Search term must be at least 2 characters"
        )

    students = db.search_students(search.strip(), limit=10)
    return {"success": True, "count": len(students), "data": students}


@app.post("/api/parents", status_code=status.HTTP_201_CREATED)
async def add_parent(
    request: ParentCreateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    data = request.model_dump(mode="json")
    if db.get_parent_by_email(data["parentEmail"]):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Parent with this email already exists")

    # Linked once by email; the link is not re-validated later
    linked_student = db.get_student_by_email(data["studentEmail"]) if data.get("studentEmail") else None
    if data.get("studentEmail"):
        data["studentEmail"] = normalize_email(data["studentEmail"])

    result = provision_account(
        db, admin, settings,
        role="parent",
        name=data["parentName"],
        email=data["parentEmail"],
        phone=data["parentPhone"],
        username_base=email_local_part(data["parentEmail"]),
        extra_user_fields={"parentOf": linked_student["id"] if linked_student else None},
        create_profile=lambda user_id: db.create_parent({
            **data,
            "linkedStudentId": linked_student["id"] if linked_student else None,
            "isLinkedToStudent": linked_student is not None,
            "profilePhoto": None,
            "isActive": True,
            "addedBy": admin["id"],
            "userId": user_id,
        }),
    )

    return {
        "success": True,
        "message": "Parent added successfully",
        "data": result["profile"],
        "loginCredentials": result["loginCredentials"],
    }


@app.get("/api/parents")
async def list_parents(
    page: int = 1,
    limit: int = 10,
    search: str = "",
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    result = db.list_parents(page=page, limit=limit, search=search)
    return {"success": True, "data": result["items"], "pagination": result["pagination"]}


@app.get("/api/parents/{parent_id}")
async def get_parent(parent_id: str, admin: Dict[str, Any] = Depends(require_admin),
                     db: MongoDBManager = Depends(get_db)):
    parent = db.get_parent(parent_id)
    if not parent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent not found")
    return {"success": True, "data": parent}


@app.put("/api/parents/{parent_id}")
async def update_parent(
    parent_id: str,
    request: ParentUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    parent = db.get_parent(parent_id)
    if not parent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent not found")

    updates = request.model_dump(mode="json", exclude_unset=True, exclude_none=True)
    user_updates: Dict[str, Any] = {}
    username_base = None

    if "parentEmail" in updates and normalize_email(updates["parentEmail"]) != parent["parentEmail"]:
        ensure_email_available(db, updates["parentEmail"], parent.get("userId"))
        user_updates["email"] = updates["parentEmail"]
        username_base = email_local_part(updates["parentEmail"])
    if "parentName" in updates:
        user_updates["name"] = updates["parentName"]
    if "parentPhone" in updates:
        user_updates["phone"] = updates["parentPhone"]
    if "isActive" in updates:
        user_updates["isActive"] = updates["isActive"]

    updated = db.update_parent(parent_id, updates)
    sync_linked_user(db, updated, user_updates, username_base)

    return {"success": True, "message": "Parent updated successfully", "data": updated}


@app.delete("/api/parents/{parent_id}")
async def delete_parent(parent_id: str, admin: Dict[str, Any] = Depends(require_admin),
                        db: MongoDBManager = Depends(get_db)):
    parent = db.get_parent(parent_id)
    if not parent:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent not found")

    if parent.get("userId"):
        db.delete_user(parent["userId"])
    db.delete_parent(parent_id)
    print(f"✅ PARENT DELETED: {parent['parentEmail']}")

    return {"success": True, "message": "Parent deleted successfully"}


# ==================== STUDENT PERFORMANCE ENDPOINTS ====================

def load_student_performance(db: MongoDBManager, performance_id: str) -> Dict[str, Any]:
    record = db.get_student_performance(performance_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Performance record not found")
    return record


@app.post("/api/student-performance", status_code=status.HTTP_201_CREATED)
async def create_student_performance(
    request: StudentPerformanceCreateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    student = db.get_student(request.studentId)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    if student["email"] != normalize_email(request.studentEmail):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Student email does not match")

    if db.get_student_performance_by_email(request.studentEmail):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Performance record already exists for this student email"
        )

    record = db.create_student_performance({
        "studentId": student["id"],
        "studentEmail": student["email"],
        "studentName": student["name"],
        "rollNumber": student["rollNumber"],
        "academicYear": request.academicYear,
        "class": request.student_class,
        "section": request.section,
        "createdBy": admin["id"],
    })

    return {"success": True, "message": "Student performance record created successfully", "data": record}


@app.get("/api/student-performance/email/{email}")
async def get_student_performance_by_email(
    email: str,
    user: Dict[str, Any] = Depends(any_member),
    db: MongoDBManager = Depends(get_db),
):
    """Fetch a student's record, creating an empty one on first access"""
    student = db.get_student_by_email(email)
    if not student:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Student with email "{email}" not found. Please add student first.'
        )

    record = db.get_student_performance_by_email(email)
    if record:
        return {"success": True, "message": "Performance record found", "data": record}

    record = db.create_student_performance({
        "studentId": student["id"],
        "studentEmail": student["email"],
        "studentName": student["name"],
        "rollNumber": student["rollNumber"],
        "academicYear": current_academic_year(),
        "class": student.get("class") or "Not Assigned",
        "section": student.get("section") or "A",
        "createdBy": user["id"],
    })
    print(f"📝 Performance record auto-created for {student['email']}")

    return {"success": True, "message": "Performance record auto-created", "data": record}


@app.get("/api/student-performance/student/{student_id}")
async def get_student_performance(
    student_id: str,
    user: Dict[str, Any] = Depends(any_member),
    db: MongoDBManager = Depends(get_db),
):
    record = db.get_student_performance_by_student(student_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Performance record not found")
    return {"success": True, "data": record}


@app.get("/api/student-performance/class")
async def get_class_performance(
    student_class: Optional[str] = Query(default=None, alias="class"),
    section: Optional[str] = None,
    academicYear: Optional[str] = None,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if student_class:
        query["class"] = student_class
    if section:
        query["section"] = section
    if academicYear:
        query["academicYear"] = academicYear

    records = db.find_student_performance(query, fields=[
        "studentId", "studentName", "studentEmail", "rollNumber", "class", "section",
        "academicYear", "attendancePercentage", "averageScore", "performanceScores",
    ])
    return {"success": True, "count": len(records), "data": records}


@app.post("/api/student-performance/{performance_id}/attendance")
async def mark_attendance(
    performance_id: str,
    request: AttendanceMarkRequest,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    """Mark daily attendance; marking the same date again replaces it"""
    record = load_student_performance(db, performance_id)
    day = request.date.isoformat()

    entry = {
        "date": day,
        "status": request.status,
        "reason": request.reason,
        "markedBy": user["id"],
        "markedAt": utc_now(),
    }
    attendance = record.get("attendance") or []
    for index, existing in enumerate(attendance):
        if existing.get("date") == day:
            attendance[index] = entry
            break
    else:
        attendance.append(entry)
    record["attendance"] = attendance

    record = db.save_student_performance(record)

    return {
        "success": True,
        "message": "Attendance marked successfully",
        "data": {
            "entry": entry,
            "totalPresent": record["totalPresent"],
            "totalAbsent": record["totalAbsent"],
            "attendancePercentage": record["attendancePercentage"],
        }
    }


@app.put("/api/student-performance/{performance_id}/monthly-attendance")
async def update_monthly_attendance(
    performance_id: str,
    request: MonthlyAttendanceRequest,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    try:
        percentage = performance.monthly_attendance_percentage(request.workingDays, request.presentDays)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    record = load_student_performance(db, performance_id)

    entry = {
        "month": request.month,
        "year": request.year,
        "workingDays": request.workingDays,
        "presentDays": request.presentDays,
        "attendancePercentage": percentage,
        "remarks": request.remarks,
        "updatedBy": user["id"],
        "lastUpdated": utc_now(),
    }
    monthly = record.get("monthlyAttendance") or []
    for index, existing in enumerate(monthly):
        if existing.get("month") == request.month and existing.get("year") == request.year:
            monthly[index] = entry
            break
    else:
        monthly.append(entry)
    record["monthlyAttendance"] = monthly

    db.save_student_performance(record)

    return {"success": True, "message": "Monthly attendance updated successfully", "data": entry}


@app.get("/api/student-performance/{performance_id}/monthly-attendance")
async def get_monthly_attendance(
    performance_id: str,
    month: Optional[str] = None,
    year: Optional[int] = None,
    user: Dict[str, Any] = Depends(any_member),
    db: MongoDBManager = Depends(get_db),
):
    record = load_student_performance(db, performance_id)

    monthly = record.get("monthlyAttendance") or []
    if month:
        monthly = [m for m in monthly if m.get("month") == month]
    if year:
        monthly = [m for m in monthly if m.get("year") == year]

    return {"success": True, "count": len(monthly), "data": performance.sort_monthly_newest_first(monthly)}


@app.post("/api/student-performance/{performance_id}/exam-result")
async def add_exam_result(
    performance_id: str,
    request: ExamResultRequest,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    try:
        graded = performance.grade_exam([s.model_dump() for s in request.subjects])
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    record = load_student_performance(db, performance_id)

    exam = {
        "id": new_entry_id(),
        "examType": request.examType,
        "examMonth": request.examMonth,
        "examYear": request.examYear,
        "subjects": graded["subjects"],
        "overallPercentage": graded["overallPercentage"],
        "overallGrade": graded["overallGrade"],
        "remarks": request.remarks,
        "conductedDate": (request.conductedDate or datetime.now(timezone.utc).date()).isoformat(),
        "uploadedBy": user["id"],
        "uploadedAt": utc_now(),
    }
    record["examResults"] = (record.get("examResults") or []) + [exam]
    db.save_student_performance(record)

    return {
        "success": True,
        "message": "Exam result added successfully",
        "data": {
            "id": exam["id"],
            "examType": exam["examType"],
            "examMonth": exam["examMonth"],
            "examYear": exam["examYear"],
            "overallPercentage": exam["overallPercentage"],
            "overallGrade": exam["overallGrade"],
            "subjectCount": len(exam["subjects"]),
        }
    }


@app.get("/api/student-performance/{performance_id}/exam-results")
async def get_exam_results(
    performance_id: str,
    examType: Optional[str] = None,
    month: Optional[str] = None,
    year: Optional[int] = None,
    user: Dict[str, Any] = Depends(any_member),
    db: MongoDBManager = Depends(get_db),
):
    record = load_student_performance(db, performance_id)

    exams = record.get("examResults") or []
    if examType:
        exams = [e for e in exams if e.get("examType") == examType]
    if month:
        exams = [e for e in exams if e.get("examMonth") == month]
    if year:
        exams = [e for e in exams if e.get("examYear") == year]

    return {"success": True, "count": len(exams), "data": exams}


@app.post("/api/student-performance/{performance_id}/class-performance")
async def add_class_performance(
    performance_id: str,
    request: ClassPerformanceRequest,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    """Monthly behaviour scores; one entry per month and year"""
    record = load_student_performance(db, performance_id)

    entry = {
        **request.model_dump(),
        "evaluatedBy": user["id"],
        "evaluatedAt": utc_now(),
    }
    evaluations = record.get("classPerformance") or []
    for index, existing in enumerate(evaluations):
        if existing.get("month") == request.month and existing.get("year") == request.year:
            evaluations[index] = entry
            break
    else:
        evaluations.append(entry)
    record["classPerformance"] = evaluations

    db.save_student_performance(record)

    return {"success": True, "message": "Class performance saved successfully", "data": entry}


@app.post("/api/student-performance/{performance_id}/teacher-remark")
async def add_student_remark(
    performance_id: str,
    request: StudentRemarkRequest,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_student_performance(db, performance_id)

    remark = {
        "id": new_entry_id(),
        **request.model_dump(),
        "teacherId": user["id"],
        "teacherName": user["name"],
        "date": utc_now(),
    }
    record["teacherRemarks"] = (record.get("teacherRemarks") or []) + [remark]
    db.save_student_performance(record)

    return {"success": True, "message": "Remark added successfully", "data": remark}


@app.put("/api/student-performance/{performance_id}/performance-scores")
async def update_performance_scores(
    performance_id: str,
    request: PerformanceScoresRequest,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_student_performance(db, performance_id)

    scores = record.get("performanceScores") or {
        "overallScore": 0,
        "academicScore": 0,
        "behaviorScore": 0,
        "attendanceScore": 0,
    }
    scores.update(request.model_dump(exclude_none=True))
    scores["lastUpdated"] = utc_now()
    record["performanceScores"] = scores
    record["updatedBy"] = user["id"]

    db.save_student_performance(record)

    return {"success": True, "message": "Performance scores updated successfully", "data": scores}


@app.get("/api/student-performance/{student_id}/statistics")
async def get_student_statistics(
    student_id: str,
    user: Dict[str, Any] = Depends(any_member),
    db: MongoDBManager = Depends(get_db),
):
    record = db.get_student_performance_by_student(student_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Performance record not found")
    return {"success": True, "data": performance.student_statistics(record)}


@app.delete("/api/student-performance/{performance_id}")
async def deactivate_student_performance(
    performance_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    record = load_student_performance(db, performance_id)
    record["isActive"] = False
    record["updatedBy"] = admin["id"]
    db.save_student_performance(record)

    return {"success": True, "message": "Performance record deactivated successfully"}


# ==================== TEACHER PERFORMANCE ENDPOINTS ====================

def load_teacher_performance(db: MongoDBManager, email: str) -> Dict[str, Any]:
    record = db.get_teacher_performance_by_email(email)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher performance record not found")
    return record


def start_teacher_performance(db: MongoDBManager, teacher: Dict[str, Any], admin: Dict[str, Any],
                              **overrides) -> Dict[str, Any]:
    if db.get_teacher_performance_by_email(teacher["email"]):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Performance record already exists for this teacher"
        )

    record = {
        "teacherId": teacher["id"],
        "teacherEmail": teacher["email"],
        "teacherName": teacher["name"],
        "phoneNumber": teacher.get("phone", ""),
        "subjects": [teacher["subject"]] if teacher.get("subject") else [],
        "designation": teacher.get("designation"),
        "joiningDate": None,
        "experience": 0,
        "qualification": ", ".join(teacher.get("educationalQualifications") or []),
        "createdBy": admin["id"],
    }
    record.update({k: v for k, v in overrides.items() if v not in (None, "", [])})
    return db.create_teacher_performance(record)


@app.post("/api/teacher-performance", status_code=status.HTTP_201_CREATED)
async def create_teacher_performance(
    request: TeacherPerformanceCreateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    teacher = db.get_teacher_by_email(request.teacherEmail)
    if not teacher:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Teacher not found. Please add the teacher first."
        )

    data = request.model_dump(mode="json")
    record = start_teacher_performance(
        db, teacher, admin,
        subjects=data["subjects"],
        joiningDate=data["joiningDate"],
        experience=data["experience"],
        qualification=data["qualification"],
    )
    return {"success": True, "message": "Teacher performance record created successfully", "data": record}


@app.post("/api/teacher-performance/create-from-teacher/{teacher_id}", status_code=status.HTTP_201_CREATED)
async def create_performance_from_teacher(
    teacher_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    teacher = db.get_teacher(teacher_id)
    if not teacher:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Teacher not found")

    record = start_teacher_performance(db, teacher, admin)
    return {"success": True, "message": "Teacher performance record created from teacher data", "data": record}


@app.get("/api/teacher-performance")
async def list_teacher_performance(
    search: str = "",
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    records = []
    for record in db.list_teacher_performance(search):
        teacher = db.get_teacher_by_email(record["teacherEmail"])
        record["teacherBasicInfo"] = {
            "name": teacher["name"],
            "email": teacher["email"],
            "phone": teacher.get("phone"),
            "designation": teacher.get("designation"),
            "subject": teacher.get("subject"),
            "educationalQualifications": teacher.get("educationalQualifications"),
        } if teacher else None
        records.append(record)

    return {"success": True, "count": len(records), "data": records}


@app.get("/api/teacher-performance/teachers/without-performance")
async def teachers_without_performance(
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    tracked = set(db.teacher_performance_emails())
    teachers = [t for t in db.get_active_teachers() if t["email"] not in tracked]
    return {"success": True, "count": len(teachers), "data": teachers}


@app.get("/api/teacher-performance/{email}")
async def get_teacher_performance(
    email: str,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    return {"success": True, "data": load_teacher_performance(db, email)}


@app.put("/api/teacher-performance/{email}/info")
async def update_teacher_info(
    email: str,
    request: TeacherInfoUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    """Update the record and mirror the basics onto the teacher profile"""
    record = load_teacher_performance(db, email)
    updates = request.model_dump(exclude_none=True)

    teacher = db.get_teacher_by_email(email)
    if teacher:
        profile_updates: Dict[str, Any] = {}
        user_updates: Dict[str, Any] = {}
        if updates.get("teacherName"):
            profile_updates["name"] = user_updates["name"] = updates["teacherName"]
        if updates.get("phoneNumber"):
            profile_updates["phone"] = user_updates["phone"] = updates["phoneNumber"]
        if updates.get("designation"):
            profile_updates["designation"] = updates["designation"]
        if updates.get("subjects"):
            profile_updates["subject"] = ", ".join(updates["subjects"])
            user_updates["teacherSubjects"] = updates["subjects"]
        if profile_updates:
            teacher = db.update_teacher(teacher["id"], profile_updates)
        sync_linked_user(db, teacher, user_updates)

    record.update(updates)
    record["updatedBy"] = admin["id"]
    record = db.save_teacher_performance(record)

    return {"success": True, "message": "Teacher information updated successfully in both records", "data": record}


@app.put("/api/teacher-performance/{email}/attendance")
async def update_teacher_attendance(
    email: str,
    request: TeacherAttendanceRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    try:
        percentage = performance.teacher_attendance_percentage(
            request.workingDays, request.presentDays, request.leaveDays, request.halfDays
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    record = load_teacher_performance(db, email)

    entry = {
        **request.model_dump(),
        "attendancePercentage": percentage,
        "updatedBy": admin["id"],
        "updatedAt": utc_now(),
    }
    monthly = record.get("monthlyAttendance") or []
    for index, existing in enumerate(monthly):
        if existing.get("month") == request.month and existing.get("year") == request.year:
            monthly[index] = entry
            break
    else:
        monthly.append(entry)
    record["monthlyAttendance"] = monthly
    record["updatedBy"] = admin["id"]

    record = db.save_teacher_performance(record)

    return {
        "success": True,
        "message": "Attendance updated successfully",
        "data": {
            "entry": entry,
            "overallAttendancePercentage": record["overallAttendancePercentage"],
        }
    }


@app.get("/api/teacher-performance/{email}/attendance")
async def get_teacher_attendance(
    email: str,
    month: Optional[str] = None,
    year: Optional[int] = None,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)

    monthly = record.get("monthlyAttendance") or []
    if month:
        monthly = [m for m in monthly if m.get("month") == month]
    if year:
        monthly = [m for m in monthly if m.get("year") == year]

    return {"success": True, "count": len(monthly), "data": performance.sort_monthly_newest_first(monthly)}


@app.post("/api/teacher-performance/{email}/review")
async def add_performance_review(
    email: str,
    request: PerformanceReviewRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)
    reviews = record.get("performanceReviews") or []

    for existing in reviews:
        if (existing.get("category"), existing.get("month"), existing.get("year")) == \
                (request.category, request.month, request.year):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"A {request.category} review already exists for {request.month} {request.year}"
            )

    scores = request.scores.model_dump()
    review = {
        "id": new_entry_id(),
        "category": request.category,
        "month": request.month,
        "year": request.year,
        "scores": scores,
        "overallScore": performance.review_overall_score(scores),
        "feedback": request.feedback,
        "strengths": request.strengths,
        "areasOfImprovement": request.areasOfImprovement,
        "reviewedBy": admin["id"],
        "reviewedAt": utc_now(),
    }
    record["performanceReviews"] = reviews + [review]
    record["updatedBy"] = admin["id"]

    record = db.save_teacher_performance(record)

    return {
        "success": True,
        "message": "Performance review added successfully",
        "data": {"review": review, "averagePerformanceScore": record["averagePerformanceScore"]},
    }


@app.get("/api/teacher-performance/{email}/reviews")
async def get_performance_reviews(
    email: str,
    category: Optional[str] = None,
    month: Optional[str] = None,
    year: Optional[int] = None,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)

    reviews = record.get("performanceReviews") or []
    if category:
        reviews = [r for r in reviews if r.get("category") == category]
    if month:
        reviews = [r for r in reviews if r.get("month") == month]
    if year:
        reviews = [r for r in reviews if r.get("year") == year]
    reviews = sorted(reviews, key=lambda r: r.get("reviewedAt", ""), reverse=True)

    return {"success": True, "count": len(reviews), "data": reviews}


@app.post("/api/teacher-performance/{email}/remark")
async def add_teacher_remark(
    email: str,
    request: TeacherRemarkRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)

    remark = {
        "id": new_entry_id(),
        "remark": request.remark,
        "category": request.category,
        "addedBy": admin["id"],
        "date": utc_now(),
    }
    record["remarks"] = (record.get("remarks") or []) + [remark]
    record["updatedBy"] = admin["id"]
    db.save_teacher_performance(record)

    return {"success": True, "message": "Remark added successfully", "data": remark}


@app.get("/api/teacher-performance/{email}/remarks")
async def get_teacher_remarks(
    email: str,
    category: Optional[str] = None,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)

    remarks = record.get("remarks") or []
    if category:
        remarks = [r for r in remarks if r.get("category") == category]
    remarks = sorted(remarks, key=lambda r: r.get("date", ""), reverse=True)

    return {"success": True, "count": len(remarks), "data": remarks}


@app.post("/api/teacher-performance/{email}/assign-subject")
async def assign_subject(
    email: str,
    request: SubjectAssignmentRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)
    assignments = record.get("subjectAssignments") or []

    for existing in assignments:
        if existing.get("isActive") and \
                (existing.get("subject"), existing.get("class"), existing.get("academicYear")) == \
                (request.subject, request.assigned_class, request.academicYear):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This subject is already assigned to the teacher for this class and year"
            )

    assignment = {
        "id": new_entry_id(),
        "subject": request.subject,
        "class": request.assigned_class,
        "section": request.section,
        "academicYear": request.academicYear,
        "assignedBy": admin["id"],
        "assignedDate": utc_now(),
        "isActive": True,
    }
    record["subjectAssignments"] = assignments + [assignment]
    record["updatedBy"] = admin["id"]
    db.save_teacher_performance(record)

    return {"success": True, "message": "Subject assigned successfully", "data": assignment}


@app.get("/api/teacher-performance/{email}/subject-assignments")
async def get_subject_assignments(
    email: str,
    academicYear: Optional[str] = None,
    isActive: Optional[bool] = None,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)

    assignments = record.get("subjectAssignments") or []
    if academicYear:
        assignments = [a for a in assignments if a.get("academicYear") == academicYear]
    if isActive is not None:
        assignments = [a for a in assignments if a.get("isActive") == isActive]

    # Newest academic year first, then by class
    assignments = sorted(assignments, key=lambda a: a.get("class", ""))
    assignments = sorted(assignments, key=lambda a: a.get("academicYear", ""), reverse=True)

    return {"success": True, "count": len(assignments), "data": assignments}


@app.get("/api/teacher-performance/{email}/statistics")
async def get_teacher_statistics(
    email: str,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)

    now = datetime.now(timezone.utc)
    current_month = performance.MONTHS[now.month - 1]
    current = next(
        (a for a in record.get("monthlyAttendance") or []
         if a.get("month") == current_month and a.get("year") == now.year),
        None,
    )
    reviews = sorted(record.get("performanceReviews") or [], key=lambda r: r.get("reviewedAt", ""), reverse=True)
    assignments = record.get("subjectAssignments") or []

    statistics = {
        "basicInfo": {
            "name": record["teacherName"],
            "email": record["teacherEmail"],
            "designation": record.get("designation"),
            "subjects": record.get("subjects", []),
        },
        "attendance": {
            "overallPercentage": record["overallAttendancePercentage"],
            "totalWorkingDays": record["totalWorkingDays"],
            "totalPresentDays": record["totalPresentDays"],
            "currentMonth": {
                "month": current["month"],
                "year": current["year"],
                "attendancePercentage": current["attendancePercentage"],
                "presentDays": current["presentDays"],
                "workingDays": current["workingDays"],
            } if current else None,
        },
        "performance": {
            "averageScore": record["averagePerformanceScore"],
            "totalReviews": len(reviews),
            "recentReviews": reviews[:3],
        },
        "assignments": {
            "totalAssignments": len(assignments),
            "activeAssignments": len([a for a in assignments if a.get("isActive")]),
        },
    }

    return {"success": True, "data": statistics}


@app.get("/api/teacher-performance/{email}/dashboard")
async def get_teacher_dashboard(
    email: str,
    user: Dict[str, Any] = Depends(staff_only),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)
    teacher = db.get_teacher_by_email(email) or {}

    active_assignments = [a for a in record.get("subjectAssignments") or [] if a.get("isActive")][:5]
    reviews = sorted(record.get("performanceReviews") or [], key=lambda r: r.get("reviewedAt", ""), reverse=True)
    remarks = sorted(record.get("remarks") or [], key=lambda r: r.get("date", ""), reverse=True)

    dashboard = {
        "teacherInfo": {
            "name": teacher.get("name") or record["teacherName"],
            "email": teacher.get("email") or record["teacherEmail"],
            "designation": teacher.get("designation") or record.get("designation"),
            "profilePhoto": teacher.get("profilePhoto"),
        },
        "summary": {
            "attendancePercentage": record["overallAttendancePercentage"],
            "performanceScore": record["averagePerformanceScore"],
            "totalSubjects": len(record.get("subjects") or []),
            "activeAssignments": len(active_assignments),
        },
        "recentAttendance": performance.sort_monthly_newest_first(record.get("monthlyAttendance") or [])[:6],
        "recentPerformanceReviews": reviews[:3],
        "activeAssignments": active_assignments,
        "recentRemarks": remarks[:5],
    }

    return {"success": True, "data": dashboard}


@app.delete("/api/teacher-performance/{email}")
async def deactivate_teacher_performance(
    email: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    record = load_teacher_performance(db, email)
    record["isActive"] = False
    record["updatedBy"] = admin["id"]
    db.save_teacher_performance(record)

    return {"success": True, "message": "Teacher performance record deactivated successfully"}


# ==================== ADMISSION ENDPOINTS ====================

def normalize_fees(fees: Dict[str, Any]) -> Dict[str, Any]:
    """Blank fees count as 0"""
    try:
        return {k: 0 if v in ("", None) else to_number(v) for k, v in fees.items()}
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Fees must be numbers")


def normalize_eligibility(eligibility: Dict[str, Any]) -> Dict[str, Any]:
    """Blank numeric thresholds become null"""
    processed: Dict[str, Any] = {}
    try:
        for key, value in eligibility.items():
            if key == "otherRequirements":
                processed[key] = value or ""
            else:
                processed[key] = None if value in ("", None) else to_number(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Eligibility limits must be numbers")
    return processed


@app.get("/api/admissions")
async def list_admissions(
    forClass: Optional[str] = None,
    academicYear: Optional[str] = None,
    includeInactive: bool = False,
    db: MongoDBManager = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if forClass:
        query["forClass"] = forClass
    if academicYear:
        query["academicYear"] = academicYear
    if not includeInactive:
        query["isActive"] = True

    admissions = db.list_admissions(query)
    return {"success": True, "count": len(admissions), "data": admissions}


@app.get("/api/admissions/{admission_id}")
async def get_admission(admission_id: str, db: MongoDBManager = Depends(get_db)):
    admission = db.get_admission(admission_id)
    if not admission:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admission not found")
    return {"success": True, "data": admission}


@app.post("/api/admissions", status_code=status.HTTP_201_CREATED)
async def create_admission(
    request: AdmissionCreateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    data = request.model_dump(mode="json")

    try:
        total_seats = to_number(data["seats"]["total"]) if data["seats"].get("total") else 50
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Seat total must be a number")

    admission = db.create_admission({
        "admissionCode": generate_admission_code(db, data["academicYear"], data["forClass"]),
        "title": data["title"].strip(),
        "courseName": data["courseName"].strip(),
        "forClass": data["forClass"],
        # Streams only exist for the two senior classes
        "stream": data["stream"] if data["forClass"] in ("11", "12") else None,
        "academicYear": data["academicYear"],
        "dates": data["dates"],
        "fees": normalize_fees(data["fees"]),
        "description": data["description"].strip(),
        "eligibility": normalize_eligibility(data["eligibility"]),
        "seats": {"total": total_seats, "available": total_seats},
        "isActive": True,
        "createdBy": admin["id"],
    })
    print(f"✅ ADMISSION CREATED: {admission['admissionCode']} ({admission['title']})")

    return {"success": True, "message": "Admission course created successfully", "data": admission}


@app.put("/api/admissions/{admission_id}")
async def update_admission(
    admission_id: str,
    request: AdmissionUpdateRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    admission = db.get_admission(admission_id)
    if not admission:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admission not found")

    data = request.model_dump(mode="json", exclude_unset=True)

    if data.get("title") is not None:
        admission["title"] = data["title"].strip()
    if data.get("description") is not None:
        admission["description"] = data["description"].strip()
    if data.get("dates"):
        admission["dates"].update({k: v for k, v in data["dates"].items() if v})
    if data.get("fees"):
        admission["fees"].update(normalize_fees(data["fees"]))
    if data.get("seats"):
        seats = admission["seats"]
        try:
            if data["seats"].get("total") is not None:
                seats["total"] = to_number(data["seats"]["total"]) or 50
            if data["seats"].get("available") is not None:
                seats["available"] = to_number(data["seats"]["available"])
        except (TypeError, ValueError):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Seat counts must be numbers")
    if data.get("isActive") is not None:
        admission["isActive"] = data["isActive"]

    admission = db.save_admission(admission)
    return {"success": True, "message": "Admission updated successfully", "data": admission}


@app.delete("/api/admissions/{admission_id}")
async def delete_admission(
    admission_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: MongoDBManager = Depends(get_db),
):
    admission = db.get_admission(admission_id)
    if not admission:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admission not found")

    admission["isActive"] = False
    db.save_admission(admission)

    return {"success": True, "message": "Admission deactivated successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
