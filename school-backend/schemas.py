import json
import datetime
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

TEACHER_DESIGNATIONS = Literal[
    "Principal",
    "Vice Principal",
    "Senior Teacher",
    "Teacher",
    "Assistant Teacher",
    "Head of Department",
    "Coordinator",
]
CLASS_NAMES = Literal["Nursery", "LKG", "UKG", "1", "2", "3", "4", "5", "6", "7", "8", "9", "10", "11", "12"]
PHONE_PATTERN = r"^\d{10,15}$"


# ==================== AUTH MODELS ====================

class CheckEmailRequest(BaseModel):
    email: EmailStr


class CompleteRegistrationRequest(BaseModel):
    email: EmailStr
    password: str
    confirmPassword: str


class LoginRequest(BaseModel):
    identifier: Optional[str] = None
    email: Optional[str] = None
    password: str


class AdminSignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    username: str = Field(min_length=3)
    phone: str = ""
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str
    confirmPassword: str


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str


# ==================== PROFILE MODELS ====================

def _parse_qualifications(value):
    """Accept a list, a JSON-array string, or a single string"""
    if isinstance(value, str):
        value = value.strip()
        if value.startswith("["):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                raise ValueError("educationalQualifications is not a valid JSON array")
        else:
            value = [value] if value else []
    if isinstance(value, list):
        value = [str(q).strip() for q in value if str(q).strip()]
    return value


class TeacherCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(pattern=PHONE_PATTERN)
    educationalQualifications: List[str] = Field(min_length=1)
    designation: TEACHER_DESIGNATIONS = "Teacher"
    dateOfAppointment: datetime.date
    subject: str = Field(min_length=1)
    bio: str = ""

    @field_validator("educationalQualifications", mode="before")
    @classmethod
    def parse_qualifications(cls, v):
        return _parse_qualifications(v)


class TeacherUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    educationalQualifications: Optional[List[str]] = None
    designation: Optional[TEACHER_DESIGNATIONS] = None
    dateOfAppointment: Optional[datetime.date] = None
    subject: Optional[str] = None
    bio: Optional[str] = None
    isActive: Optional[bool] = None

    @field_validator("educationalQualifications", mode="before")
    @classmethod
    def parse_qualifications(cls, v):
        if v is None:
            return v
        parsed = _parse_qualifications(v)
        if not parsed:
            raise ValueError("At least one educational qualification is required")
        return parsed


class StudentCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    email: EmailStr
    rollNumber: str = Field(min_length=1)
    dateOfBirth: datetime.date
    gender: Literal["Male", "Female", "Other"]
    parentName: str = Field(min_length=1)
    parentPhone: str = Field(pattern=PHONE_PATTERN)
    parentEmail: EmailStr
    address: str = ""
    student_class: str = Field(alias="class", min_length=1)
    section: str = Field(min_length=1)
    admissionDate: datetime.date


class StudentUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[EmailStr] = None
    rollNumber: Optional[str] = None
    dateOfBirth: Optional[datetime.date] = None
    gender: Optional[Literal["Male", "Female", "Other"]] = None
    parentName: Optional[str] = None
    parentPhone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    parentEmail: Optional[EmailStr] = None
    address: Optional[str] = None
    student_class: Optional[str] = Field(default=None, alias="class")
    section: Optional[str] = None
    admissionDate: Optional[datetime.date] = None
    isActive: Optional[bool] = None


class ParentCreateRequest(BaseModel):
    parentName: str = Field(min_length=1)
    parentEmail: EmailStr
    parentPhone: str = Field(min_length=1)
    studentName: str = ""
    studentEmail: Optional[EmailStr] = None
    rollNumber: str = ""
    relationship: str = "Parent"
    address: Dict[str, Any] = {}
    occupation: str = ""
    emergencyContact: Dict[str, Any] = {}

    @field_validator("studentEmail", mode="before")
    @classmethod
    def blank_student_email(cls, v):
        return v or None


class ParentUpdateRequest(BaseModel):
    parentName: Optional[str] = None
    parentEmail: Optional[EmailStr] = None
    parentPhone: Optional[str] = None
    studentName: Optional[str] = None
    rollNumber: Optional[str] = None
    relationship: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    occupation: Optional[str] = None
    emergencyContact: Optional[Dict[str, Any]] = None
    isActive: Optional[bool] = None


# ==================== STUDENT PERFORMANCE MODELS ====================

class StudentPerformanceCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    studentId: str
    studentEmail: EmailStr
    academicYear: str
    student_class: str = Field(alias="class")
    section: str


class AttendanceMarkRequest(BaseModel):
    date: datetime.date
    status: Literal["present", "absent", "late", "half-day"]
    reason: str = ""


class MonthlyAttendanceRequest(BaseModel):
    month: str = Field(min_length=1)
    year: int
    workingDays: int = Field(ge=0)
    presentDays: int = Field(ge=0)
    remarks: str = ""


class SubjectScore(BaseModel):
    subjectName: str = Field(min_length=1)
    subjectCode: str = ""
    totalMarks: float = Field(gt=0, allow_inf_nan=False)
    obtainedMarks: float = Field(ge=0, allow_inf_nan=False)

    @field_validator("obtainedMarks")
    @classmethod
    def not_above_total(cls, v, info):
        total = info.data.get("totalMarks")
        if total is not None and v > total:
            raise ValueError("obtainedMarks cannot exceed totalMarks")
        return v


class ExamResultRequest(BaseModel):
    examType: Literal["mid-semester", "end-semester", "unit-test", "assignment", "practical", "project"]
    examMonth: str
    examYear: int
    subjects: List[SubjectScore] = Field(min_length=1)
    remarks: str = ""
    conductedDate: Optional[datetime.date] = None


class ClassPerformanceRequest(BaseModel):
    month: str
    year: int
    participationScore: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    homeworkCompletion: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    disciplineScore: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    extraCurricular: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    remarks: str = ""


class StudentRemarkRequest(BaseModel):
    remark: str = Field(min_length=1)
    subject: str = ""
    category: Literal["academic", "behavior", "improvement", "achievement"] = "academic"


class PerformanceScoresRequest(BaseModel):
    overallScore: Optional[float] = Field(default=None, ge=0, le=10, allow_inf_nan=False)
    academicScore: Optional[float] = Field(default=None, ge=0, le=10, allow_inf_nan=False)
    behaviorScore: Optional[float] = Field(default=None, ge=0, le=10, allow_inf_nan=False)
    attendanceScore: Optional[float] = Field(default=None, ge=0, le=10, allow_inf_nan=False)


# ==================== TEACHER PERFORMANCE MODELS ====================

class TeacherPerformanceCreateRequest(BaseModel):
    teacherEmail: EmailStr
    subjects: List[str] = []
    joiningDate: Optional[datetime.date] = None
    experience: float = Field(default=0, allow_inf_nan=False)
    qualification: str = ""

    @field_validator("subjects", mode="before")
    @classmethod
    def single_subject(cls, v):
        if isinstance(v, str):
            return [v]
        return v or []


class TeacherInfoUpdateRequest(BaseModel):
    teacherName: Optional[str] = None
    phoneNumber: Optional[str] = None
    subjects: Optional[List[str]] = None
    designation: Optional[str] = None
    qualification: Optional[str] = None


class TeacherAttendanceRequest(BaseModel):
    month: str = Field(min_length=1)
    year: int
    workingDays: int = Field(ge=1, le=31)
    presentDays: int = Field(ge=0)
    leaveDays: int = Field(default=0, ge=0)
    halfDays: int = Field(default=0, ge=0)
    remarks: str = ""


class ReviewScores(BaseModel):
    punctuality: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    subjectKnowledge: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    teachingMethodology: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    classManagement: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    studentEngagement: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    communicationSkills: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    assessmentQuality: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)
    professionalDevelopment: float = Field(default=0, ge=0, le=10, allow_inf_nan=False)


class PerformanceReviewRequest(BaseModel):
    category: Literal["principal", "colleague", "student", "self"]
    month: str
    year: int
    scores: ReviewScores = ReviewScores()
    feedback: str = ""
    strengths: List[str] = []
    areasOfImprovement: List[str] = []


class TeacherRemarkRequest(BaseModel):
    remark: str = Field(min_length=1)
    category: Literal["achievement", "improvement", "general", "disciplinary"] = "general"


class SubjectAssignmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(min_length=1)
    assigned_class: str = Field(alias="class", min_length=1)
    section: str = ""
    academicYear: str = Field(min_length=1)


# ==================== ADMISSION MODELS ====================

class AdmissionDates(BaseModel):
    applicationStart: datetime.date
    applicationEnd: datetime.date
    examDate: datetime.date
    interviewDate: datetime.date
    admissionStart: datetime.date


class AdmissionCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    courseName: str = Field(min_length=1)
    forClass: CLASS_NAMES
    stream: Optional[Literal["Science", "Commerce", "Humanities"]] = None
    academicYear: str = Field(min_length=4)
    dates: AdmissionDates
    fees: Dict[str, Any]
    description: str = Field(min_length=1)
    eligibility: Dict[str, Any] = {}
    seats: Dict[str, Any] = {}

    @field_validator("stream", mode="before")
    @classmethod
    def blank_stream(cls, v):
        return v or None

    @field_validator("fees")
    @classmethod
    def monthly_fee_required(cls, v):
        if v.get("monthlyFee") in (None, ""):
            raise ValueError("Monthly fee is required")
        return v


class AdmissionUpdateRequest(BaseModel):
    title: Optional[str] = None
    dates: Optional[Dict[str, Optional[datetime.date]]] = None
    fees: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    seats: Optional[Dict[str, Any]] = None
    isActive: Optional[bool] = None
