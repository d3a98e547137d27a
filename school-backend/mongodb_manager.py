import math
import re
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

import performance
from security import ensure_password_hash


class DuplicateRecordError(ValueError):
    """A write collided with a unique index"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class MongoDBManager:
    """Manages MongoDB database operations for the school backend"""

    def __init__(self, mongo_uri: Optional[str] = None, db_name: str = "school_db",
                 client: Optional[MongoClient] = None):
        """
        Initialize MongoDB connection

        Args:
            mongo_uri: MongoDB connection URI
            db_name: Name of the database to use
            client: An already-built client (tests pass an in-memory one)
        """
        try:
            self.client = client if client is not None else MongoClient(mongo_uri)
            self.db = self.client[db_name]

            # Collections
            self.users = self.db['users']
            self.teachers = self.db['teachers']
            self.students = self.db['students']
            self.parents = self.db['parents']
            self.student_performance = self.db['student_performance']
            self.teacher_performance = self.db['teacher_performance']
            self.admissions = self.db['admissions']

            self._create_indexes()

            print("✅ MongoDB connection established successfully")
        except Exception as e:
            print(f"❌ Failed to connect to MongoDB: {e}")
            raise

    def _create_indexes(self):
        """Create database indexes for efficient queries"""
        def _ensure_index(collection, keys, *, unique: bool = False):
            """Create an index if missing; if a conflicting index exists, attempt to fix it."""
            desired_key = list(keys)
            existing = collection.index_information()

            for name, info in existing.items():
                if info.get("key") == desired_key:
                    existing_unique = bool(info.get("unique", False))
                    if unique and not existing_unique:
                        try:
                            collection.drop_index(name)
                        except Exception as drop_err:
                            print(f"⚠️ Warning: Could not drop conflicting index {name}: {drop_err}")
                            return
                    else:
                        return

            try:
                collection.create_index(keys, unique=unique)
            except Exception as create_err:
                # Existing duplicate data blocks a unique index; keep the app running.
                print(f"⚠️ Warning: Could not create index {desired_key} (unique={unique}): {create_err}")

        # Credential store
        _ensure_index(self.users, [("id", ASCENDING)], unique=True)
        _ensure_index(self.users, [("email", ASCENDING)], unique=True)
        _ensure_index(self.users, [("username", ASCENDING)], unique=True)

        # Role profiles
        for collection in (self.teachers, self.students, self.parents):
            _ensure_index(collection, [("id", ASCENDING)], unique=True)
            _ensure_index(collection, [("userId", ASCENDING)])
        _ensure_index(self.teachers, [("email", ASCENDING)], unique=True)
        _ensure_index(self.students, [("email", ASCENDING)], unique=True)
        _ensure_index(self.students, [("rollNumber", ASCENDING)], unique=True)
        _ensure_index(self.students, [("class", ASCENDING)])
        _ensure_index(self.parents, [("parentEmail", ASCENDING)], unique=True)

        # Performance records
        _ensure_index(self.student_performance, [("id", ASCENDING)], unique=True)
        _ensure_index(self.student_performance, [("studentId", ASCENDING)], unique=True)
        _ensure_index(self.student_performance, [("studentEmail", ASCENDING)], unique=True)
        _ensure_index(self.student_performance,
                      [("academicYear", ASCENDING), ("class", ASCENDING), ("section", ASCENDING)])
        _ensure_index(self.teacher_performance, [("id", ASCENDING)], unique=True)
        _ensure_index(self.teacher_performance, [("teacherId", ASCENDING)], unique=True)
        _ensure_index(self.teacher_performance, [("teacherEmail", ASCENDING)], unique=True)

        # Admissions
        _ensure_index(self.admissions, [("id", ASCENDING)], unique=True)
        _ensure_index(self.admissions, [("academicYear", ASCENDING), ("forClass", ASCENDING)])

        print("✅ MongoDB indexes ensured")

    def _insert(self, collection, data: Dict[str, Any], prefix: str, duplicate_message: str) -> Dict[str, Any]:
        now = utc_now()
        record = {"id": f"{prefix}_{uuid.uuid4().hex}", "createdAt": now, "updatedAt": now, **data}
        try:
            collection.insert_one(record)
        except DuplicateKeyError:
            raise DuplicateRecordError(duplicate_message)
        record.pop('_id', None)  # Remove MongoDB _id field
        return record

    def _update(self, collection, record_id: str, updates: Dict[str, Any], duplicate_message: str) -> Optional[Dict[str, Any]]:
        updates = {**updates, "updatedAt": utc_now()}
        try:
            collection.update_one({"id": record_id}, {"$set": updates})
        except DuplicateKeyError:
            raise DuplicateRecordError(duplicate_message)
        return collection.find_one({"id": record_id}, {"_id": 0})

    def _paginate(self, collection, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        total = collection.count_documents(query)
        items = list(
            collection.find(query, {"_id": 0})
            .sort("createdAt", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return {
            "items": items,
            "pagination": {
                "current": page,
                "pages": math.ceil(total / limit),
                "total": total,
            },
        }

    @staticmethod
    def _search_filter(search: str, fields: List[str]) -> Dict[str, Any]:
        if not search:
            return {}
        pattern = {"$regex": re.escape(search), "$options": "i"}
        return {"$or": [{field: pattern} for field in fields]}

    # ==================== USER OPERATIONS ====================

    def create_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a credential record"""
        user_data = {
            "phone": "",
            "password": "",
            "isActive": True,
            "addedBy": None,
            "loginCount": 0,
            "lastLogin": None,
            "teacherProfile": None,
            "studentProfile": None,
            "parentProfile": None,
            "resetPasswordToken": None,
            "resetPasswordExpires": None,
            **data,
        }
        user_data["email"] = normalize_email(user_data["email"])
        user_data["username"] = user_data["username"].strip().lower()
        user_data["password"] = ensure_password_hash(user_data["password"])
        return self._insert(self.users, user_data, "user", "Email or username already registered")

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get user data by user_id"""
        return self.users.find_one({"id": user_id}, {"_id": 0})

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.users.find_one({"email": normalize_email(email)}, {"_id": 0})

    def get_user_by_identifier(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Find a user by email or username"""
        value = normalize_email(identifier)
        return self.users.find_one({"$or": [{"email": value}, {"username": value}]}, {"_id": 0})

    def username_exists(self, username: str, owner_id: Optional[str] = None) -> bool:
        """True if another user (not owner_id) holds this username"""
        existing = self.users.find_one({"username": username.strip().lower()}, {"_id": 0, "id": 1})
        return existing is not None and existing.get("id") != owner_id

    def generate_username(self, base: str, owner_id: Optional[str] = None) -> str:
        """Return base, or base with the first free numeric suffix"""
        base = re.sub(r"[^a-z0-9_.-]", "", base.strip().lower()) or "user"
        candidate = base
        suffix = 1
        while self.username_exists(candidate, owner_id):
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate

    def update_user(self, user_id: str, **updates) -> Dict[str, Any]:
        """Update user data"""
        if not self.get_user(user_id):
            raise ValueError(f"User {user_id} not found")
        if "email" in updates:
            updates["email"] = normalize_email(updates["email"])
        if updates.get("password"):
            updates["password"] = ensure_password_hash(updates["password"])
        return self._update(self.users, user_id, updates, "Email or username already registered")

    def delete_user(self, user_id: str) -> bool:
        result = self.users.delete_one({"id": user_id})
        return result.deleted_count > 0

    # ==================== TEACHER PROFILES ====================

    def create_teacher(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = {**data, "email": normalize_email(data["email"])}
        return self._insert(self.teachers, data, "teacher", "Teacher with this email already exists")

    def get_teacher(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        return self.teachers.find_one({"id": teacher_id}, {"_id": 0})

    def get_teacher_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.teachers.find_one({"email": normalize_email(email)}, {"_id": 0})

    def update_teacher(self, teacher_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if "email" in updates:
            updates["email"] = normalize_email(updates["email"])
        return self._update(self.teachers, teacher_id, updates, "Teacher with this email already exists")

    def delete_teacher(self, teacher_id: str) -> bool:
        return self.teachers.delete_one({"id": teacher_id}).deleted_count > 0

    def list_teachers(self, page: int = 1, limit: int = 10, search: str = "") -> Dict[str, Any]:
        query = self._search_filter(search, ["name", "email", "subject"])
        return self._paginate(self.teachers, query, page, limit)

    def get_active_teachers(self) -> List[Dict[str, Any]]:
        return list(self.teachers.find({"isActive": True}, {"_id": 0}))

    # ==================== STUDENT PROFILES ====================

    def create_student(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = {**data, "email": normalize_email(data["email"])}
        return self._insert(self.students, data, "student", "Email or roll number already exists")

    def get_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        return self.students.find_one({"id": student_id}, {"_id": 0})

    def get_student_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.students.find_one({"email": normalize_email(email)}, {"_id": 0})

    def get_student_by_roll_number(self, roll_number: str) -> Optional[Dict[str, Any]]:
        return self.students.find_one({"rollNumber": roll_number}, {"_id": 0})

    def update_student(self, student_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if "email" in updates:
            updates["email"] = normalize_email(updates["email"])
        return self._update(self.students, student_id, updates, "Email or roll number already exists")

    def delete_student(self, student_id: str) -> bool:
        return self.students.delete_one({"id": student_id}).deleted_count > 0

    def list_students(self, page: int = 1, limit: int = 10, search: str = "",
                      student_class: Optional[str] = None) -> Dict[str, Any]:
        query = self._search_filter(search, ["name", "email", "rollNumber"])
        if student_class:
            query["class"] = student_class
        return self._paginate(self.students, query, page, limit)

    def search_students(self, search: str, limit: int = 10) -> List[Dict[str, Any]]:
        query = {**self._search_filter(search, ["name", "email", "rollNumber"]), "isActive": True}
        projection = {
            "_id": 0, "id": 1, "name": 1, "email": 1, "rollNumber": 1, "class": 1, "section": 1,
            "dateOfBirth": 1, "gender": 1, "parentName": 1, "parentEmail": 1, "parentPhone": 1,
        }
        return list(self.students.find(query, projection).limit(limit))

    # ==================== PARENT PROFILES ====================

    def create_parent(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = {**data, "parentEmail": normalize_email(data["parentEmail"])}
        return self._insert(self.parents, data, "parent", "Parent with this email already exists")

    def get_parent(self, parent_id: str) -> Optional[Dict[str, Any]]:
        return self.parents.find_one({"id": parent_id}, {"_id": 0})

    def get_parent_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.parents.find_one({"parentEmail": normalize_email(email)}, {"_id": 0})

    def update_parent(self, parent_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if "parentEmail" in updates:
            updates["parentEmail"] = normalize_email(updates["parentEmail"])
        return self._update(self.parents, parent_id, updates, "Parent with this email already exists")

    def delete_parent(self, parent_id: str) -> bool:
        return self.parents.delete_one({"id": parent_id}).deleted_count > 0

    def list_parents(self, page: int = 1, limit: int = 10, search: str = "") -> Dict[str, Any]:
        query = self._search_filter(search, ["parentName", "parentEmail", "studentName", "studentEmail"])
        return self._paginate(self.parents, query, page, limit)

    # ==================== STUDENT PERFORMANCE ====================

    def create_student_performance(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            "attendance": [],
            "monthlyAttendance": [],
            "examResults": [],
            "classPerformance": [],
            "teacherRemarks": [],
            "attendanceFiles": [],
            "performanceScores": None,
            "isActive": True,
            "updatedBy": None,
            **data,
        }
        record["studentEmail"] = normalize_email(record["studentEmail"])
        record.update(performance.student_rollups(record))
        return self._insert(self.student_performance, record, "sperf",
                            "Performance record already exists for this student email")

    def get_student_performance(self, performance_id: str) -> Optional[Dict[str, Any]]:
        return self.student_performance.find_one({"id": performance_id}, {"_id": 0})

    def get_student_performance_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.student_performance.find_one({"studentEmail": normalize_email(email)}, {"_id": 0})

    def get_student_performance_by_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        return self.student_performance.find_one({"studentId": student_id}, {"_id": 0})

    def find_student_performance(self, query: Dict[str, Any],
                                 fields: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        projection: Dict[str, Any] = {"_id": 0}
        if fields:
            projection.update({f: 1 for f in fields})
        return list(self.student_performance.find(query, projection))

    def save_student_performance(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a whole record, recomputing its rollups from the raw collections"""
        record = {**record, **performance.student_rollups(record), "updatedAt": utc_now()}
        record.pop('_id', None)
        self.student_performance.replace_one({"id": record["id"]}, record)
        return record

    # ==================== TEACHER PERFORMANCE ====================

    def create_teacher_performance(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            "monthlyAttendance": [],
            "performanceReviews": [],
            "remarks": [],
            "subjectAssignments": [],
            "isActive": True,
            "updatedBy": None,
            **data,
        }
        record["teacherEmail"] = normalize_email(record["teacherEmail"])
        record.update(performance.teacher_rollups(record))
        return self._insert(self.teacher_performance, record, "tperf",
                            "Performance record already exists for this teacher")

    def get_teacher_performance_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.teacher_performance.find_one({"teacherEmail": normalize_email(email)}, {"_id": 0})

    def list_teacher_performance(self, search: str = "") -> List[Dict[str, Any]]:
        query = self._search_filter(search, ["teacherName", "teacherEmail", "subjects"])
        return list(self.teacher_performance.find(query, {"_id": 0}).sort("createdAt", DESCENDING))

    def teacher_performance_emails(self) -> List[str]:
        return [r["teacherEmail"] for r in self.teacher_performance.find({}, {"_id": 0, "teacherEmail": 1})]

    def save_teacher_performance(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a whole record, recomputing its rollups from the raw collections"""
        record = {**record, **performance.teacher_rollups(record), "updatedAt": utc_now()}
        record.pop('_id', None)
        self.teacher_performance.replace_one({"id": record["id"]}, record)
        return record

    # ==================== ADMISSIONS ====================

    def create_admission(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._insert(self.admissions, data, "adm", "Duplicate admission found")

    def get_admission(self, admission_id: str) -> Optional[Dict[str, Any]]:
        return self.admissions.find_one({"id": admission_id}, {"_id": 0})

    def list_admissions(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return list(self.admissions.find(query, {"_id": 0}).sort("createdAt", DESCENDING))

    def count_admissions(self, academic_year: str, for_class: str) -> int:
        return self.admissions.count_documents({"academicYear": academic_year, "forClass": for_class})

    def save_admission(self, record: Dict[str, Any]) -> Dict[str, Any]:
        record = {**record, "updatedAt": utc_now()}
        record.pop('_id', None)
        self.admissions.replace_one({"id": record["id"]}, record)
        return record

    # ==================== STATS ====================

    def get_database_stats(self) -> Dict[str, Any]:
        """Get document counts per collection"""
        return {
            "total_users": self.users.count_documents({}),
            "total_teachers": self.teachers.count_documents({}),
            "total_students": self.students.count_documents({}),
            "total_parents": self.parents.count_documents({}),
            "total_student_performance": self.student_performance.count_documents({}),
            "total_teacher_performance": self.teacher_performance.count_documents({}),
            "total_admissions": self.admissions.count_documents({}),
            "database_type": "MongoDB",
        }
