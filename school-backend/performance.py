"""
Derived attendance and grading figures for performance records.

Every function here is pure: it reads raw collections and returns numbers or
new dicts. Rollups are always rebuilt from the full collections, never
patched incrementally.
"""

from typing import Any, Dict, List, Optional, Tuple

MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

GRADE_THRESHOLDS: List[Tuple[float, str]] = [
    (90.0, "A+"),
    (80.0, "A"),
    (70.0, "B"),
    (60.0, "C"),
    (50.0, "D"),
]

REVIEW_DIMENSIONS = [
    "punctuality",
    "subjectKnowledge",
    "teachingMethodology",
    "classManagement",
    "studentEngagement",
    "communicationSkills",
    "assessmentQuality",
    "professionalDevelopment",
]


def grade_for(percentage: float) -> str:
    """Letter grade; each threshold is inclusive."""
    for threshold, grade in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return grade
    return "F"


def month_index(month: Optional[str]) -> int:
    """Position of a month name in the calendar, -1 if unknown."""
    try:
        return MONTHS.index(month)
    except ValueError:
        return -1


# ==================== STUDENT ====================

def monthly_attendance_percentage(working_days: int, present_days: int) -> float:
    if present_days > working_days:
        raise ValueError("Present days cannot exceed working days")
    return (present_days / working_days) * 100 if working_days > 0 else 0.0


def grade_subject(subject: Dict[str, Any]) -> Dict[str, Any]:
    total = subject["totalMarks"]
    obtained = subject["obtainedMarks"]
    if total <= 0:
        raise ValueError(f"Total marks must be positive for {subject.get('subjectName')}")

    percentage = (obtained / total) * 100
    return {**subject, "percentage": percentage, "grade": grade_for(percentage)}


def grade_exam(subjects: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Grade every subject of one exam and the exam as a whole.

    The overall figure is taken over summed marks, not averaged percentages.
    """
    if not subjects:
        raise ValueError("At least one subject is required")

    graded = [grade_subject(s) for s in subjects]
    total_marks = sum(s["totalMarks"] for s in graded)
    total_obtained = sum(s["obtainedMarks"] for s in graded)
    overall = (total_obtained / total_marks) * 100

    return {
        "subjects": graded,
        "overallPercentage": overall,
        "overallGrade": grade_for(overall),
    }


def student_rollups(record: Dict[str, Any]) -> Dict[str, Any]:
    attendance = record.get("attendance") or []
    total_days = len(attendance)
    present = sum(1 for a in attendance if a.get("status") == "present")

    obtained_total = 0.0
    subject_count = 0
    for exam in record.get("examResults") or []:
        for subject in exam.get("subjects") or []:
            obtained_total += subject.get("obtainedMarks", 0)
            subject_count += 1

    return {
        "totalPresent": present,
        "totalAbsent": total_days - present,
        "attendancePercentage": (present / total_days) * 100 if total_days > 0 else 0.0,
        "averageScore": obtained_total / subject_count if subject_count > 0 else 0.0,
    }


def student_statistics(record: Dict[str, Any]) -> Dict[str, Any]:
    """Summary view used by the statistics endpoint"""
    subject_performance: Dict[str, Dict[str, Any]] = {}
    exam_types: Dict[str, int] = {}

    for exam in record.get("examResults") or []:
        exam_type = exam.get("examType")
        exam_types[exam_type] = exam_types.get(exam_type, 0) + 1

        for subject in exam.get("subjects") or []:
            stats = subject_performance.setdefault(subject["subjectName"], {
                "totalExams": 0,
                "totalMarks": 0,
                "obtainedMarks": 0,
                "highestScore": None,
                "lowestScore": None,
            })
            obtained = subject["obtainedMarks"]
            stats["totalExams"] += 1
            stats["totalMarks"] += subject["totalMarks"]
            stats["obtainedMarks"] += obtained
            stats["highestScore"] = obtained if stats["highestScore"] is None else max(stats["highestScore"], obtained)
            stats["lowestScore"] = obtained if stats["lowestScore"] is None else min(stats["lowestScore"], obtained)

    for stats in subject_performance.values():
        stats["averageScore"] = stats["obtainedMarks"] / stats["totalExams"]
        stats["averagePercentage"] = (stats["obtainedMarks"] / stats["totalMarks"]) * 100 if stats["totalMarks"] else 0.0

    class_performance = record.get("classPerformance") or []
    remarks = record.get("teacherRemarks") or []
    remarks_by_category: Dict[str, int] = {}
    for remark in remarks:
        category = remark.get("category")
        remarks_by_category[category] = remarks_by_category.get(category, 0) + 1

    def _average(key: str) -> float:
        if not class_performance:
            return 0.0
        return sum(cp.get(key, 0) for cp in class_performance) / len(class_performance)

    return {
        "studentInfo": {
            "name": record.get("studentName"),
            "email": record.get("studentEmail"),
            "rollNumber": record.get("rollNumber"),
            "class": record.get("class"),
            "section": record.get("section"),
        },
        "attendance": {
            "totalPresent": record.get("totalPresent", 0),
            "totalAbsent": record.get("totalAbsent", 0),
            "attendancePercentage": record.get("attendancePercentage", 0),
            "totalDays": len(record.get("attendance") or []),
            "monthlySummary": [
                {
                    "month": ma.get("month"),
                    "year": ma.get("year"),
                    "workingDays": ma.get("workingDays"),
                    "presentDays": ma.get("presentDays"),
                    "percentage": ma.get("attendancePercentage"),
                }
                for ma in record.get("monthlyAttendance") or []
            ],
        },
        "exams": {
            "totalExams": len(record.get("examResults") or []),
            "averageScore": record.get("averageScore", 0),
            "examTypes": exam_types,
            "subjectPerformance": subject_performance,
        },
        "classPerformance": {
            "totalRecords": len(class_performance),
            "averageParticipation": _average("participationScore"),
            "averageHomework": _average("homeworkCompletion"),
            "averageDiscipline": _average("disciplineScore"),
            "averageExtraCurricular": _average("extraCurricular"),
            "monthlyBreakdown": [
                {
                    "month": cp.get("month"),
                    "year": cp.get("year"),
                    "participation": cp.get("participationScore"),
                    "homework": cp.get("homeworkCompletion"),
                }
                for cp in class_performance
            ],
        },
        "performanceScores": record.get("performanceScores"),
        "teacherRemarks": {
            "totalRemarks": len(remarks),
            "byCategory": remarks_by_category,
        },
    }


# ==================== TEACHER ====================

def teacher_attendance_percentage(working_days: int, present_days: int,
                                  leave_days: int = 0, half_days: int = 0) -> float:
    """A half day counts as half a present day."""
    if present_days > working_days:
        raise ValueError("Present days cannot exceed working days")
    if leave_days + half_days > working_days - present_days:
        raise ValueError("Leave days and half days exceed available days")

    effective_days = present_days + (half_days * 0.5)
    return (effective_days / working_days) * 100 if working_days > 0 else 0.0


def review_overall_score(scores: Dict[str, float]) -> float:
    """Unweighted mean over the fixed rubric; a missing dimension scores 0."""
    return sum(scores.get(d, 0) for d in REVIEW_DIMENSIONS) / len(REVIEW_DIMENSIONS)


def teacher_rollups(record: Dict[str, Any]) -> Dict[str, Any]:
    monthly = record.get("monthlyAttendance") or []
    reviews = record.get("performanceReviews") or []

    total_working = sum(a.get("workingDays", 0) for a in monthly)
    total_present = sum(a.get("presentDays", 0) for a in monthly)

    return {
        "totalWorkingDays": total_working,
        "totalPresentDays": total_present,
        "overallAttendancePercentage": (total_present / total_working) * 100 if total_working > 0 else 0.0,
        "averagePerformanceScore": (
            sum(r.get("overallScore", 0) for r in reviews) / len(reviews) if reviews else 0.0
        ),
    }


def sort_monthly_newest_first(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(
        entries,
        key=lambda a: (a.get("year") or 0, month_index(a.get("month"))),
        reverse=True,
    )
