"""Roster workbook parsing and data normalization."""

import logging
import re
import uuid
import zipfile
from io import BytesIO
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from openpyxl import load_workbook

from nethaji.errors import ImportFormatError
from nethaji.models import AttendanceRecord, Student

logger = logging.getLogger(__name__)

ACTIVITY_TYPES = ('sports', 'chess', 'yoga', 'meditation', 'strength_training')

STUDENT_COLUMNS = {
    'id': ['id', 'student id', 'studentid', 'student#', 'student number', 'student'],
    'name': ['name', 'student name', 'studentname', 'full name', 'fullname'],
    'phone': ['phone', 'mobile', 'phone number', 'contact'],
    'village_id': ['village', 'village id', 'villageid'],
    'squad_id': ['squad', 'squad id', 'squadid'],
    'teacher_id': ['teacher', 'teacher id', 'teacherid', 'assigned teacher'],
    'streak_count': ['streak', 'streak count', 'streakcount', 'current streak'],
    'gamification_points': ['points', 'gamification points', 'gamificationpoints'],
    'level': ['level'],
    'is_dropout': ['dropout', 'is dropout', 'isdropout'],
    'enrolled_on': ['enrolled', 'enrolled on', 'enrollment date', 'enrollmentdate'],
}

ATTENDANCE_COLUMNS = {
    'student_id': ['student id', 'studentid', 'student#', 'student number', 'student', 'id'],
    'date': ['date', 'attendance date', 'session date'],
    'activity_type': ['activity', 'activity type', 'activitytype'],
    'hours': ['hours', 'duration', 'hours attended'],
    'teacher_id': ['teacher', 'teacher id', 'teacherid'],
}


def normalize_col_name(col_name) -> str:
    """Normalize a column name for matching."""
    if pd.isna(col_name):
        return ""
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,%_]', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def normalize_and_rename_columns(df: pd.DataFrame, sheet_type: str) -> pd.DataFrame:
    """
    Rename sheet columns to their standard names.
    Handles minor naming variations and formatting differences.

    Args:
        df: DataFrame to normalize
        sheet_type: "students" or "attendance"

    Returns:
        DataFrame with standard column names; unknown columns are kept as-is
    """
    target_mappings = STUDENT_COLUMNS if sheet_type == "students" else ATTENDANCE_COLUMNS

    renames: Dict[str, str] = {}
    taken = set()
    for col in df.columns:
        normalized = normalize_col_name(col)
        for target, variations in target_mappings.items():
            if target in taken:
                continue
            if normalized == normalize_col_name(target) or normalized in variations:
                renames[col] = target
                taken.add(target)
                break

    return df.rename(columns=renames)


def to_hours(value) -> float:
    """
    Convert time strings like '1:30' to numeric hours.

    Returns:
        Decimal hours (e.g., '1:30' -> 1.5, '0:15' -> 0.25, 2 -> 2.0)
    """
    if isinstance(value, (int, float)) and not pd.isna(value):
        return float(value)

    if value is None or pd.isna(value) or value == '':
        return 0.0

    if isinstance(value, str) and ":" in value:
        try:
            hours, minutes = value.split(":")
            return float(hours) + float(minutes) / 60.0
        except (ValueError, TypeError):
            return 0.0

    try:
        return float(value)
    except (ValueError, TypeError):
        return 0.0


def to_count(value) -> int:
    """Coerce a counter cell to a non-negative int; blanks become 0."""
    try:
        val = float(value)
    except (ValueError, TypeError):
        return 0
    if np.isnan(val) or np.isinf(val):
        return 0
    return max(0, int(val))


def to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y')
    if value is None or pd.isna(value):
        return False
    return bool(value)


def to_activity(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    activity = re.sub(r'[\s-]+', '_', str(value).strip().lower())
    return activity if activity in ACTIVITY_TYPES else None


def clean_text(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    # Excel turns numeric ids into floats
    if re.fullmatch(r'\d+\.0', text):
        text = text[:-2]
    return text or None


def load_roster(file_bytes: bytes, filename: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Read the Students sheet and optional Attendance sheet from an upload.

    Excel workbooks pick sheets by name ('student'/'roster' and 'attend');
    a CSV file is treated as the Students sheet alone.

    Returns:
        Tuple of (students_df, attendance_df) with standard column names
    """
    name = filename.lower()
    empty_attendance = pd.DataFrame(columns=list(ATTENDANCE_COLUMNS))

    try:
        if name.endswith('.csv'):
            students_df = pd.read_csv(BytesIO(file_bytes))
            return normalize_and_rename_columns(students_df, "students"), empty_attendance

        workbook = load_workbook(filename=BytesIO(file_bytes), read_only=True)
        sheet_names = workbook.sheetnames
        workbook.close()
    except (ValueError, OSError, KeyError, zipfile.BadZipFile) as e:
        raise ImportFormatError(f"Could not read {filename}: {e}") from e

    students_sheet = None
    attendance_sheet = None
    for sheet_name in sheet_names:
        lowered = sheet_name.lower()
        if 'attend' in lowered:
            attendance_sheet = sheet_name
        elif 'student' in lowered or 'roster' in lowered:
            students_sheet = sheet_name

    if students_sheet is None:
        if len(sheet_names) == 1:
            students_sheet = sheet_names[0]
        else:
            raise ImportFormatError(f"Could not find students sheet. Available sheets: {sheet_names}")

    excel_file = BytesIO(file_bytes)
    students_df = pd.read_excel(excel_file, sheet_name=students_sheet, engine='openpyxl')
    students_df = normalize_and_rename_columns(students_df, "students")

    attendance_df = empty_attendance
    if attendance_sheet is not None:
        excel_file.seek(0)
        attendance_df = pd.read_excel(excel_file, sheet_name=attendance_sheet, engine='openpyxl')
        attendance_df = normalize_and_rename_columns(attendance_df, "attendance")

    logger.info(
        "Loaded roster %s: %d student rows, %d attendance rows",
        filename, len(students_df), len(attendance_df)
    )
    return students_df, attendance_df


def build_students(df: pd.DataFrame) -> List[Student]:
    """Turn normalized student rows into Student records, dropping rows without id or name."""
    missing = [col for col in ('id', 'name') if col not in df.columns]
    if missing:
        raise ImportFormatError(f"Students sheet is missing required columns: {missing}")

    students = []
    for _, row in df.iterrows():
        student_id = clean_text(row.get('id'))
        name = clean_text(row.get('name'))
        if not student_id or not name:
            continue

        enrolled = pd.to_datetime(row.get('enrolled_on'), errors='coerce')
        students.append(Student(
            id=student_id,
            name=name,
            phone=clean_text(row.get('phone')),
            village_id=clean_text(row.get('village_id')),
            squad_id=clean_text(row.get('squad_id')),
            teacher_id=clean_text(row.get('teacher_id')),
            streak_count=to_count(row.get('streak_count')),
            gamification_points=to_count(row.get('gamification_points')),
            level=max(1, to_count(row.get('level'))),
            is_dropout=to_bool(row.get('is_dropout')),
            enrolled_on=None if pd.isna(enrolled) else enrolled.date(),
        ))

    skipped = len(df) - len(students)
    if skipped:
        logger.warning("Skipped %d student rows without id or name", skipped)
    return students


def build_attendance(df: pd.DataFrame, known_ids: set) -> List[AttendanceRecord]:
    """Turn normalized attendance rows into records for known students."""
    if df.empty:
        return []

    missing = [col for col in ('student_id', 'date') if col not in df.columns]
    if missing:
        raise ImportFormatError(f"Attendance sheet is missing required columns: {missing}")

    df = df.copy()
    df['date'] = pd.to_datetime(df['date'], errors='coerce')

    records = []
    for _, row in df.iterrows():
        student_id = clean_text(row.get('student_id'))
        if student_id not in known_ids or pd.isna(row['date']):
            continue
        activity = to_activity(row.get('activity_type', 'sports')) or 'sports'
        hours = to_hours(row.get('hours', 1.0)) or 1.0
        records.append(AttendanceRecord(
            id=str(uuid.uuid4()),
            student_id=student_id,
            teacher_id=clean_text(row.get('teacher_id')),
            date=row['date'].date(),
            activity_type=activity,
            hours=min(8.0, max(0.5, hours)),
        ))

    skipped = len(df) - len(records)
    if skipped:
        logger.warning("Skipped %d attendance rows (unknown student or bad date)", skipped)
    return records


def parse_roster(file_bytes: bytes, filename: str) -> Tuple[List[Student], List[AttendanceRecord]]:
    """Load and convert a roster upload into students and their attendance history."""
    students_df, attendance_df = load_roster(file_bytes, filename)
    students = build_students(students_df)
    attendance = build_attendance(attendance_df, {s.id for s in students})
    return students, attendance
