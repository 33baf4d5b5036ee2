"""Unit tests for parsers module."""

from datetime import date
from io import BytesIO

import pandas as pd
import pytest

from nethaji.errors import ImportFormatError
from nethaji.parsers import (
    build_attendance,
    build_students,
    clean_text,
    normalize_and_rename_columns,
    parse_roster,
    to_activity,
    to_bool,
    to_hours,
)


def test_to_hours():
    """Test duration parsing."""
    assert to_hours("1:30") == 1.5
    assert to_hours("0:15") == 0.25
    assert to_hours(2) == 2.0
    assert to_hours("2.5") == 2.5
    assert to_hours("") == 0.0
    assert to_hours(None) == 0.0
    assert to_hours(pd.NA) == 0.0
    assert to_hours("soon") == 0.0


def test_cell_helpers():
    assert clean_text(1042.0) == '1042'
    assert clean_text("  Arun ") == 'Arun'
    assert clean_text(None) is None
    assert to_bool("Yes") == True
    assert to_bool("no") == False
    assert to_bool(float('nan')) == False
    assert to_activity("Strength Training") == 'strength_training'
    assert to_activity("kabaddi") is None


def test_normalize_columns():
    """Column name variations map to standard names."""
    df = pd.DataFrame(columns=['Student ID', 'Full Name', 'Mobile', 'Village', 'Current Streak', 'Notes'])
    renamed = normalize_and_rename_columns(df, "students")

    assert list(renamed.columns) == ['id', 'name', 'phone', 'village_id', 'streak_count', 'Notes']


def test_build_students_requires_id_and_name():
    with pytest.raises(ImportFormatError):
        build_students(pd.DataFrame({'phone': ['123']}))


def test_build_students_skips_incomplete_rows():
    df = pd.DataFrame({
        'id': ['S1', 'S2', None],
        'name': ['Arun', None, 'Nobody'],
        'gamification_points': [150, 10, 0],
        'is_dropout': ['no', 'yes', 'no'],
    })
    students = build_students(df)

    assert [s.id for s in students] == ['S1']
    assert students[0].gamification_points == 150
    assert students[0].is_dropout == False


def test_build_attendance():
    df = normalize_and_rename_columns(pd.DataFrame({
        'Student ID': ['S1', 'S1', 'S9', 'S1'],
        'Date': ['2026-03-02', '2026-03-03', '2026-03-03', 'not a date'],
        'Activity': ['Strength Training', 'kabaddi', 'chess', 'yoga'],
        'Hours': ['1:30', 12, 1, 1],
    }), "attendance")

    records = build_attendance(df, {'S1'})

    assert len(records) == 2
    assert records[0].date == date(2026, 3, 2)
    assert records[0].activity_type == 'strength_training'
    assert records[0].hours == 1.5
    assert records[1].activity_type == 'sports'
    assert records[1].hours == 8.0


def test_parse_csv_roster():
    csv = (
        "Student ID,Name,Phone,Village,Streak,Points,Dropout,Enrolled On\n"
        "101,Arun,9876543210,v1,5,120,no,2026-01-05\n"
        "102,Divya,,v1,0,30,yes,\n"
    ).encode()

    students, attendance = parse_roster(csv, 'roster.csv')

    assert attendance == []
    assert [s.id for s in students] == ['101', '102']
    assert students[0].phone == '9876543210'
    assert students[0].streak_count == 5
    assert students[0].enrolled_on == date(2026, 1, 5)
    assert students[1].phone is None
    assert students[1].is_dropout == True
    assert students[1].enrolled_on is None


def test_parse_workbook_with_attendance_sheet():
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        pd.DataFrame({
            'Student#': ['101', '102'],
            'Student Name': ['Arun', 'Divya'],
        }).to_excel(writer, sheet_name='Students', index=False)
        pd.DataFrame({
            'Student ID': ['101', '101', '102'],
            'Date': ['2026-03-01', '2026-03-02', '2026-03-02'],
            'Activity Type': ['sports', 'chess', 'yoga'],
        }).to_excel(writer, sheet_name='Attendance', index=False)

    students, attendance = parse_roster(buffer.getvalue(), 'roster.xlsx')

    assert [s.name for s in students] == ['Arun', 'Divya']
    assert len(attendance) == 3
    assert {r.activity_type for r in attendance} == {'sports', 'chess', 'yoga'}
    assert all(r.hours == 1.0 for r in attendance)


def test_parse_rejects_corrupt_workbook():
    with pytest.raises(ImportFormatError):
        parse_roster(b'not a workbook', 'roster.xlsx')
