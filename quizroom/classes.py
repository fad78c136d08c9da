import csv
import io
import logging
import random
import secrets

from quizroom.auth import hash_password
from quizroom.db import session_scope
from quizroom.errors import (
    AlreadyEnrolled,
    ClassCodeTaken,
    CodeNotFound,
    DuplicateUser,
    NotFound,
    PermissionDenied,
)
from quizroom.models import Class, Enrollment, Quiz, Role, User, now_utc
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

logger = logging.getLogger(__name__)

# no 0/O or 1/I/L look-alikes
CLASS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CLASS_CODE_LENGTH = 8


def _generate_code(length: int = CLASS_CODE_LENGTH) -> str:
    return ''.join(random.choices(CLASS_CODE_ALPHABET, k=length))


def _validate_code(code: str) -> str:
    code = code.strip().upper()
    if len(code) != CLASS_CODE_LENGTH or any(ch not in CLASS_CODE_ALPHABET for ch in code):
        raise ValueError(
            f"Class codes are {CLASS_CODE_LENGTH} characters from {CLASS_CODE_ALPHABET}"
        )
    return code


def _require_owner(session, class_id: int, owner_id: int) -> Class:
    cls = session.get(Class, class_id)
    if not cls:
        raise NotFound("Class not found")
    if cls.owner_id != owner_id:
        raise PermissionDenied("Only the class owner can do this")
    return cls


def create_class(
    name: str,
    owner_id: int,
    description: str | None = None,
    subject: str | None = None,
    semester: str | None = None,
    academic_year: str | None = None,
    code: str | None = None,
) -> Class:
    with session_scope() as session:
        owner = session.get(User, owner_id)
        if not owner:
            raise NotFound("User not found")
        if owner.role != Role.ADMIN.value:
            raise PermissionDenied("Only instructors can create classes")
        requested = code is not None
        if requested:
            code = _validate_code(code)
            if session.exec(select(Class.id).where(Class.code == code)).first():
                raise ClassCodeTaken(f"Class code {code} is already in use")
        else:
            code = _generate_code()
            # ensure unique code
            while session.exec(select(Class.id).where(Class.code == code)).first():
                code = _generate_code()
        cls = Class(
            name=name,
            owner_id=owner_id,
            code=code,
            description=description,
            subject=subject,
            semester=semester,
            academic_year=academic_year,
        )
        session.add(cls)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            if requested:
                raise ClassCodeTaken(f"Class code {code} is already in use") from None
            raise
        session.refresh(cls)
        logger.info("Class %s created with code %s", cls.id, cls.code)
        return cls


def join_class_by_code(code: str, user_id: int) -> Enrollment:
    """Enroll a student through a class code. Joining twice is a no-op."""
    code = (code or "").strip().upper()
    with session_scope() as session:
        user = session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        if user.role != Role.STUDENT.value:
            raise PermissionDenied("Only students can join classes")
        cls = session.exec(select(Class).where(Class.code == code)).first()
        if not cls:
            raise CodeNotFound("Class not found")
        q = select(Enrollment).where(Enrollment.class_id == cls.id, Enrollment.user_id == user_id)
        existing = session.exec(q).first()
        if existing:
            return existing
        enroll = Enrollment(class_id=cls.id, user_id=user_id)
        session.add(enroll)
        try:
            session.commit()
        except IntegrityError:
            # a concurrent join won the unique (class_id, user_id) row
            session.rollback()
            return session.exec(q).one()
        session.refresh(enroll)
        logger.info("User %s joined class %s", user_id, cls.id)
        return enroll


def is_enrolled(session, class_id: int, user_id: int) -> bool:
    q = select(Enrollment.id).where(Enrollment.class_id == class_id, Enrollment.user_id == user_id)
    return session.exec(q).first() is not None


def get_user_classes(user_id: int):
    with session_scope() as session:
        q = select(Class).join(Enrollment, Enrollment.class_id == Class.id).where(Enrollment.user_id == user_id)
        return list(session.exec(q.order_by(Class.name)))


def get_classes_for_owner(owner_id: int):
    with session_scope() as session:
        classes = list(session.exec(
            select(Class).where(Class.owner_id == owner_id).order_by(Class.created_at.desc())
        ))
        results = []
        for cls in classes:
            students = session.exec(
                select(func.count(Enrollment.id)).where(Enrollment.class_id == cls.id)
            ).one()
            quizzes = session.exec(
                select(func.count(Quiz.id)).where(Quiz.class_id == cls.id)
            ).one()
            results.append({'class': cls, 'student_count': students, 'quiz_count': quizzes})
        return results


def get_class_for_user(class_id: int, user_id: int, role: str) -> Class:
    """Owners see their classes, students only the ones they are enrolled in."""
    with session_scope() as session:
        cls = session.get(Class, class_id)
        if not cls:
            raise NotFound("Class not found")
        if role == Role.ADMIN.value and cls.owner_id == user_id:
            return cls
        if role == Role.STUDENT.value and is_enrolled(session, class_id, user_id):
            return cls
        raise NotFound("Class not found")


def update_class(class_id: int, owner_id: int, **fields) -> Class:
    allowed = {'name', 'description', 'subject', 'semester', 'academic_year'}
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown class fields: {', '.join(sorted(unknown))}")
    with session_scope() as session:
        cls = _require_owner(session, class_id, owner_id)
        for key, value in fields.items():
            setattr(cls, key, value)
        cls.updated_at = now_utc()
        session.add(cls)
        session.commit()
        session.refresh(cls)
        return cls


def delete_class(class_id: int, owner_id: int) -> bool:
    with session_scope() as session:
        cls = _require_owner(session, class_id, owner_id)
        if session.exec(select(Quiz.id).where(Quiz.class_id == class_id)).first():
            raise PermissionDenied("Delete the class quizzes first")
        for enroll in session.exec(select(Enrollment).where(Enrollment.class_id == class_id)):
            session.delete(enroll)
        session.delete(cls)
        session.commit()
        logger.info("Class %s deleted", class_id)
        return True


def get_students_in_class(class_id: int):
    with session_scope() as session:
        q = (
            select(User, Enrollment.enrolled_at)
            .join(Enrollment, Enrollment.user_id == User.id)
            .where(Enrollment.class_id == class_id)
            .order_by(Enrollment.enrolled_at.desc())
        )
        return [
            {
                'id': user.id,
                'name': user.full_name or '',
                'email': user.email,
                'index_number': user.index_number,
                'enrolled_at': enrolled_at,
            }
            for user, enrolled_at in session.exec(q)
        ]


def enroll_student(class_id: int, owner_id: int, name: str, email: str, index_number: str | None = None) -> Enrollment:
    """Instructor-side enrollment; creates the student account when missing."""
    email = email.strip().lower()
    with session_scope() as session:
        _require_owner(session, class_id, owner_id)
        student = session.exec(select(User).where(User.email == email)).first()
        if student is None:
            if index_number and session.exec(select(User.id).where(User.index_number == index_number)).first():
                raise DuplicateUser("Index number already registered")
            student = User(
                email=email,
                full_name=name,
                index_number=index_number or None,
                role=Role.STUDENT.value,
                # unusable until the student resets it
                password_hash=hash_password(secrets.token_urlsafe(16)),
            )
            session.add(student)
            session.flush()
        elif is_enrolled(session, class_id, student.id):
            raise AlreadyEnrolled("Student is already enrolled in this class")
        enroll = Enrollment(class_id=class_id, user_id=student.id)
        session.add(enroll)
        session.commit()
        session.refresh(enroll)
        logger.info("Owner %s enrolled user %s in class %s", owner_id, student.id, class_id)
        return enroll


def enroll_students_from_csv(class_id: int, owner_id: int, csv_text: str):
    """CSV columns: name,email,index_number (header row required).

    Returns {'enrolled': int, 'errors': [str]}; bad rows do not stop the import.
    """
    reader = csv.DictReader(io.StringIO(csv_text))
    enrolled = 0
    errors = []
    for line_no, row in enumerate(reader, start=2):
        name = (row.get('name') or '').strip()
        email = (row.get('email') or '').strip()
        index_number = (row.get('index_number') or '').strip() or None
        if not name or not email:
            errors.append(f"Row {line_no}: name and email are required")
            continue
        try:
            enroll_student(class_id, owner_id, name, email, index_number)
            enrolled += 1
        except (AlreadyEnrolled, DuplicateUser) as exc:
            errors.append(f"Row {line_no}: {exc}")
    return {'enrolled': enrolled, 'errors': errors}


def remove_student_from_class(class_id: int, owner_id: int, student_id: int) -> bool:
    with session_scope() as session:
        _require_owner(session, class_id, owner_id)
        q = select(Enrollment).where(Enrollment.class_id == class_id, Enrollment.user_id == student_id)
        enroll = session.exec(q).first()
        if not enroll:
            raise NotFound("Enrollment not found")
        session.delete(enroll)
        session.commit()
        return True


def export_student_list(class_id: int) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(['name', 'email', 'index_number', 'enrolled_at'])
    for s in get_students_in_class(class_id):
        writer.writerow([
            s['name'],
            s['email'],
            s['index_number'] or '',
            s['enrolled_at'].isoformat() if s['enrolled_at'] else '',
        ])
    return buf.getvalue()
