from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from tutordesk.models import PackageDeduction, PackageKind, PackageStatus, StudentPackage


logger = logging.getLogger(__name__)


class PackageLedger:
    """Package balance bookkeeping as seen by the scheduling engine."""

    def has_active_package(self, db: Session, student_id: int, course_id: int, at: datetime, *, minutes: int = 0) -> bool:
        raise NotImplementedError

    def reverse_deduction(self, db: Session, session_id: int) -> int:
        raise NotImplementedError


class SqlPackageLedger(PackageLedger):
    def has_active_package(self, db: Session, student_id: int, course_id: int, at: datetime, *, minutes: int = 0) -> bool:
        rows = (
            db.query(StudentPackage)
            .filter(
                StudentPackage.student_id == student_id,
                StudentPackage.course_id == course_id,
                StudentPackage.status == PackageStatus.ACTIVE.value,
                StudentPackage.valid_from <= at,
                or_(StudentPackage.valid_to.is_(None), StudentPackage.valid_to >= at),
            )
            .all()
        )
        needed = max(1, int(minutes or 0))
        for row in rows:
            if row.kind == PackageKind.MONTHLY.value:
                return True
            if row.kind == PackageKind.HOURS.value and int(row.remaining_minutes or 0) >= needed:
                return True
        return False

    def reverse_deduction(self, db: Session, session_id: int) -> int:
        """Credit back every deduction booked against a session. Does not commit."""
        rows = db.query(PackageDeduction).filter(PackageDeduction.session_id == session_id).all()
        restored = 0
        for row in rows:
            package = (
                db.query(StudentPackage)
                .filter(StudentPackage.id == row.package_id)
                .with_for_update()
                .first()
            )
            if package and package.kind == PackageKind.HOURS.value:
                package.remaining_minutes = int(package.remaining_minutes or 0) + int(row.minutes)
            restored += int(row.minutes)
            db.delete(row)
        if rows:
            db.flush()
            logger.info('package_deduction_reversed session_id=%s rows=%s minutes=%s', session_id, len(rows), restored)
        return restored


default_package_ledger = SqlPackageLedger()


class NoActivePackageError(ValueError):
    pass
