from __future__ import annotations

import unittest
from datetime import date, time
from decimal import Decimal

from db_fixtures import memory_session_factory, seed_branch, seed_employee

from backoffice.models import AttendanceStatus, RecordStatus
from backoffice.services import attendance_service

MONDAY = date(2024, 7, 1)


class AttendanceServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.branch, _, _ = seed_branch(self.db)
        self.other_branch, _, _ = seed_branch(self.db, code='CNX')
        self.clerk = seed_employee(self.db, branch_id=self.branch.id)
        self.driver = seed_employee(self.db, branch_id=self.branch.id, code='EMP0002')

    def tearDown(self) -> None:
        self.db.close()

    def test_check_in_on_time_and_late(self) -> None:
        on_time = attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(9, 0))
        late = attendance_service.check_in(self.db, employee_id=self.driver.id, work_date=MONDAY, at=time(9, 20))

        self.assertEqual(on_time.status, AttendanceStatus.PRESENT)
        self.assertEqual(on_time.branch_id, self.branch.id)
        self.assertEqual(late.status, AttendanceStatus.LATE)
        with self.assertRaisesRegex(ValueError, 'already recorded'):
            attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(10, 0))

    def test_inactive_or_unknown_employee_cannot_check_in(self) -> None:
        self.clerk.status = RecordStatus.INACTIVE.value
        with self.assertRaisesRegex(ValueError, 'Inactive'):
            attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(8, 0))
        with self.assertRaisesRegex(ValueError, 'Employee not found'):
            attendance_service.check_in(self.db, employee_id=999, work_date=MONDAY, at=time(8, 0))

    def test_check_out_computes_hours(self) -> None:
        attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(8, 30))
        record = attendance_service.check_out(
            self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(18, 15), break_minutes=60
        )
        self.assertEqual(record.total_hours, Decimal('8.75'))
        self.assertEqual(record.overtime_hours, Decimal('0.75'))
        self.assertEqual(record.status, AttendanceStatus.OVERTIME)

        with self.assertRaisesRegex(ValueError, 'Already checked out'):
            attendance_service.check_out(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(19, 0))

    def test_late_arrival_keeps_late_status_and_short_day_is_half_day(self) -> None:
        attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(9, 30))
        long_day = attendance_service.check_out(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(19, 30))
        self.assertEqual(long_day.overtime_hours, Decimal('2.00'))
        self.assertEqual(long_day.status, AttendanceStatus.LATE)

        attendance_service.check_in(self.db, employee_id=self.driver.id, work_date=MONDAY, at=time(8, 0))
        short_day = attendance_service.check_out(self.db, employee_id=self.driver.id, work_date=MONDAY, at=time(11, 0))
        self.assertEqual(short_day.total_hours, Decimal('3.00'))
        self.assertEqual(short_day.status, AttendanceStatus.HALF_DAY)

    def test_check_out_validation(self) -> None:
        with self.assertRaisesRegex(ValueError, 'No check-in'):
            attendance_service.check_out(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(17, 0))
        attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(9, 0))
        with self.assertRaisesRegex(ValueError, 'after check-in'):
            attendance_service.check_out(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(8, 0))

    def test_absence_and_summary(self) -> None:
        tuesday = date(2024, 7, 2)
        attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(8, 55))
        attendance_service.check_out(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(17, 55), break_minutes=60)
        attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=tuesday, at=time(9, 10))
        attendance_service.record_absence(self.db, employee_id=self.driver.id, work_date=MONDAY)
        with self.assertRaisesRegex(ValueError, 'absent or holiday'):
            attendance_service.record_absence(self.db, employee_id=self.driver.id, work_date=tuesday, status='present')

        # Monday to Sunday holds five working days.
        self.assertEqual(attendance_service.working_days(MONDAY, date(2024, 7, 7)), 5)
        rows = {
            row['employee_id']: row
            for row in attendance_service.attendance_summary(
                self.db, branch_id=self.branch.id, start=MONDAY, end=date(2024, 7, 7)
            )
        }
        self.assertEqual(rows[self.clerk.id]['present_days'], 2)
        self.assertEqual(rows[self.clerk.id]['late_days'], 1)
        self.assertEqual(rows[self.clerk.id]['total_hours'], Decimal('8.00'))
        self.assertEqual(rows[self.clerk.id]['attendance_rate'], 40.0)
        self.assertEqual(rows[self.driver.id]['absent_days'], 1)
        self.assertEqual(rows[self.driver.id]['attendance_rate'], 0.0)

    def test_count_checked_in_is_per_branch_and_day(self) -> None:
        visitor = seed_employee(self.db, branch_id=self.other_branch.id, code='EMP0003')
        attendance_service.check_in(self.db, employee_id=self.clerk.id, work_date=MONDAY, at=time(8, 0))
        attendance_service.check_in(self.db, employee_id=visitor.id, work_date=MONDAY, at=time(8, 0))
        attendance_service.record_absence(self.db, employee_id=self.driver.id, work_date=MONDAY)

        self.assertEqual(attendance_service.count_checked_in(self.db, branch_id=self.branch.id, work_date=MONDAY), 1)
        self.assertEqual(attendance_service.count_checked_in(self.db, branch_id=None, work_date=MONDAY), 2)
        self.assertEqual(
            attendance_service.count_checked_in(self.db, branch_id=None, work_date=date(2024, 7, 2)), 0
        )

    def test_list_attendance_rejects_reversed_range(self) -> None:
        with self.assertRaisesRegex(ValueError, 'End date'):
            attendance_service.list_attendance(self.db, branch_id=None, start=MONDAY, end=date(2024, 6, 1))


if __name__ == '__main__':
    unittest.main()
