import unittest

from academy.core.access import BatchAction, can_act_on_batch, ensure_can_act_on_batch
from academy.core.errors import AccessDeniedError
from academy.models import Batch, BatchStudent
from academy.request_context import RequestContext


ADMIN = RequestContext(user_id=1, role='admin')
OWNER = RequestContext(user_id=2, role='teacher')
OTHER_TEACHER = RequestContext(user_id=3, role='teacher')
ENROLLED = RequestContext(user_id=4, role='student')
OUTSIDER = RequestContext(user_id=5, role='student')


class BatchAccessTests(unittest.TestCase):
    def setUp(self):
        self.batch = Batch(id=10, teacher_id=2, student_links=[BatchStudent(student_id=4)])

    def test_permission_table(self):
        callers = (ADMIN, OWNER, OTHER_TEACHER, ENROLLED, OUTSIDER)
        expected = (
            (BatchAction.VIEW, (True, True, False, True, False)),
            (BatchAction.MANAGE, (True, True, False, False, False)),
            (BatchAction.UPLOAD_MATERIAL, (False, True, False, False, False)),
            (BatchAction.SUBMIT, (False, False, False, True, False)),
        )
        for action, allowed_flags in expected:
            for ctx, allowed in zip(callers, allowed_flags):
                with self.subTest(action=action.value, role=ctx.role, user_id=ctx.user_id):
                    self.assertIs(can_act_on_batch(ctx, self.batch, action), allowed)

    def test_action_accepts_plain_string(self):
        self.assertTrue(can_act_on_batch(OWNER, self.batch, 'manage'))

    def test_ensure_raises_forbidden_with_message(self):
        with self.assertRaisesRegex(AccessDeniedError, 'no entry'):
            ensure_can_act_on_batch(OUTSIDER, self.batch, BatchAction.VIEW, 'no entry')
        ensure_can_act_on_batch(ENROLLED, self.batch, BatchAction.VIEW)


if __name__ == '__main__':
    unittest.main()
