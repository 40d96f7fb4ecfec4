from decimal import Decimal
from itertools import product as cartesian
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    BusinessRuleViolation,
    ConcurrentModification,
    Forbidden,
    InvalidAction,
    InvalidTransition,
    NotFound,
)
from app.models.loan_application import LoanApplication
from app.models.loan_history import LoanHistory
from app.models.product import Product
from app.schemas.loan import LoanAction, LoanStatus, LoanSubmitRequest
from app.services import loan_workflow
from app.services.loan_history import PAYMENT_COMPLETED
from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan, make_product


class RecordingDispatcher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = []

    async def dispatch(self, loan, from_status, to_status):
        self.calls.append((from_status, to_status))
        if self.fail:
            raise RuntimeError("push gateway down")


def _session_with(loan: LoanApplication | None) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=loan)))
    return db


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


def test_transition_table_is_total_over_status_action_product():
    legal = 0
    for status, action in cartesian(LoanStatus, LoanAction):
        expected = loan_workflow.TRANSITIONS.get((status, action))
        if expected is None:
            with pytest.raises(InvalidTransition) as exc_info:
                loan_workflow.next_status(status, action)
            assert exc_info.value.details["current_status"] == status.value
            assert exc_info.value.details["action"] == action.value
        else:
            legal += 1
            assert loan_workflow.next_status(status, action) is expected
    assert legal == 7


def test_transition_table_is_read_only():
    with pytest.raises(TypeError):
        loan_workflow.TRANSITIONS[(LoanStatus.REJECTED, LoanAction.APPROVE)] = LoanStatus.APPROVED_WAITING_DISBURSEMENT


@pytest.mark.parametrize("status", sorted(loan_workflow.TERMINAL_STATUSES))
def test_terminal_statuses_accept_no_action(status):
    assert loan_workflow.legal_actions(status) == frozenset()


def test_submit_is_never_a_workflow_action():
    for status in LoanStatus:
        assert LoanAction.SUBMIT not in loan_workflow.legal_actions(status)


def test_comment_keeps_status_except_on_submitted():
    assert loan_workflow.next_status(LoanStatus.SUBMITTED, LoanAction.COMMENT) is LoanStatus.IN_REVIEW
    assert loan_workflow.next_status(LoanStatus.IN_REVIEW, LoanAction.COMMENT) is LoanStatus.IN_REVIEW
    assert (
        loan_workflow.next_status(LoanStatus.WAITING_APPROVAL, LoanAction.COMMENT)
        is LoanStatus.WAITING_APPROVAL
    )


def test_illegal_transition_reports_allowed_actions():
    with pytest.raises(InvalidTransition) as exc_info:
        loan_workflow.next_status(LoanStatus.WAITING_APPROVAL, LoanAction.DISBURSE)
    assert exc_info.value.details["allowed"] == ["APPROVE", "COMMENT", "REJECT"]


def test_parse_action_accepts_case_and_whitespace():
    assert loan_workflow.parse_action(" approve ") is LoanAction.APPROVE
    assert loan_workflow.parse_action(LoanAction.REJECT) is LoanAction.REJECT


def test_parse_action_rejects_unknown_name():
    with pytest.raises(InvalidAction) as exc_info:
        loan_workflow.parse_action("ESCALATE")
    assert exc_info.value.code == "invalid_action"
    assert "DISBURSE" in exc_info.value.details["allowed"]


# ---------------------------------------------------------------------------
# Total payable
# ---------------------------------------------------------------------------


def test_total_payable_uses_amortized_instalments():
    total = loan_workflow.calculate_total_payable(Decimal("1000000"), Decimal("12"), 12)
    assert total == Decimal("1066185.46")


def test_total_payable_without_interest_is_principal():
    assert loan_workflow.calculate_total_payable(Decimal("1500000"), Decimal("0"), 6) == Decimal("1500000.00")


# ---------------------------------------------------------------------------
# perform_action
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_happy_path_records_every_step():
    loan = make_loan(status=LoanStatus.SUBMITTED.value)
    db = _session_with(loan)
    steps = [
        (LoanAction.COMMENT, "Documents look fine", LoanStatus.IN_REVIEW),
        (LoanAction.FORWARD_TO_MANAGER, None, LoanStatus.WAITING_APPROVAL),
        (LoanAction.APPROVE, "OK", LoanStatus.APPROVED_WAITING_DISBURSEMENT),
        (LoanAction.DISBURSE, None, LoanStatus.DISBURSED),
    ]
    for action, comment, expected in steps:
        result = await loan_workflow.perform_action(db, loan.id, action, uuid4(), comment)
        assert result.to_status is expected
        assert loan.current_status == expected.value

    history = db.added_of(LoanHistory)
    assert [row.action for row in history] == [
        "COMMENT",
        "FORWARD_TO_MANAGER",
        "APPROVE",
        "DISBURSE",
    ]
    assert [row.from_status for row in history] == [
        "SUBMITTED",
        "IN_REVIEW",
        "WAITING_APPROVAL",
        "APPROVED_WAITING_DISBURSEMENT",
    ]
    assert history[0].comment == "Documents look fine"
    assert db.commit_count == 4


@pytest.mark.asyncio
async def test_comment_in_review_writes_history_without_status_change():
    loan = make_loan(status=LoanStatus.IN_REVIEW.value)
    db = _session_with(loan)

    result = await loan_workflow.perform_action(db, loan.id, "COMMENT", uuid4(), "  need payslip  ")

    assert not result.status_changed
    assert loan.current_status == "IN_REVIEW"
    (row,) = db.added_of(LoanHistory)
    assert (row.from_status, row.to_status, row.comment) == ("IN_REVIEW", "IN_REVIEW", "need payslip")


@pytest.mark.asyncio
async def test_rejected_action_leaves_no_trace():
    loan = make_loan(status=LoanStatus.SUBMITTED.value)
    db = _session_with(loan)

    with pytest.raises(InvalidTransition):
        await loan_workflow.perform_action(db, loan.id, LoanAction.APPROVE, uuid4())

    assert loan.current_status == "SUBMITTED"
    assert db.added == []
    assert db.rolled_back
    assert not db.committed


@pytest.mark.asyncio
async def test_terminal_loan_is_immutable():
    loan = make_loan(status=LoanStatus.REJECTED.value)
    db = _session_with(loan)

    for action in LoanAction:
        with pytest.raises(InvalidTransition):
            await loan_workflow.perform_action(db, loan.id, action, uuid4())
    assert loan.current_status == "REJECTED"
    assert db.added == []


@pytest.mark.asyncio
async def test_unknown_action_is_invalid_action():
    loan = make_loan()
    db = _session_with(loan)

    with pytest.raises(InvalidAction):
        await loan_workflow.perform_action(db, loan.id, "TELEPORT", uuid4())
    assert db.added == []


@pytest.mark.asyncio
async def test_missing_loan_is_not_found():
    db = _session_with(None)
    with pytest.raises(NotFound):
        await loan_workflow.perform_action(db, uuid4(), LoanAction.COMMENT, uuid4())


@pytest.mark.asyncio
async def test_stale_version_becomes_concurrent_modification():
    loan = make_loan(status=LoanStatus.WAITING_APPROVAL.value)
    db = _session_with(loan)
    db.commit_error = StaleDataError("version mismatch")

    with pytest.raises(ConcurrentModification) as exc_info:
        await loan_workflow.perform_action(db, loan.id, LoanAction.APPROVE, uuid4())

    assert exc_info.value.status_code == 409
    assert db.rolled_back


@pytest.mark.asyncio
async def test_authorize_sees_locked_loan_and_can_refuse():
    loan = make_loan(status=LoanStatus.WAITING_APPROVAL.value)
    db = _session_with(loan)
    seen = []

    def refuse(locked, action):
        seen.append((locked.current_status, action))
        raise Forbidden("not yours", code="action_not_permitted")

    with pytest.raises(Forbidden):
        await loan_workflow.perform_action(
            db, loan.id, LoanAction.APPROVE, uuid4(), authorize=refuse
        )

    assert seen == [("WAITING_APPROVAL", LoanAction.APPROVE)]
    assert loan.current_status == "WAITING_APPROVAL"
    assert db.added == []
    assert db.rolled_back
    assert not db.committed


@pytest.mark.asyncio
async def test_lock_query_overwrites_identity_map_copy():
    loan = make_loan(status=LoanStatus.IN_REVIEW.value)
    db = _session_with(loan)

    await loan_workflow.perform_action(db, loan.id, LoanAction.COMMENT, uuid4())

    (stmt,) = db.executed
    assert stmt.get_execution_options().get("populate_existing") is True


@pytest.mark.asyncio
async def test_dispatcher_runs_after_commit():
    loan = make_loan(status=LoanStatus.WAITING_APPROVAL.value)
    db = _session_with(loan)
    dispatcher = RecordingDispatcher()

    await loan_workflow.perform_action(db, loan.id, LoanAction.REJECT, uuid4(), dispatcher=dispatcher)

    assert dispatcher.calls == [(LoanStatus.WAITING_APPROVAL, LoanStatus.REJECTED)]


@pytest.mark.asyncio
async def test_dispatcher_failure_does_not_undo_transition():
    loan = make_loan(status=LoanStatus.APPROVED_WAITING_DISBURSEMENT.value)
    db = _session_with(loan)

    result = await loan_workflow.perform_action(
        db, loan.id, LoanAction.DISBURSE, uuid4(), dispatcher=RecordingDispatcher(fail=True)
    )

    assert result.to_status is LoanStatus.DISBURSED
    assert db.committed
    assert not db.rolled_back


# ---------------------------------------------------------------------------
# submit_loan
# ---------------------------------------------------------------------------


def _submit_payload(product: Product, **overrides) -> LoanSubmitRequest:
    values = dict(product_id=product.id, amount=Decimal("1000000"), tenure_months=12)
    values.update(overrides)
    return LoanSubmitRequest(**values)


@pytest.mark.asyncio
async def test_submit_creates_loan_and_first_history_row():
    product = make_product()
    db = FakeAsyncSession().on_get(Product, product.id, product)
    applicant_id = uuid4()

    result = await loan_workflow.submit_loan(db, applicant_id, _submit_payload(product))

    loan = result.loan
    assert loan.current_status == "SUBMITTED"
    assert loan.user_id == applicant_id
    assert loan.interest_rate_applied == Decimal("12")
    assert loan.total_amount_to_pay == Decimal("1066185.46")
    assert result.from_status is None
    (row,) = db.added_of(LoanHistory)
    assert (row.action, row.from_status, row.to_status) == ("SUBMIT", None, "SUBMITTED")
    assert row.loan_application_id == loan.id
    assert db.committed


@pytest.mark.asyncio
async def test_submit_prefers_requested_rate():
    product = make_product()
    db = FakeAsyncSession().on_get(Product, product.id, product)

    result = await loan_workflow.submit_loan(
        db, uuid4(), _submit_payload(product, interest_rate_applied=Decimal("0"))
    )

    assert result.loan.total_amount_to_pay == Decimal("1000000.00")


@pytest.mark.asyncio
async def test_submit_rejects_second_active_loan():
    product = make_product()
    db = FakeAsyncSession().on_get(Product, product.id, product)
    db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=uuid4())))

    with pytest.raises(BusinessRuleViolation) as exc_info:
        await loan_workflow.submit_loan(db, uuid4(), _submit_payload(product))

    assert exc_info.value.code == "active_loan_exists"
    assert db.added == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "product_overrides, payload_overrides, code",
    [
        ({"is_active": False}, {}, "product_inactive"),
        ({}, {"amount": Decimal("100")}, "amount_out_of_range"),
        ({}, {"amount": Decimal("90000000")}, "amount_out_of_range"),
        ({}, {"tenure_months": 48}, "tenure_out_of_range"),
    ],
)
async def test_submit_enforces_product_limits(product_overrides, payload_overrides, code):
    product = make_product(**product_overrides)
    db = FakeAsyncSession().on_get(Product, product.id, product)

    with pytest.raises(BusinessRuleViolation) as exc_info:
        await loan_workflow.submit_loan(db, uuid4(), _submit_payload(product, **payload_overrides))

    assert exc_info.value.code == code


@pytest.mark.asyncio
async def test_submit_unknown_product_is_not_found():
    with pytest.raises(NotFound):
        await loan_workflow.submit_loan(FakeAsyncSession(), uuid4(), LoanSubmitRequest(
            product_id=uuid4(), amount=Decimal("1000000"), tenure_months=12
        ))


# ---------------------------------------------------------------------------
# complete_payment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_complete_payment_settles_disbursed_loan():
    loan = make_loan(status=LoanStatus.DISBURSED.value)
    db = _session_with(loan)

    result = await loan_workflow.complete_payment(db, loan.id, uuid4(), "Paid off")

    assert result.to_status is LoanStatus.PAID
    assert loan.is_paid is True
    assert loan.paid_at is not None
    (row,) = db.added_of(LoanHistory)
    assert (row.action, row.from_status, row.to_status) == (PAYMENT_COMPLETED, "DISBURSED", "PAID")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["APPROVED_WAITING_DISBURSEMENT", "PAID", "REJECTED"])
async def test_complete_payment_requires_disbursed(status):
    loan = make_loan(status=status)
    db = _session_with(loan)

    with pytest.raises(InvalidTransition):
        await loan_workflow.complete_payment(db, loan.id, uuid4())

    assert loan.current_status == status
    assert db.added == []


@pytest.mark.asyncio
async def test_payment_completed_is_not_a_workflow_action():
    loan = make_loan(status=LoanStatus.DISBURSED.value)
    db = _session_with(loan)

    with pytest.raises(InvalidAction):
        await loan_workflow.perform_action(db, loan.id, PAYMENT_COMPLETED, uuid4())
    assert loan.current_status == "DISBURSED"
