"""
Tests for liquidation call selection and receipt decoding.
"""

from unittest.mock import MagicMock

from web3.logs import DISCARD

from keeper.engine.liquidation import LiquidationAction
from keeper.engine.models import ZERO_ADDRESS, Job

from conftest import KEEPER, borrower


def _action(address=KEEPER):
    client = MagicMock()
    client.address = address
    return LiquidationAction(client), client


def test_single_borrower_uses_liquidate_single():
    action, client = _action()
    job = Job(borrowers=(borrower(0), borrower(1)))

    call = action.build_call(job, [borrower(0)])

    client.engine.functions.liquidateSingle.assert_called_once_with(borrower(0), KEEPER)
    assert call is client.engine.functions.liquidateSingle.return_value


def test_fallback_batch_uses_wrapper():
    action, client = _action()
    job = Job(borrowers=(borrower(0), borrower(1)), fallback_on_fail=True)

    action.build_call(job, list(job.borrowers))

    client.engine.functions.liquidateBatch.assert_called_once_with([borrower(0), borrower(1)], KEEPER)


def test_all_or_nothing_batch_uses_trove_manager():
    action, client = _action()
    job = Job(borrowers=(borrower(0), borrower(1)), fallback_on_fail=False)

    action.build_call(job, list(job.borrowers))

    client.trove_manager.functions.batchLiquidateTroves.assert_called_once_with([borrower(0), borrower(1)])
    client.engine.functions.liquidateBatch.assert_not_called()


def test_recipient_without_keeper_address():
    action, client = _action(address=None)
    action.build_call(Job(borrowers=(borrower(0),)), [borrower(0)])
    client.engine.functions.liquidateSingle.assert_called_once_with(borrower(0), ZERO_ADDRESS)


def test_decode_succeeded_reads_last_event():
    action, client = _action()
    receipt = {"status": 1, "logs": []}
    process_receipt = client.engine.events.LiquidationExecuted.return_value.process_receipt
    process_receipt.return_value = [{"args": {"attempted": 3, "succeeded": 2}}]

    assert action.decode_succeeded(receipt) == 2
    process_receipt.assert_called_once_with(receipt, errors=DISCARD)


def test_decode_succeeded_without_event():
    action, client = _action()
    client.engine.events.LiquidationExecuted.return_value.process_receipt.return_value = []

    assert action.decode_succeeded({"status": 1, "logs": []}) is None
    assert action.decode_succeeded(None) is None
