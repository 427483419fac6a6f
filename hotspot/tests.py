"""
Tests for MnetiFi hotspot billing and the captive portal checkout
"""
import base64
import threading
from datetime import datetime, timedelta
from io import StringIO
from unittest import mock

import requests
from django.core.management import call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from .checkout import (
    ENTER_PHONE,
    FAILED,
    PROCESSING,
    SELECT_PLAN,
    SUCCESS,
    InvalidPhoneNumber,
    InvalidTransition,
    PaymentFlow,
    PaymentInitiationFailed,
    PollingTimeout,
    PollingTransientError,
    PortalAPI,
    PortalAPIError,
    ServerReportedFailure,
    TransactionPoller,
    normalize_phone_number,
)
from .checkout import client as portal
from .models import Plan, SMSLog, Transaction, WalledGarden
from .mpesa import MpesaAPI, generate_password, generate_timestamp, parse_stk_callback
from .payments import create_transaction
from .sms import SMSAPI
from .tasks import check_pending_transactions

NO_MPESA = dict(
    MPESA_CONSUMER_KEY='',
    MPESA_CONSUMER_SECRET='',
    MPESA_SHORTCODE='',
    MPESA_PASSKEY='',
    SMS_PROVIDER='mock',
)


class FakePortalAPI:
    """In-memory stand-in for PortalAPI with scripted poll results"""

    base_url = 'http://portal.test'

    def __init__(self, plans=None, poll_results=None, initiate_error=None):
        self.plans = plans if plans is not None else [
            portal.Plan(id='p1', name='1 Hour', price=20),
            portal.Plan(id='p2', name='Retired', price=5, is_active=False),
        ]
        self.poll_results = list(poll_results or [])
        self.initiate_error = initiate_error
        self.initiated = []
        self.polls = []

    def list_plans(self):
        return list(self.plans)

    def list_walled_gardens(self):
        return [portal.WalledGarden(domain='safaricom.co.ke')]

    def initiate_payment(self, plan_id, phone):
        self.initiated.append((plan_id, phone))
        if self.initiate_error is not None:
            raise self.initiate_error
        return portal.Transaction(
            id=f'txn-{len(self.initiated)}',
            status='PENDING',
            status_description='Awaiting M-Pesa confirmation',
        )

    def get_transaction(self, transaction_id):
        self.polls.append(transaction_id)
        result = self.poll_results.pop(0) if self.poll_results else 'PENDING'
        if isinstance(result, Exception):
            raise result
        if isinstance(result, dict):
            return portal.Transaction(id=transaction_id, **result)
        receipt = 'QKX7Y8Z9' if result == 'COMPLETED' else None
        return portal.Transaction(
            id=transaction_id, status=result, mpesa_receipt_number=receipt
        )


class RecordingPoller:
    """Poller double that never polls; the test resolves it by hand"""

    def __init__(self, api, transaction_id, on_success, on_failure, **options):
        self.transaction_id = transaction_id
        self.on_success = on_success
        self.on_failure = on_failure
        self.started = False
        self.cancelled = False

    def start(self, background=True):
        self.started = True

    def cancel(self):
        self.cancelled = True


def _response(status_code, body=None):
    response = mock.Mock(status_code=status_code)
    if body is None:
        response.json.side_effect = ValueError('No JSON object could be decoded')
    else:
        response.json.return_value = body
    return response


def _stk_callback(checkout_request_id, result_code=0, result_desc='', receipt=None):
    callback = {
        'MerchantRequestID': 'MR_1',
        'CheckoutRequestID': checkout_request_id,
        'ResultCode': result_code,
        'ResultDesc': result_desc,
    }
    if receipt:
        callback['CallbackMetadata'] = {
            'Item': [
                {'Name': 'Amount', 'Value': 20},
                {'Name': 'MpesaReceiptNumber', 'Value': receipt},
                {'Name': 'PhoneNumber', 'Value': 254712345678},
            ]
        }
    return {'Body': {'stkCallback': callback}}


# =========================================================================
# Checkout package
# =========================================================================


class PhoneNumberTest(SimpleTestCase):
    """Test phone number canonicalization"""

    def test_local_formats(self):
        """Test the usual ways visitors type a Kenyan number"""
        for raw in ['0712345678', '712345678', '254712345678', '+254712345678',
                    '0712 345 678', '+254 712-345-678', '(0712) 345.678']:
            self.assertEqual(normalize_phone_number(raw), '254712345678', raw)

    def test_never_keeps_trunk_zero(self):
        """Test a leading 0 is replaced, not kept after the country code"""
        for raw in ['0712345678', '0112345678', '0 712 345 678']:
            result = normalize_phone_number(raw)
            self.assertTrue(result.startswith('254'))
            self.assertFalse(result.startswith('2540'))

    def test_output_is_digits_with_country_code(self):
        """Test any input with 9+ digits yields 254 followed by digits"""
        for raw in ['abc123456789xyz', '1-2-3-4-5-6-7-8-9', '987654321012', '0733000111']:
            result = normalize_phone_number(raw)
            self.assertTrue(result.isdigit(), raw)
            self.assertTrue(result.startswith('254'), raw)

    def test_short_numbers_rejected(self):
        """Test fewer than 9 digits is invalid"""
        for raw in ['', '12345', '07123456', '+254', 'not a phone', None]:
            with self.assertRaises(InvalidPhoneNumber):
                normalize_phone_number(raw)

    def test_country_code_kept(self):
        """Test numbers already carrying 254 are unchanged"""
        self.assertEqual(normalize_phone_number('254112345678'), '254112345678')


class PortalAPITest(SimpleTestCase):
    """Test the captive portal HTTP client"""

    def setUp(self):
        self.http = mock.Mock()
        self.api = PortalAPI(base_url='http://portal.test/', timeout=5, http=self.http)

    def test_list_plans(self):
        """Test plans are decoded from camelCase JSON"""
        self.http.request.return_value = _response(200, [
            {'id': 'p1', 'name': '1 Hour', 'price': 20, 'isActive': True,
             'durationSeconds': 3600, 'planType': 'HOTSPOT'},
            {'id': 'p2', 'name': 'Retired', 'price': 5, 'isActive': False},
        ])

        plans = self.api.list_plans()

        self.assertEqual([p.id for p in plans], ['p1', 'p2'])
        self.assertEqual(plans[0].duration_seconds, 3600)
        self.assertEqual(plans[0].price_display, 'KES 20')
        self.assertFalse(plans[1].is_active)

    def test_get_plan(self):
        self.http.request.return_value = _response(
            200, {'id': 'p1', 'name': 'Daily Pass', 'price': 1000}
        )
        plan = self.api.get_plan('p1')
        self.assertEqual(plan.price_display, 'KES 1,000')
        self.assertEqual(self.http.request.call_args.args[1], 'http://portal.test/api/plans/p1')

    def test_list_plans_error(self):
        """Test catalogue failures raise PortalAPIError"""
        self.http.request.side_effect = requests.exceptions.ConnectionError()
        with self.assertRaises(PortalAPIError):
            self.api.list_plans()

    def test_initiate_payment(self):
        """Test initiation posts planId and phone and returns the transaction"""
        self.http.request.return_value = _response(201, {
            'id': 'txn-1',
            'status': 'PENDING',
            'statusDescription': 'Awaiting M-Pesa confirmation',
            'amount': 20,
        })

        transaction = self.api.initiate_payment('p1', '254712345678')

        self.http.request.assert_called_once_with(
            'POST',
            'http://portal.test/api/transactions/initiate',
            json={'planId': 'p1', 'phone': '254712345678'},
            headers={'Accept': 'application/json'},
            timeout=5,
        )
        self.assertEqual(transaction.id, 'txn-1')
        self.assertEqual(transaction.status, 'PENDING')
        self.assertFalse(transaction.is_terminal)

    def test_initiate_payment_server_message(self):
        """Test the server's message is carried on rejection"""
        self.http.request.return_value = _response(
            404, {'success': False, 'message': 'Plan not found'}
        )

        with self.assertRaises(PaymentInitiationFailed) as ctx:
            self.api.initiate_payment('missing', '254712345678')

        self.assertEqual(ctx.exception.message, 'Plan not found')
        self.assertEqual(ctx.exception.status_code, 404)

    def test_initiate_payment_without_message(self):
        """Test a bare error response falls back to the generic message"""
        self.http.request.return_value = _response(500)

        with self.assertRaises(PaymentInitiationFailed) as ctx:
            self.api.initiate_payment('p1', '254712345678')

        self.assertEqual(ctx.exception.message, PaymentInitiationFailed.default_message)

    def test_initiate_payment_network_error(self):
        """Test transport errors become PaymentInitiationFailed"""
        self.http.request.side_effect = requests.exceptions.Timeout()
        with self.assertRaises(PaymentInitiationFailed):
            self.api.initiate_payment('p1', '254712345678')

    def test_get_transaction_errors_are_transient(self):
        """Test fetch failures and bad payloads raise PollingTransientError"""
        self.http.request.return_value = _response(503, {'error': 'busy'})
        with self.assertRaises(PollingTransientError):
            self.api.get_transaction('txn-1')

        self.http.request.return_value = _response(200, {'status': 'PENDING'})
        with self.assertRaises(PollingTransientError):
            self.api.get_transaction('txn-1')

    def test_unknown_status_is_not_terminal(self):
        """Test statuses outside COMPLETED/FAILED are kept and not final"""
        self.http.request.return_value = _response(
            200, {'id': 'txn-1', 'status': 'QUEUED'}
        )
        transaction = self.api.get_transaction('txn-1')
        self.assertEqual(transaction.status, 'QUEUED')
        self.assertFalse(transaction.is_terminal)


class TransactionPollerTest(SimpleTestCase):
    """Test transaction status polling"""

    def setUp(self):
        self.sleeps = []
        self.successes = []
        self.failures = []

    def _poller(self, api, **options):
        options.setdefault('max_attempts', 30)
        options.setdefault('interval', 3.0)
        options.setdefault('sleep', self.sleeps.append)
        return TransactionPoller(
            api,
            'txn-1',
            self.successes.append,
            lambda txn_id, error: self.failures.append((txn_id, error)),
            **options,
        )

    def test_completed_on_fifth_poll(self):
        """Test success after 5 polls takes no more than 15 seconds"""
        api = FakePortalAPI(poll_results=['PENDING'] * 4 + ['COMPLETED'])
        poller = self._poller(api)

        poller.run()

        self.assertEqual(len(api.polls), 5)
        self.assertEqual(self.sleeps, [3.0] * 4)
        self.assertLessEqual(sum(self.sleeps), 15)
        self.assertEqual(len(self.successes), 1)
        self.assertEqual(self.successes[0].mpesa_receipt_number, 'QKX7Y8Z9')
        self.assertEqual(self.failures, [])

    def test_timeout_after_thirty_polls(self):
        """Test a transaction that never resolves fails after 30 polls"""
        api = FakePortalAPI()
        poller = self._poller(api)

        poller.run()

        self.assertEqual(len(api.polls), 30)
        self.assertEqual(self.successes, [])
        self.assertEqual(len(self.failures), 1)
        txn_id, error = self.failures[0]
        self.assertEqual(txn_id, 'txn-1')
        self.assertIsInstance(error, PollingTimeout)
        self.assertEqual(error.attempts, 30)

    def test_zero_attempt_budget(self):
        """Test an explicit budget of 0 is honoured, not replaced by the default"""
        api = FakePortalAPI(poll_results=['COMPLETED'])
        poller = self._poller(api, max_attempts=0)

        poller.run()

        self.assertEqual(poller.max_attempts, 0)
        self.assertEqual(api.polls, [])
        self.assertIsInstance(self.failures[0][1], PollingTimeout)

    def test_server_reported_failure(self):
        """Test a FAILED snapshot stops polling with its description"""
        api = FakePortalAPI(poll_results=[
            'PENDING',
            {'status': 'FAILED', 'status_description': 'Transaction cancelled by user'},
        ])
        poller = self._poller(api)

        poller.run()

        self.assertEqual(len(api.polls), 2)
        _, error = self.failures[0]
        self.assertIsInstance(error, ServerReportedFailure)
        self.assertEqual(error.message, 'Transaction cancelled by user')

    def test_transient_errors_count_as_attempts(self):
        """Test failed fetches consume the attempt budget"""
        api = FakePortalAPI(poll_results=[PollingTransientError()] * 3 + ['COMPLETED'])
        poller = self._poller(api)

        poller.run()

        self.assertEqual(poller.attempt, 4)
        self.assertEqual(len(self.successes), 1)

    def test_only_transient_errors_times_out(self):
        """Test an unreachable server still ends after the attempt budget"""
        api = FakePortalAPI(poll_results=[PollingTransientError()] * 40)
        poller = self._poller(api)

        poller.run()

        self.assertEqual(len(api.polls), 30)
        self.assertIsInstance(self.failures[0][1], PollingTimeout)

    def test_unknown_status_keeps_polling(self):
        """Test unrecognized statuses are treated as still pending"""
        api = FakePortalAPI(poll_results=['QUEUED', 'PROCESSING', 'COMPLETED'])
        poller = self._poller(api)

        poller.run()

        self.assertEqual(len(api.polls), 3)
        self.assertEqual(len(self.successes), 1)

    def test_cancel_stops_polling(self):
        """Test no further polls or callbacks after cancel"""
        api = FakePortalAPI()

        def sleep(seconds):
            self.sleeps.append(seconds)
            if len(self.sleeps) == 2:
                poller.cancel()

        poller = self._poller(api, sleep=sleep)
        poller.run()

        self.assertTrue(poller.cancelled)
        self.assertEqual(len(api.polls), 2)
        self.assertEqual(self.successes, [])
        self.assertEqual(self.failures, [])

    def test_cancel_during_request_drops_result(self):
        """Test a response arriving after cancel is discarded"""
        api = FakePortalAPI(poll_results=['COMPLETED'])
        original = api.get_transaction

        def get_transaction(transaction_id):
            poller.cancel()
            return original(transaction_id)

        api.get_transaction = get_transaction
        poller = self._poller(api)
        poller.run()

        self.assertEqual(self.successes, [])
        self.assertEqual(self.failures, [])

    def test_start_twice(self):
        """Test a poller cannot be restarted"""
        poller = self._poller(FakePortalAPI(poll_results=['COMPLETED']))
        poller.start(background=False)
        with self.assertRaises(RuntimeError):
            poller.start(background=False)

    def test_background_thread(self):
        """Test polling in a daemon thread"""
        api = FakePortalAPI(poll_results=['PENDING', 'COMPLETED'])
        poller = self._poller(api, interval=0, sleep=None)

        poller.start()
        poller.join(timeout=5)

        self.assertFalse(poller.is_alive)
        self.assertEqual(len(self.successes), 1)

    @override_settings(PAYMENT_POLL_MAX_ATTEMPTS=30, PAYMENT_POLL_INTERVAL_SECONDS=3.0)
    def test_defaults_from_settings(self):
        """Test budget and interval come from settings"""
        poller = TransactionPoller(FakePortalAPI(), 'txn-1', print, print)
        self.assertEqual(poller.max_attempts, 30)
        self.assertEqual(poller.interval, 3.0)


class PaymentFlowTest(SimpleTestCase):
    """Test the captive portal checkout state machine"""

    def setUp(self):
        self.sleeps = []
        self.changes = []

    def _flow(self, api, **kwargs):
        kwargs.setdefault('background', False)
        kwargs.setdefault(
            'poller_options',
            {'sleep': self.sleeps.append, 'interval': 3.0, 'max_attempts': 30},
        )
        kwargs.setdefault('on_change', lambda flow: self.changes.append(flow.state))
        flow = PaymentFlow(api, **kwargs)
        flow.load_plans()
        return flow

    def test_initial_state(self):
        """Test a new flow starts at plan selection with active plans only"""
        flow = self._flow(FakePortalAPI())
        self.assertEqual(flow.state, SELECT_PLAN)
        self.assertEqual([p.id for p in flow.plans], ['p1'])
        self.assertIsNone(flow.transaction)

    def test_select_plan_and_back(self):
        """Test choosing a plan and going back"""
        flow = self._flow(FakePortalAPI())
        flow.select_plan(flow.plans[0])
        self.assertEqual(flow.state, ENTER_PHONE)
        self.assertEqual(flow.session.plan.id, 'p1')

        flow.back()
        self.assertEqual(flow.state, SELECT_PLAN)

    def test_inactive_plan_rejected(self):
        """Test an inactive plan cannot be selected"""
        api = FakePortalAPI()
        flow = self._flow(api)
        with self.assertRaises(InvalidTransition):
            flow.select_plan(api.plans[1])
        self.assertEqual(flow.state, SELECT_PLAN)

    def test_invalid_transitions(self):
        """Test actions outside their state raise InvalidTransition"""
        flow = self._flow(FakePortalAPI())
        with self.assertRaises(InvalidTransition):
            flow.back()
        with self.assertRaises(InvalidTransition):
            flow.submit_phone('0712345678')
        with self.assertRaises(InvalidTransition):
            flow.retry()

        flow.select_plan(flow.plans[0])
        with self.assertRaises(InvalidTransition):
            flow.select_plan(flow.plans[0])

    def test_invalid_phone_makes_no_request(self):
        """Test a short phone number is refused locally"""
        api = FakePortalAPI()
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])

        result = flow.submit_phone('12345')

        self.assertIsNone(result)
        self.assertEqual(api.initiated, [])
        self.assertEqual(flow.state, ENTER_PHONE)
        self.assertIsInstance(flow.error, InvalidPhoneNumber)
        self.assertEqual(
            flow.notice, 'Invalid Phone Number: Please enter a valid phone number'
        )

    def test_successful_payment(self):
        """Test a payment confirmed on the fifth poll"""
        api = FakePortalAPI(poll_results=['PENDING'] * 4 + ['COMPLETED'])
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])

        transaction = flow.submit_phone('0712 345 678')

        self.assertEqual(transaction.id, 'txn-1')
        self.assertEqual(api.initiated, [('p1', '254712345678')])
        self.assertEqual(len(api.polls), 5)
        self.assertEqual(flow.state, SUCCESS)
        self.assertEqual(flow.session.phone, '254712345678')
        self.assertEqual(flow.transaction.mpesa_receipt_number, 'QKX7Y8Z9')
        self.assertIsNone(flow.poller)
        self.assertEqual(self.changes[-2:], [PROCESSING, SUCCESS])

    def test_initiation_failure_stays_on_phone_entry(self):
        """Test a rejected initiation shows the server message"""
        api = FakePortalAPI(
            initiate_error=PaymentInitiationFailed('Plan not found', status_code=404)
        )
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])

        result = flow.submit_phone('0712345678')

        self.assertIsNone(result)
        self.assertEqual(flow.state, ENTER_PHONE)
        self.assertEqual(flow.notice, 'Payment Failed: Plan not found')
        self.assertFalse(flow.submitting)
        self.assertIsNone(flow.poller)

    def test_server_failure(self):
        """Test a FAILED transaction shows its description"""
        api = FakePortalAPI(poll_results=[
            {'status': 'FAILED', 'status_description': 'Insufficient funds'},
        ])
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')

        self.assertEqual(flow.state, FAILED)
        self.assertEqual(flow.failure_message, 'Insufficient funds')
        self.assertEqual(flow.notice, 'Insufficient funds')
        self.assertIsInstance(flow.error, ServerReportedFailure)

    def test_timeout_failure(self):
        """Test polling exhaustion ends in failed with the generic message"""
        api = FakePortalAPI()
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')

        self.assertEqual(len(api.polls), 30)
        self.assertEqual(flow.state, FAILED)
        self.assertIsInstance(flow.error, PollingTimeout)
        self.assertEqual(flow.failure_message, 'The payment could not be completed')

    def test_retry_clears_session(self):
        """Test retry returns to plan selection with nothing carried over"""
        api = FakePortalAPI(poll_results=[
            {'status': 'FAILED', 'status_description': 'Insufficient funds'},
            'COMPLETED',
        ])
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')

        flow.retry()

        self.assertEqual(flow.state, SELECT_PLAN)
        self.assertIsNone(flow.session.plan)
        self.assertEqual(flow.session.phone, '')
        self.assertIsNone(flow.transaction)
        self.assertIsNone(flow.notice)
        self.assertIsNone(flow.error)

        flow.select_plan(flow.plans[0])
        flow.submit_phone('0722000111')
        self.assertEqual(flow.state, SUCCESS)
        self.assertEqual(flow.transaction.id, 'txn-2')
        self.assertEqual(api.polls, ['txn-1', 'txn-2'])

    def test_stale_poller_ignored_after_restart(self):
        """Test results for an abandoned transaction never reach the flow"""
        pollers = []

        def poller_class(*args, **kwargs):
            poller = RecordingPoller(*args, **kwargs)
            pollers.append(poller)
            return poller

        api = FakePortalAPI()
        flow = self._flow(api, poller_class=poller_class)
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')
        first = pollers[0]
        self.assertTrue(first.started)

        flow.restart()
        self.assertTrue(first.cancelled)
        self.assertEqual(flow.state, SELECT_PLAN)

        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')
        second = pollers[1]

        first.on_success(portal.Transaction(id='txn-1', status='COMPLETED'))
        first.on_failure('txn-1', PollingTimeout('txn-1', 30))
        self.assertEqual(flow.state, PROCESSING)
        self.assertEqual(flow.transaction.id, 'txn-2')

        second.on_success(portal.Transaction(id='txn-2', status='COMPLETED'))
        self.assertEqual(flow.state, SUCCESS)
        self.assertFalse(second.cancelled)

    def test_duplicate_submission_ignored(self):
        """Test a second submit while one is in flight is dropped"""
        api = FakePortalAPI(poll_results=['COMPLETED'])
        flow = self._flow(api)
        nested = []
        original = api.initiate_payment

        def initiate_payment(plan_id, phone):
            nested.append(flow.submit_phone(phone))
            return original(plan_id, phone)

        api.initiate_payment = initiate_payment
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')

        self.assertEqual(nested, [None])
        self.assertEqual(len(api.initiated), 1)
        self.assertEqual(flow.state, SUCCESS)

    def test_restart_discards_request_in_flight(self):
        """Test a reply for an abandoned attempt never becomes the live transaction"""
        entered = threading.Event()
        release = threading.Event()
        api = FakePortalAPI(poll_results=['COMPLETED'])
        original = api.initiate_payment

        def initiate_payment(plan_id, phone):
            if not api.initiated:
                entered.set()
                release.wait(5)
            return original(plan_id, phone)

        api.initiate_payment = initiate_payment
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])
        results = []
        worker = threading.Thread(
            target=lambda: results.append(flow.submit_phone('0712345678'))
        )
        worker.start()
        self.assertTrue(entered.wait(5))

        # Same plan chosen again while the first request is still out
        flow.restart()
        flow.select_plan(flow.plans[0])
        release.set()
        worker.join(5)

        self.assertEqual(results, [None])
        self.assertEqual(flow.state, ENTER_PHONE)
        self.assertIsNone(flow.transaction)
        self.assertIsNone(flow.poller)
        self.assertFalse(flow.submitting)
        self.assertEqual(api.polls, [])

        flow.submit_phone('0712345678')
        self.assertEqual(flow.state, SUCCESS)
        self.assertEqual(flow.transaction.id, 'txn-2')
        self.assertEqual(api.polls, ['txn-2'])

    def test_restart_drops_late_initiation_error(self):
        """Test a late rejection of an abandoned attempt leaves the new one alone"""
        entered = threading.Event()
        release = threading.Event()
        api = FakePortalAPI()

        def initiate_payment(plan_id, phone):
            api.initiated.append((plan_id, phone))
            entered.set()
            release.wait(5)
            raise PaymentInitiationFailed('Service unavailable')

        api.initiate_payment = initiate_payment
        flow = self._flow(api)
        flow.select_plan(flow.plans[0])
        worker = threading.Thread(target=flow.submit_phone, args=('0712345678',))
        worker.start()
        self.assertTrue(entered.wait(5))

        flow.restart()
        flow.select_plan(flow.plans[0])
        release.set()
        worker.join(5)

        self.assertEqual(flow.state, ENTER_PHONE)
        self.assertIsNone(flow.notice)
        self.assertIsNone(flow.error)

    def test_close_cancels_poller(self):
        """Test closing the flow stops an active poller"""
        pollers = []

        def poller_class(*args, **kwargs):
            pollers.append(RecordingPoller(*args, **kwargs))
            return pollers[-1]

        flow = self._flow(FakePortalAPI(), poller_class=poller_class)
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')

        flow.close()

        self.assertTrue(pollers[0].cancelled)
        self.assertIsNone(flow.poller)

    def test_background_polling(self):
        """Test the flow resolves from the poller thread"""
        done = threading.Event()

        def on_change(flow):
            if flow.state == SUCCESS:
                done.set()

        api = FakePortalAPI(poll_results=['PENDING', 'COMPLETED'])
        flow = self._flow(
            api,
            background=True,
            poller_options={'interval': 0},
            on_change=on_change,
        )
        flow.select_plan(flow.plans[0])
        flow.submit_phone('0712345678')

        self.assertTrue(done.wait(5))
        self.assertEqual(flow.state, SUCCESS)


# =========================================================================
# Hotspot backend
# =========================================================================


class TransactionModelTest(TestCase):
    """Test Transaction model functionality"""

    def setUp(self):
        self.plan = Plan.objects.create(name='1 Hour', price=20)
        self.transaction = Transaction.objects.create(
            plan=self.plan, user_phone='254712345678', amount=20
        )

    def test_transaction_creation(self):
        """Test transaction defaults"""
        self.assertEqual(self.transaction.status, Transaction.STATUS_PENDING)
        self.assertFalse(self.transaction.is_final)

    def test_mark_completed(self):
        """Test marking transaction as completed"""
        self.assertTrue(self.transaction.mark_completed('QKX123'))
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)
        self.assertEqual(self.transaction.mpesa_receipt_number, 'QKX123')
        self.assertEqual(self.transaction.status_description, 'Payment received successfully')

        # Duplicate confirmation is a no-op
        self.assertFalse(self.transaction.mark_completed('OTHER'))
        self.assertEqual(self.transaction.mpesa_receipt_number, 'QKX123')

    def test_mark_failed(self):
        """Test marking transaction as failed"""
        self.assertTrue(self.transaction.mark_failed('Insufficient funds'))
        self.assertEqual(self.transaction.status, Transaction.STATUS_FAILED)
        self.assertEqual(self.transaction.status_description, 'Insufficient funds')

    def test_completed_never_failed(self):
        """Test a completed payment is not downgraded"""
        self.transaction.mark_completed('QKX123')
        self.assertFalse(self.transaction.mark_failed('Late timeout'))
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)

    def test_plan_duration_display(self):
        """Test human readable plan durations"""
        self.assertEqual(self.plan.duration_display, '1 hour')
        self.assertEqual(Plan(price=10, duration_seconds=1800).duration_display, '30 minutes')
        self.assertEqual(Plan(price=500, duration_seconds=604800).duration_display, '7 days')


class MpesaAPITest(SimpleTestCase):
    """Test Daraja helpers and client"""

    def setUp(self):
        self.mpesa = MpesaAPI(
            consumer_key='key',
            consumer_secret='secret',
            shortcode='174379',
            passkey='passkey',
            sandbox=True,
        )

    def test_password_and_timestamp(self):
        """Test STK password encoding"""
        self.assertEqual(generate_timestamp(datetime(2024, 1, 2, 3, 4, 5)), '20240102030405')
        password = generate_password('174379', 'passkey', '20240102030405')
        self.assertEqual(base64.b64decode(password), b'174379passkey20240102030405')

    def test_parse_callback(self):
        """Test STK callback flattening"""
        result = parse_stk_callback(
            _stk_callback('ws_CO_1', 0, 'Processed', receipt='QKX123')
        )
        self.assertEqual(result['checkout_request_id'], 'ws_CO_1')
        self.assertEqual(result['result_code'], '0')
        self.assertEqual(result['receipt_number'], 'QKX123')
        self.assertEqual(result['phone_number'], '254712345678')

    def test_parse_invalid_callback(self):
        """Test non-callback payloads are rejected"""
        self.assertIsNone(parse_stk_callback({}))
        self.assertIsNone(parse_stk_callback({'Body': {}}))
        self.assertIsNone(parse_stk_callback(['not', 'a', 'dict']))

    def test_unconfigured(self):
        """Test STK push without credentials fails cleanly"""
        with override_settings(**NO_MPESA):
            mpesa = MpesaAPI()
            self.assertFalse(mpesa.is_configured)
            result = mpesa.stk_push('254712345678', 20, 'MnetiFi', '1 Hour')
        self.assertFalse(result['success'])
        self.assertEqual(result['message'], 'M-Pesa credentials not configured')

    @mock.patch('hotspot.mpesa.requests.post')
    @mock.patch('hotspot.mpesa.requests.get')
    def test_stk_push(self, mock_get, mock_post):
        """Test STK push request and response handling"""
        mock_get.return_value = _response(200, {'access_token': 'tok'})
        mock_post.return_value = _response(200, {
            'ResponseCode': '0',
            'CheckoutRequestID': 'ws_CO_1',
            'MerchantRequestID': 'MR_1',
            'CustomerMessage': 'Success. Request accepted for processing',
        })

        result = self.mpesa.stk_push(
            '254712345678', 20, 'MnetiFi', '1 Hour', callback_url='https://x.test/cb'
        )

        self.assertTrue(result['success'])
        self.assertEqual(result['checkout_request_id'], 'ws_CO_1')
        payload = mock_post.call_args.kwargs['json']
        self.assertEqual(payload['PhoneNumber'], '254712345678')
        self.assertEqual(payload['Amount'], 20)
        self.assertEqual(payload['CallBackURL'], 'https://x.test/cb')
        self.assertEqual(
            mock_post.call_args.kwargs['headers']['Authorization'], 'Bearer tok'
        )

    @mock.patch('hotspot.mpesa.requests.post')
    @mock.patch('hotspot.mpesa.requests.get')
    def test_stk_push_rejected(self, mock_get, mock_post):
        """Test Daraja error bodies are surfaced"""
        mock_get.return_value = _response(200, {'access_token': 'tok'})
        mock_post.return_value = _response(400, {
            'errorCode': '400.002.02',
            'errorMessage': 'Bad Request - Invalid PhoneNumber',
        })

        result = self.mpesa.stk_push('254712345678', 20, 'MnetiFi', '1 Hour')

        self.assertFalse(result['success'])
        self.assertEqual(result['message'], 'Bad Request - Invalid PhoneNumber')


    @mock.patch('hotspot.mpesa.requests.post')
    @mock.patch('hotspot.mpesa.requests.get')
    def test_stk_push_non_object_body(self, mock_get, mock_post):
        """Test error bodies that are not JSON objects fail cleanly"""
        mock_get.return_value = _response(200, {'access_token': 'tok'})
        for body in (['upstream', 'error'], 'Service Unavailable'):
            mock_post.return_value = _response(503, body)

            result = self.mpesa.stk_push('254712345678', 20, 'MnetiFi', '1 Hour')

            self.assertFalse(result['success'])
            self.assertEqual(result['message'], 'Invalid response from M-Pesa.')

    @mock.patch('hotspot.mpesa.requests.get')
    def test_access_token_non_object_body(self, mock_get):
        mock_get.return_value = _response(200, ['not', 'a', 'token'])
        self.assertIsNone(self.mpesa.get_access_token())


class SMSAPITest(SimpleTestCase):
    """Test SMS sending"""

    def test_mock_provider(self):
        """Test the mock provider only logs"""
        result = SMSAPI(provider='mock').send_sms('0712345678', 'hello')
        self.assertTrue(result['success'])

    def test_invalid_number(self):
        """Test invalid numbers are not sent"""
        result = SMSAPI(provider='mock').send_sms('123', 'hello')
        self.assertFalse(result['success'])

    @mock.patch('hotspot.sms.requests.post')
    def test_africastalking(self, mock_post):
        """Test Africa's Talking request shape"""
        mock_post.return_value = _response(201, {
            'SMSMessageData': {
                'Message': 'Sent to 1/1',
                'Recipients': [{'status': 'Success', 'messageId': 'ATXid_1'}],
            }
        })
        sms = SMSAPI(provider='africastalking', api_key='k', username='sandbox', sender_id='MnetiFi')

        result = sms.send_sms('0712345678', 'hello')

        self.assertTrue(result['success'])
        self.assertEqual(result['message_id'], 'ATXid_1')
        data = mock_post.call_args.kwargs['data']
        self.assertEqual(data['to'], '+254712345678')
        self.assertEqual(data['from'], 'MnetiFi')


@override_settings(**NO_MPESA)
class PortalEndpointTest(TestCase):
    """Test the captive portal REST endpoints"""

    def setUp(self):
        self.client = APIClient()
        self.plan = Plan.objects.create(name='1 Hour', price=20, sort_order=1)
        self.retired = Plan.objects.create(name='Retired', price=5, is_active=False, sort_order=2)
        WalledGarden.objects.create(domain='safaricom.co.ke')
        WalledGarden.objects.create(domain='old.example.com', is_active=False)

    def test_plan_list(self):
        """Test all plans are listed with camelCase fields"""
        response = self.client.get('/api/plans')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 2)
        self.assertEqual(response.data[0]['name'], '1 Hour')
        self.assertTrue(response.data[0]['isActive'])
        self.assertFalse(response.data[1]['isActive'])

    def test_plan_detail_not_found(self):
        response = self.client.get('/api/plans/00000000-0000-0000-0000-000000000000')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['message'], 'Plan not found')

    def test_walled_gardens(self):
        """Test only active walled-garden domains are returned"""
        response = self.client.get('/api/walled-gardens')
        self.assertEqual([d['domain'] for d in response.data], ['safaricom.co.ke'])

    def test_initiate_simulated(self):
        """Test initiation without M-Pesa credentials creates a pending transaction"""
        response = self.client.post(
            '/api/transactions/initiate',
            {'planId': str(self.plan.id), 'phone': '0712345678'},
            format='json',
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['status'], 'PENDING')
        self.assertEqual(response.data['userPhone'], '254712345678')
        self.assertEqual(response.data['amount'], 20)
        self.assertEqual(response.data['statusDescription'], 'Awaiting M-Pesa confirmation')
        self.assertTrue(response.data['checkoutRequestId'].startswith('ws_CO_'))
        self.assertEqual(Transaction.objects.count(), 1)

    def test_initiate_missing_fields(self):
        """Test missing planId/phone gives one readable message"""
        response = self.client.post('/api/transactions/initiate', {}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['message'], 'Plan ID and phone number are required')

    def test_initiate_invalid_phone(self):
        response = self.client.post(
            '/api/transactions/initiate',
            {'planId': str(self.plan.id), 'phone': '12345'},
            format='json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['message'], 'Please enter a valid phone number')
        self.assertEqual(Transaction.objects.count(), 0)

    def test_initiate_unknown_plan(self):
        response = self.client.post(
            '/api/transactions/initiate',
            {'planId': '00000000-0000-0000-0000-000000000000', 'phone': '0712345678'},
            format='json',
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['message'], 'Plan not found')

    def test_initiate_inactive_plan(self):
        response = self.client.post(
            '/api/transactions/initiate',
            {'planId': str(self.retired.id), 'phone': '0712345678'},
            format='json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['message'], 'This plan is no longer available')

    @mock.patch('hotspot.payments.MpesaAPI')
    def test_initiate_stk_push(self, mock_mpesa_class):
        """Test initiation through Daraja stores the checkout id"""
        mpesa = mock_mpesa_class.return_value
        mpesa.is_configured = True
        mpesa.stk_push.return_value = {
            'success': True,
            'checkout_request_id': 'ws_CO_123',
            'merchant_request_id': 'MR_123',
        }

        response = self.client.post(
            '/api/transactions/initiate',
            {'planId': str(self.plan.id), 'phone': '+254 712 345 678'},
            format='json',
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['checkoutRequestId'], 'ws_CO_123')
        self.assertEqual(mpesa.stk_push.call_args.kwargs['phone_number'], '254712345678')
        self.assertEqual(mpesa.stk_push.call_args.kwargs['amount'], 20)

    @mock.patch('hotspot.payments.MpesaAPI')
    def test_initiate_stk_push_failed(self, mock_mpesa_class):
        """Test a rejected STK push returns 502 and fails the transaction"""
        mpesa = mock_mpesa_class.return_value
        mpesa.is_configured = True
        mpesa.stk_push.return_value = {'success': False, 'message': 'Invalid Access Token'}

        response = self.client.post(
            '/api/transactions/initiate',
            {'planId': str(self.plan.id), 'phone': '0712345678'},
            format='json',
        )

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data['message'], 'Payment failed: Invalid Access Token')
        self.assertEqual(Transaction.objects.get().status, Transaction.STATUS_FAILED)

    def test_transaction_detail(self):
        transaction, _ = create_transaction(self.plan, '254712345678')

        response = self.client.get(f'/api/transactions/{transaction.id}')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['id'], str(transaction.id))
        self.assertEqual(response.data['planId'], str(self.plan.id))

        response = self.client.get('/api/transactions/00000000-0000-0000-0000-000000000000')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['message'], 'Transaction not found')

    def test_transaction_list(self):
        create_transaction(self.plan, '254712345678')
        create_transaction(self.plan, '254722000111')
        response = self.client.get('/api/transactions')
        self.assertEqual(len(response.data), 2)


@override_settings(**NO_MPESA)
class MpesaCallbackTest(TestCase):
    """Test the M-Pesa STK callback webhook"""

    def setUp(self):
        self.client = APIClient()
        self.plan = Plan.objects.create(name='1 Hour', price=20)
        self.transaction, _ = create_transaction(self.plan, '254712345678')
        self.checkout_id = self.transaction.checkout_request_id

    def _post(self, payload):
        return self.client.post('/api/transactions/callback', payload, format='json')

    def test_successful_payment(self):
        """Test result 0 completes the transaction and sends one receipt"""
        response = self._post(_stk_callback(self.checkout_id, 0, 'Processed', receipt='QKX123'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'ResultCode': 0, 'ResultDesc': 'Callback received'})
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)
        self.assertEqual(self.transaction.mpesa_receipt_number, 'QKX123')
        self.assertEqual(self.transaction.status_description, 'Payment received successfully')
        self.assertEqual(SMSLog.objects.filter(transaction=self.transaction).count(), 1)

        # Daraja retries the same callback
        self._post(_stk_callback(self.checkout_id, 0, 'Processed', receipt='QKX123'))
        self.assertEqual(SMSLog.objects.count(), 1)

    def test_receipt_log_failure_keeps_payment(self):
        """Test a failed SMS log write does not break a recorded payment"""
        with mock.patch.object(
            SMSLog.objects, 'create', side_effect=DatabaseError('database is locked')
        ):
            response = self._post(
                _stk_callback(self.checkout_id, 0, 'Processed', receipt='QKX123')
            )

        self.assertEqual(response.status_code, 200)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)
        self.assertEqual(self.transaction.mpesa_receipt_number, 'QKX123')

    def test_cancelled_by_user(self):
        """Test result 1032 fails with the cancellation message"""
        self._post(_stk_callback(self.checkout_id, 1032, 'Request cancelled by user'))
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_FAILED)
        self.assertEqual(self.transaction.status_description, 'Transaction cancelled by user')
        self.assertEqual(SMSLog.objects.count(), 0)

    def test_other_failure(self):
        """Test other result codes fail with the provider description"""
        self._post(_stk_callback(self.checkout_id, 1, 'The balance is insufficient'))
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_FAILED)
        self.assertEqual(self.transaction.status_description, 'The balance is insufficient')

    def test_failure_after_completion_ignored(self):
        """Test a late failure never downgrades a completed payment"""
        self._post(_stk_callback(self.checkout_id, 0, 'Processed', receipt='QKX123'))
        self._post(_stk_callback(self.checkout_id, 1, 'Late failure'))
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)

    def test_invalid_payload(self):
        response = self._post({'foo': 'bar'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['message'], 'Invalid callback format')

    def test_unknown_checkout(self):
        response = self._post(_stk_callback('ws_CO_unknown', 0, 'Processed'))
        self.assertEqual(response.status_code, 404)


@override_settings(
    PENDING_TRANSACTION_TIMEOUT_MINUTES=10,
    SIMULATED_CONFIRMATION_SECONDS=20,
    **NO_MPESA,
)
class PendingTransactionTaskTest(TestCase):
    """Test reconciliation of pending transactions"""

    def setUp(self):
        self.plan = Plan.objects.create(name='1 Hour', price=20)
        self.transaction, _ = create_transaction(self.plan, '254712345678')

    def _age(self, **delta):
        Transaction.objects.filter(pk=self.transaction.pk).update(
            created_at=timezone.now() - timedelta(**delta)
        )

    def test_recent_simulated_stays_pending(self):
        stats = check_pending_transactions()
        self.assertEqual(stats['still_pending'], 1)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_PENDING)

    def test_simulated_confirmation(self):
        """Test simulated transactions complete after the delay"""
        self._age(seconds=30)

        stats = check_pending_transactions()

        self.assertEqual(stats['completed'], 1)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)
        self.assertTrue(self.transaction.mpesa_receipt_number.startswith('SIM'))
        self.assertEqual(SMSLog.objects.count(), 1)

    def test_timeout(self):
        """Test transactions pending too long are failed"""
        self._age(minutes=11)

        stats = check_pending_transactions()

        self.assertEqual(stats['failed'], 1)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_FAILED)
        self.assertEqual(self.transaction.status_description, 'Payment request timed out')

    def test_query_result_codes(self):
        """Test Daraja query results: 0 completes, 1032 cancels, others wait"""
        mpesa = mock.Mock(is_configured=True)
        cases = [
            ({'success': False, 'message': 'The transaction is being processed'},
             Transaction.STATUS_PENDING),
            ({'success': True, 'result_code': '1037', 'result_desc': 'Timeout'},
             Transaction.STATUS_PENDING),
            ({'success': True, 'result_code': '1032', 'result_desc': 'Cancelled'},
             Transaction.STATUS_FAILED),
        ]
        for result, expected in cases:
            mpesa.query_status.return_value = result
            check_pending_transactions(mpesa=mpesa)
            self.transaction.refresh_from_db()
            self.assertEqual(self.transaction.status, expected, result)

        mpesa.query_status.assert_called_with(self.transaction.checkout_request_id)

    def test_query_success(self):
        mpesa = mock.Mock(is_configured=True)
        mpesa.query_status.return_value = {
            'success': True,
            'result_code': '0',
            'result_desc': 'The service request is processed successfully.',
        }

        stats = check_pending_transactions(mpesa=mpesa)

        self.assertEqual(stats['completed'], 1)
        self.transaction.refresh_from_db()
        self.assertEqual(self.transaction.status, Transaction.STATUS_COMPLETED)


@override_settings(**NO_MPESA)
class ManagementCommandTest(TestCase):
    """Test management commands"""

    def test_seed_hotspot(self):
        """Test seeding is repeatable"""
        call_command('seed_hotspot', stdout=StringIO())
        call_command('seed_hotspot', stdout=StringIO())

        self.assertEqual(Plan.objects.count(), 4)
        self.assertEqual(WalledGarden.objects.count(), 3)
        self.assertEqual(Plan.objects.first().name, '30 Minutes')

    def test_check_pending_payments(self):
        plan = Plan.objects.create(name='1 Hour', price=20)
        create_transaction(plan, '254712345678')
        out = StringIO()

        call_command('check_pending_payments', stdout=out)

        self.assertIn('Checked 1 pending transaction(s)', out.getvalue())

    def test_captive_checkout(self):
        """Test a full terminal checkout against a fake portal"""
        api = FakePortalAPI(poll_results=['COMPLETED'])
        out = StringIO()

        with mock.patch(
            'hotspot.management.commands.captive_checkout.PortalAPI', return_value=api
        ), mock.patch('builtins.input', side_effect=['1', '0712345678']):
            call_command('captive_checkout', stdout=out)

        output = out.getvalue()
        self.assertIn('Processing Payment', output)
        self.assertIn('Payment Successful', output)
        self.assertIn('Receipt: QKX7Y8Z9', output)
        self.assertEqual(api.initiated, [('p1', '254712345678')])
