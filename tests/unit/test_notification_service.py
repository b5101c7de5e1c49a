"""
Unit tests for notification scheduling, idempotent sending and message content.
"""

from datetime import datetime, timedelta, UTC

import pytest

from booking.errors import NotFound
from booking.models import (
    Appointment,
    Notification,
    NotificationChannel,
    NotificationType,
    PatientInfo,
)
from booking.services.notification_content import format_date_french, render_notification
from booking.services.notification_service import (
    APPOINTMENT_CANCELLED,
    NO_RECIPIENT,
    NotificationScheduler,
    NotificationSender,
)
from tests.conftest import MONDAY_9AM, SERVICE_ID


def _notification(appointment_id, scheduled_at, type_=NotificationType.CONFIRM, channel=NotificationChannel.EMAIL, id_="n1"):
    return Notification(
        id=id_,
        appointment_id=appointment_id,
        type=type_,
        channel=channel,
        scheduled_at=scheduled_at,
        created_at=scheduled_at,
    )


async def _save(store, *notifications):
    async with store.transaction() as tx:
        for notification in notifications:
            await tx.save_notification(notification)


async def _load(store, notification_id):
    async with store.transaction() as tx:
        return await tx.get_notification(notification_id)


class TestScheduler:
    def test_plan_booking_default_schedule(self, clock):
        scheduler = NotificationScheduler([(24, "email"), (2, "sms")], clock)
        appointment = _appointment_stub()

        planned = scheduler.plan_booking(appointment)

        assert [(n.type, n.channel, n.scheduled_at) for n in planned] == [
            (NotificationType.CONFIRM, NotificationChannel.EMAIL, clock.now),
            (NotificationType.REMINDER, NotificationChannel.EMAIL, MONDAY_9AM - timedelta(hours=24)),
            (NotificationType.REMINDER, NotificationChannel.SMS, MONDAY_9AM - timedelta(hours=2)),
        ]
        assert all(n.sent_at is None and n.attempts == 0 for n in planned)
        assert len({n.id for n in planned}) == 3

    def test_plan_booking_skips_past_reminders(self, clock):
        scheduler = NotificationScheduler([(24, "email"), (2, "sms")], clock)
        now = MONDAY_9AM - timedelta(hours=2)

        planned = scheduler.plan_booking(_appointment_stub(), now=now)

        assert [n.type for n in planned] == [NotificationType.CONFIRM]

    def test_plan_cancellation(self, clock):
        scheduler = NotificationScheduler([(24, "email")], clock)

        planned = scheduler.plan_cancellation(_appointment_stub())

        assert len(planned) == 1
        assert planned[0].type == NotificationType.CANCEL
        assert planned[0].channel == NotificationChannel.EMAIL
        assert planned[0].scheduled_at == clock.now


class TestSend:
    @pytest.mark.asyncio
    async def test_send_once(self, engine, store, clock, email_client, make_appointment):
        appointment = await make_appointment()
        await _save(store, _notification(appointment.id, clock.now))

        first = await engine.sender.send("n1")
        second = await engine.sender.send("n1")

        assert first.status == "sent" and first.delivered
        assert second.status == "already_sent"
        assert len(email_client.sent) == 1
        assert email_client.sent[0]["to"] == "marie@example.com"
        assert email_client.sent[0]["subject"] == "Confirmation de votre rendez-vous - Cabinet Test"

        stored = await _load(store, "n1")
        assert stored.sent_at == clock.now
        assert stored.attempts == 1
        assert stored.last_error is None

    @pytest.mark.asyncio
    async def test_sms_goes_to_phone(self, engine, store, clock, sms_client, make_appointment):
        appointment = await make_appointment()
        await _save(
            store,
            _notification(appointment.id, clock.now, NotificationType.REMINDER, NotificationChannel.SMS),
        )

        result = await engine.sender.send("n1")

        assert result.delivered
        assert sms_client.sent == [
            {"to": "+33612345678", "text": "Cabinet Test: Rappel de votre rendez-vous le lundi 10 juin 2024 à 09:00."}
        ]

    @pytest.mark.asyncio
    async def test_failure_recorded_then_retried(self, engine, store, clock, email_client, make_appointment):
        appointment = await make_appointment()
        await _save(store, _notification(appointment.id, clock.now))
        email_client.fail_with = RuntimeError("provider timeout")

        failed = await engine.sender.send("n1")

        assert failed.status == "failed"
        assert failed.error == "provider timeout"
        stored = await _load(store, "n1")
        assert stored.sent_at is None
        assert stored.attempts == 1
        assert stored.last_error == "provider timeout"

        email_client.fail_with = None
        retried = await engine.sender.send("n1")

        assert retried.delivered
        stored = await _load(store, "n1")
        assert stored.attempts == 2
        assert stored.last_error is None
        assert stored.sent_at is not None

    @pytest.mark.asyncio
    async def test_no_recipient_closes_record(self, engine, store, clock, sms_client, make_appointment):
        appointment = await make_appointment(patient=PatientInfo("Jean", "Petit", "jean@example.com", None))
        await _save(
            store,
            _notification(appointment.id, clock.now, NotificationType.REMINDER, NotificationChannel.SMS),
        )

        result = await engine.sender.send("n1")

        assert result.status == "skipped"
        assert sms_client.sent == []
        stored = await _load(store, "n1")
        assert stored.sent_at == clock.now
        assert stored.last_error == NO_RECIPIENT

    @pytest.mark.asyncio
    async def test_missing_appointment(self, engine, store, clock, email_client):
        await _save(store, _notification("gone", clock.now))

        result = await engine.sender.send("n1")

        assert result.status == "failed"
        assert email_client.sent == []
        stored = await _load(store, "n1")
        assert stored.sent_at is None
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_unknown_notification(self, engine):
        with pytest.raises(NotFound):
            await engine.sender.send("does-not-exist")


class TestDispatchDue:
    @pytest.mark.asyncio
    async def test_only_due_notifications_sent(self, engine, store, clock, email_client, sms_client, make_appointment):
        appointment = await make_appointment()
        await _save(
            store,
            _notification(appointment.id, clock.now - timedelta(minutes=1), id_="due"),
            _notification(
                appointment.id,
                MONDAY_9AM - timedelta(hours=2),
                NotificationType.REMINDER,
                NotificationChannel.SMS,
                id_="later",
            ),
        )

        counts = await engine.sender.dispatch_due()

        assert counts == {"sent": 1, "failed": 0, "skipped": 0, "already_sent": 0}
        assert len(email_client.sent) == 1
        assert sms_client.sent == []

        clock.now = MONDAY_9AM - timedelta(hours=2)
        counts = await engine.sender.dispatch_due()

        assert counts["sent"] == 1
        assert len(sms_client.sent) == 1

    @pytest.mark.asyncio
    async def test_cancelled_appointment_gets_no_reminders(
        self, engine, clock, email_client, sms_client, make_slot, patient_payload
    ):
        slot = await make_slot()
        await engine.holds.hold(slot.id, "req-a")
        booked = await engine.booking.book(
            slot_id=slot.id,
            requester_id="req-a",
            patient=patient_payload,
            service_id=SERVICE_ID,
            consent_given=True,
            verification_token="token",
        )
        await engine.sender.dispatch_due()
        assert len(email_client.sent) == 1

        await engine.cancellations.cancel(booked.appointment_id)
        clock.now = MONDAY_9AM - timedelta(hours=1)
        counts = await engine.sender.dispatch_due()

        assert counts == {"sent": 1, "failed": 0, "skipped": 2, "already_sent": 0}
        assert sms_client.sent == []
        assert len(email_client.sent) == 2
        assert "annul" in email_client.sent[-1]["subject"].lower()

        async with engine.store.transaction() as tx:
            notifications = await tx.list_notifications(booked.appointment_id)
        reminders = [n for n in notifications if n.type == NotificationType.REMINDER]
        assert len(reminders) == 2
        assert all(n.sent_at is not None and n.last_error == APPOINTMENT_CANCELLED for n in reminders)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, clock, email_client, sms_client, make_appointment):
        sender = NotificationSender(store, email_client, sms_client, clock, max_attempts=2)
        appointment = await make_appointment()
        await _save(store, _notification(appointment.id, clock.now))
        email_client.fail_with = RuntimeError("bounced")

        assert (await sender.dispatch_due())["failed"] == 1
        assert (await sender.dispatch_due())["failed"] == 1
        assert await sender.dispatch_due() == {"sent": 0, "failed": 0, "skipped": 0, "already_sent": 0}

        stored = await _load(store, "n1")
        assert stored.attempts == 2
        assert stored.sent_at is None


class TestContent:
    def test_format_date_french(self):
        assert format_date_french(datetime(2024, 6, 10, 9, 0)) == "lundi 10 juin 2024"
        assert format_date_french(datetime(2024, 8, 18, 9, 0)) == "dimanche 18 août 2024"

    def test_confirm_email_contains_calendar_link(self):
        message = render_notification(
            NotificationType.CONFIRM,
            NotificationChannel.EMAIL,
            _appointment_stub(),
            "Consultation",
            "Cabinet Test",
            "Europe/Paris",
        )

        assert message.subject == "Confirmation de votre rendez-vous - Cabinet Test"
        assert "Heure : 09:00" in message.text
        assert "calendar.google.com" in message.text
        assert "Bonjour Marie Dupont," in message.html

    def test_cancel_email(self):
        message = render_notification(
            NotificationType.CANCEL,
            NotificationChannel.EMAIL,
            _appointment_stub(),
            None,
            "Cabinet Test",
            "Europe/Paris",
        )

        assert message.subject == "Annulation de votre rendez-vous - Cabinet Test"
        assert "lundi 10 juin 2024 à 09:00 a été annulé" in message.text

    def test_html_escapes_patient_name(self):
        appointment = _appointment_stub(PatientInfo("<b>Eve</b>", "X", "eve@example.com"))
        message = render_notification(
            NotificationType.REMINDER,
            NotificationChannel.EMAIL,
            appointment,
            "Consultation",
            "Cabinet Test",
            "Europe/Paris",
        )

        assert "<b>Eve</b>" not in message.html
        assert "&lt;b&gt;Eve&lt;/b&gt;" in message.html


def _appointment_stub(patient=None):
    return Appointment(
        id="appt-1",
        tenant_id="cabinet-test",
        provider_id="dr-martin",
        service_id="consult-30",
        slot_id="slot-1",
        start_time=MONDAY_9AM,
        end_time=MONDAY_9AM + timedelta(minutes=30),
        patient=patient or PatientInfo("Marie", "Dupont", "marie@example.com", "+33612345678"),
        external_event_id="cal-dr-martin::evt1",
        created_at=datetime(2024, 6, 1, tzinfo=UTC),
    )
