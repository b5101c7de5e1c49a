"""
Patient-facing notification texts (French).

render_notification() returns subject/text/html for email and text only for
SMS. Dates are shown in the clinic's timezone.
"""

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional
from zoneinfo import ZoneInfo

from booking.models import Appointment, NotificationChannel, NotificationType
from booking.utils.calendar_link import generate_google_calendar_link

# French weekday and month names for date formatting
WEEKDAYS_FR = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]
MONTHS_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre"
]


@dataclass
class RenderedMessage:
    text: str
    subject: Optional[str] = None
    html: Optional[str] = None


def format_date_french(dt: datetime) -> str:
    """Format datetime to French date string, e.g. 'lundi 10 juin 2024'."""
    return f"{WEEKDAYS_FR[dt.weekday()]} {dt.day} {MONTHS_FR[dt.month - 1]} {dt.year}"


def _email_html(title: str, greeting: str, intro: str, rows: list[tuple[str, str]], footer: str) -> str:
    items = "".join(
        f"<li><strong>{escape(label)} :</strong> {escape(value)}</li>" for label, value in rows
    )
    return (
        f"<h2>{escape(title)}</h2>"
        f"<p>{escape(greeting)}</p>"
        f"<p>{escape(intro)}</p>"
        f"<ul>{items}</ul>"
        f"<p>{footer}</p>"
    )


def render_notification(
    notification_type: NotificationType,
    channel: NotificationChannel,
    appointment: Appointment,
    service_name: Optional[str],
    clinic_name: str,
    timezone: str,
) -> RenderedMessage:
    """
    Build the message for one notification.

    Args:
        notification_type: confirm, reminder or cancel
        channel: email or sms
        appointment: Appointment the notification is about
        service_name: Display name of the booked service (None if unknown)
        clinic_name: Sender name shown in texts
        timezone: IANA timezone used to display the appointment time
    """
    local_start = appointment.start_time.astimezone(ZoneInfo(timezone))
    date_str = format_date_french(local_start)
    time_str = local_start.strftime("%H:%M")
    patient_name = appointment.patient.full_name
    service_label = service_name or "Consultation"
    greeting = f"Bonjour {patient_name},"
    rows = [("Date", date_str), ("Heure", time_str), ("Service", service_label)]
    signature = f"L'équipe {clinic_name}"

    if notification_type == NotificationType.CONFIRM:
        if channel == NotificationChannel.SMS:
            return RenderedMessage(
                text=f"{clinic_name}: Rendez-vous confirmé le {date_str} à {time_str}."
            )
        calendar_link = generate_google_calendar_link(
            title=f"Rendez-vous - {clinic_name}",
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            description=f"Service : {service_label}",
        )
        return RenderedMessage(
            subject=f"Confirmation de votre rendez-vous - {clinic_name}",
            text=(
                f"{greeting}\n\nVotre rendez-vous est confirmé :\n\n"
                f"Date : {date_str}\nHeure : {time_str}\nService : {service_label}\n\n"
                f"Ajouter à votre agenda : {calendar_link}\n\n"
                f"Cordialement,\n{signature}"
            ),
            html=_email_html(
                "Rendez-vous confirmé",
                greeting,
                "Votre rendez-vous est confirmé :",
                rows,
                f'<a href="{escape(calendar_link)}">Ajouter à Google Agenda</a><br>'
                f"Cordialement,<br>{escape(signature)}",
            ),
        )

    if notification_type == NotificationType.REMINDER:
        if channel == NotificationChannel.SMS:
            return RenderedMessage(
                text=f"{clinic_name}: Rappel de votre rendez-vous le {date_str} à {time_str}."
            )
        return RenderedMessage(
            subject=f"Rappel de votre rendez-vous - {clinic_name}",
            text=(
                f"{greeting}\n\nRappel de votre rendez-vous :\n\n"
                f"Date : {date_str}\nHeure : {time_str}\nService : {service_label}\n\n"
                f"À bientôt,\n{signature}"
            ),
            html=_email_html(
                "Rappel de rendez-vous",
                greeting,
                "Rappel de votre rendez-vous :",
                rows,
                f"À bientôt,<br>{escape(signature)}",
            ),
        )

    if notification_type == NotificationType.CANCEL:
        if channel == NotificationChannel.SMS:
            return RenderedMessage(
                text=f"{clinic_name}: Votre rendez-vous du {date_str} à {time_str} a été annulé."
            )
        return RenderedMessage(
            subject=f"Annulation de votre rendez-vous - {clinic_name}",
            text=(
                f"{greeting}\n\nVotre rendez-vous du {date_str} à {time_str} a été annulé.\n\n"
                f"Pour reprendre rendez-vous, visitez notre site.\n\n"
                f"Cordialement,\n{signature}"
            ),
            html=_email_html(
                "Rendez-vous annulé",
                greeting,
                f"Votre rendez-vous du {date_str} à {time_str} a été annulé.",
                [],
                f"Pour reprendre rendez-vous, visitez notre site.<br>{escape(signature)}",
            ),
        )

    text = f"{clinic_name}: Notification concernant votre rendez-vous du {date_str} à {time_str}."
    if channel == NotificationChannel.EMAIL:
        return RenderedMessage(subject=f"Votre rendez-vous - {clinic_name}", text=text)
    return RenderedMessage(text=text)
