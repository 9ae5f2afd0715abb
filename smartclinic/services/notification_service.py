"""Patient and staff notifications.

Message texts live here; delivery goes through ``sms_service`` and
``email_service``. Every function is best-effort: delivery problems are
logged by the transports and never raised to the caller, so these are
safe to hand to FastAPI ``BackgroundTasks`` or to scheduler jobs.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from ..core.clock import format_local
from ..core.config import settings
from .email_service import send_email
from .sms_service import send_sms

logger = logging.getLogger(__name__)

def send_otp_sms(phone_number: str, otp: str) -> bool:
    return send_sms(
        phone_number,
        f"Your {settings.APP_NAME} verification code is: {otp}. "
        f"This code will expire in {settings.OTP_EXPIRE_MINUTES} minutes."
    )

def send_otp_email(email: str, otp: str) -> bool:
    return send_email(
        email,
        f"{settings.APP_NAME} verification code",
        f"Your verification code is {otp}.\n\n"
        f"It expires in {settings.OTP_EXPIRE_MINUTES} minutes. "
        "If you did not request it, you can ignore this email."
    )

def medicine_reminder_text(medicine_name: str, dosage: str, scheduled_at: datetime) -> str:
    return (
        f"{settings.APP_NAME} Reminder: Time to take your {medicine_name} ({dosage}) "
        f"at {format_local(scheduled_at, '%I:%M %p')}. "
        "Don't forget to mark it as taken in the app!"
    )

def send_medicine_reminder(phone_number: Optional[str], email: Optional[str],
                           medicine_name: str, dosage: str, scheduled_at: datetime) -> bool:
    text = medicine_reminder_text(medicine_name, dosage, scheduled_at)
    sent = False
    if phone_number:
        sent = send_sms(phone_number, text) or sent
    if email:
        sent = send_email(email, f"Medicine reminder: {medicine_name}", text) or sent
    return sent

def send_appointment_reminder(phone_number: Optional[str], email: Optional[str],
                              doctor_name: str, appointment_date: datetime,
                              location: Optional[str]) -> bool:
    when = format_local(appointment_date)
    where = location or "the clinic"
    text = (
        f"{settings.APP_NAME} Reminder: You have an appointment with Dr. {doctor_name} "
        f"at {when} at {where}. Please arrive 15 minutes early."
    )
    sent = False
    if phone_number:
        sent = send_sms(phone_number, text) or sent
    if email:
        sent = send_email(email, "Upcoming appointment reminder", text) or sent
    return sent

def delay_text(doctor_name: str, delay_minutes: int, reason: Optional[str]) -> str:
    because = f" due to {reason}" if reason else ""
    return (
        f"{settings.APP_NAME} Update: Dr. {doctor_name} is running {delay_minutes} minutes late"
        f"{because}. Your appointment time may be delayed. We apologize for the inconvenience."
    )

def send_delay_alerts(phone_numbers: Iterable[str], doctor_name: str,
                      delay_minutes: int, reason: Optional[str]) -> int:
    text = delay_text(doctor_name, delay_minutes, reason)
    return sum(1 for phone in phone_numbers if send_sms(phone, text))

def send_appointment_request_received(phone_number: Optional[str], doctor_name: str,
                                      appointment_date: datetime) -> bool:
    return send_sms(
        phone_number,
        f"{settings.APP_NAME}: We received your request to see Dr. {doctor_name} on "
        f"{format_local(appointment_date)}. You will be notified once the clinic confirms it."
    )

def send_appointment_approved(phone_number: Optional[str], email: Optional[str],
                              patient_name: str, doctor_name: str,
                              appointment_date: datetime) -> None:
    when = format_local(appointment_date)
    if phone_number:
        send_sms(
            phone_number,
            f"{settings.APP_NAME}: Your appointment with Dr. {doctor_name} on {when} is confirmed."
        )
    if email:
        send_email(
            email,
            "Your appointment is confirmed",
            f"Dear {patient_name},\n\nYour appointment with Dr. {doctor_name} "
            f"on {when} has been approved.\n\nPlease arrive 15 minutes early."
        )

def send_appointment_rescheduled(email: Optional[str], patient_name: str, doctor_name: str,
                                 old_date: datetime, new_date: datetime) -> None:
    if not email:
        return
    send_email(
        email,
        "Your appointment has been rescheduled",
        f"Dear {patient_name},\n\nYour appointment with Dr. {doctor_name} has moved "
        f"from {format_local(old_date)} to {format_local(new_date)}."
    )

def send_appointment_cancelled(phone_number: Optional[str], email: Optional[str],
                               patient_name: str, doctor_name: str,
                               appointment_date: datetime, reason: Optional[str]) -> None:
    when = format_local(appointment_date)
    because = f" Reason: {reason}" if reason else ""
    if phone_number:
        send_sms(
            phone_number,
            f"{settings.APP_NAME}: Your appointment with Dr. {doctor_name} on {when} "
            f"was cancelled.{because}"
        )
    if email:
        send_email(
            email,
            "Your appointment was cancelled",
            f"Dear {patient_name},\n\nYour appointment with Dr. {doctor_name} on {when} "
            f"was cancelled.{because}\n\nPlease contact the clinic to book a new time."
        )

def send_clinic_registration_alert(clinic_name: str, admin_name: str, admin_email: str) -> None:
    for platform_email in settings.PLATFORM_ADMIN_EMAILS:
        send_email(
            platform_email,
            f"New clinic registration: {clinic_name}",
            f"{clinic_name} was registered by {admin_name} <{admin_email}> "
            "and is waiting for review."
        )

def send_clinic_approved(admin_email: Optional[str], clinic_name: str) -> None:
    send_email(
        admin_email,
        f"{clinic_name} is approved",
        f"{clinic_name} has been approved on {settings.APP_NAME}. "
        "You can now sign in and set up your team."
    )

def send_emergency_alert(clinic_email: Optional[str], patient_name: str,
                         urgency: str, symptoms: str) -> None:
    logger.warning(f"Emergency request ({urgency}) from {patient_name}")
    send_email(
        clinic_email,
        f"[{urgency.upper()}] Emergency request from {patient_name}",
        f"Symptoms reported:\n{symptoms}"
    )
