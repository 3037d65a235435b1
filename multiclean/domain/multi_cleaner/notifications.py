"""
Multi-cleaner notifications
Message shaping per event lives in one dispatch table; the gateway only
delivers (in-app row, email via Resend, push via Expo).
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

import httpx
import resend
from mjml import mjml_to_html
from sqlalchemy.orm import Session

from ... import config
from ...email_templates import notification_email_template
from ...models import Notification, User
from ...shared.errors import UpstreamError
from .pricing import format_cents

logger = logging.getLogger(__name__)


class NotificationContext(str, Enum):
    """Every multi-cleaner event a user can be told about; the value is the notification type"""

    CO_CLEANER_JOINED = "multi_cleaner_co_cleaner_joined"
    EDGE_CASE_SECOND_CLEANER_JOINED = "edge_case_second_cleaner_joined"
    OFFER_EXPIRED = "multi_cleaner_offer_expired"
    OFFER_WITHDRAWN = "multi_cleaner_offer_withdrawn"
    JOIN_REQUEST_RECEIVED = "cleaner_join_request"
    JOIN_REQUEST_APPROVED = "join_request_approved"
    JOIN_REQUEST_AUTO_APPROVED = "join_request_auto_approved"
    JOIN_REQUEST_DECLINED = "join_request_declined"
    JOIN_REQUEST_CANCELLED = "join_request_cancelled"
    HOMEOWNER_CLEANER_AUTO_APPROVED = "cleaner_auto_approved"
    DROPOUT_SOLO_POSSIBLE = "cleaner_dropout_solo_possible"
    DROPOUT_EXTRA_ROOMS = "cleaner_dropout_extra_rooms"
    HOMEOWNER_SOLO_OPTION = "cleaner_dropout_homeowner_solo"
    HOMEOWNER_REDUCED_TEAM = "cleaner_dropout_homeowner_reduced"
    HOMEOWNER_ALL_UNAVAILABLE = "all_cleaners_unavailable"
    SOLO_COMPLETION_OFFER = "solo_completion_offer"
    SOLO_ACCEPTED_HOMEOWNER = "solo_completion_accepted"
    EXTRA_WORK_OFFER = "extra_work_offer"
    EDGE_CASE_DECISION_REQUIRED = "edge_case_decision_required"
    EDGE_CASE_AUTO_PROCEEDED = "edge_case_auto_proceeded"
    EDGE_CASE_CLEANER_CONFIRMED = "edge_case_cleaner_confirmed"
    EDGE_CASE_CANCELLED = "edge_case_cancelled"
    EDGE_CASE_CLEANER_CANCELLED = "edge_case_cleaner_cancelled"
    URGENT_FILL = "multi_cleaner_urgent"
    FINAL_WARNING = "multi_cleaner_final_warning"
    JOB_CANCELLED = "multi_cleaner_job_cancelled"
    JOB_COMPLETED = "multi_cleaner_job_completed"


def format_date(value: Union[date, datetime, str, None]) -> str:
    """'Monday, Jan 5, 2026' style date for messages"""
    if value is None:
        return "your scheduled date"
    if isinstance(value, str):
        return value
    return f"{value.strftime('%A, %b')} {value.day}, {value.year}"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


# ==================== Message builders ====================
# Each builder takes the message params and returns (title, body)


def _co_cleaner_joined(p):
    return (
        "A co-cleaner joined your job",
        f"{p['cleaner_name']} will be cleaning with you on {p['date']}.",
    )


def _edge_case_second_cleaner_joined(p):
    return (
        "A second cleaner joined your job",
        f"{p['cleaner_name']} has joined your cleaning on {p['date']}. "
        "The work is now shared, so your payment will now be split between both cleaners.",
    )


def _offer_expired(p):
    return (
        "Job offer expired",
        f"Your offer for the multi-cleaner job on {p['date']} has expired.",
    )


def _offer_withdrawn(p):
    return (
        "Job offer no longer available",
        f"The multi-cleaner job on {p['date']} has been filled or cancelled.",
    )


def _join_request_received(p):
    return (
        "A cleaner wants to join your cleaning",
        f"{p['cleaner_name']} has asked to join your cleaning on {p['date']}. "
        f"Approve or decline within {p['hours']} hours, otherwise they will be approved automatically.",
    )


def _join_request_approved(p):
    return (
        "You're confirmed!",
        f"The homeowner approved your request to join the cleaning on {p['date']}.",
    )


def _join_request_auto_approved(p):
    return (
        "You're confirmed!",
        f"Your request to join the cleaning on {p['date']} was approved automatically.",
    )


def _join_request_declined(p):
    reason = p.get("reason")
    body = f"Your request to join the cleaning on {p['date']} was declined."
    if reason:
        body += f" Reason: {reason}"
    return "Join request declined", body


def _join_request_cancelled(p):
    return (
        "Join request closed",
        f"The cleaning on {p['date']} has been filled, so your request was closed.",
    )


def _homeowner_cleaner_auto_approved(p):
    return (
        "Cleaner assigned",
        f"{p['cleaner_name']} was assigned to your {p['date']} cleaning after the approval period expired.",
    )


def _dropout_solo_possible(p):
    return (
        "Co-cleaner unavailable",
        f"A co-cleaner has dropped out of the job on {p['date']}. "
        "You may be offered to complete the job solo for full pay.",
    )


def _dropout_extra_rooms(p):
    return (
        "Co-cleaner unavailable",
        f"A co-cleaner has dropped out of the job on {p['date']}. "
        "You may need to cover extra rooms for extra pay.",
    )


def _homeowner_solo_option(p):
    return (
        "Cleaner update for your appointment",
        f"One of the cleaners for your {p['date']} appointment is no longer available. "
        "The remaining cleaner may complete the job solo, or you can cancel free of charge.",
    )


def _homeowner_reduced_team(p):
    return (
        "Cleaner update for your appointment",
        f"One of the cleaners for your {p['date']} appointment is no longer available. "
        f"{_plural(p['remaining'], 'cleaner')} remain and may cover the extra rooms. "
        "We're working to find a replacement.",
    )


def _homeowner_all_unavailable(p):
    return (
        "Your cleaners are unavailable",
        f"None of the cleaners for your {p['date']} appointment are available anymore. "
        "Please reschedule or cancel free of penalty.",
    )


def _solo_completion_offer(p):
    return (
        "Solo completion offer",
        f"You can complete the job on {p['date']} solo for {format_cents(p['earnings'])}. "
        f"Accept within {p['hours']} hours.",
    )


def _solo_accepted_homeowner(p):
    return (
        "Your cleaning is covered",
        f"{p['cleaner_name']} will complete your {p['date']} cleaning on their own.",
    )


def _extra_work_offer(p):
    return (
        "Extra rooms available",
        f"A co-cleaner dropped out of the job on {p['date']}. Take on {_plural(p['room_count'], 'extra room')} "
        f"for {format_cents(p['earnings'])} total. Accept within {p['hours']} hours.",
    )


def _edge_case_decision_required(p):
    return (
        "Action needed: Your cleaning has 1 cleaner confirmed",
        f"Your cleaning on {p['date']} has {p['cleaner_name']} confirmed, but we couldn't find a second "
        "cleaner. Choose to proceed with 1 cleaner or cancel with no fees.",
    )


def _edge_case_auto_proceeded(p):
    return (
        "Your cleaning will proceed with 1 cleaner",
        f"No response received for your cleaning on {p['date']}. {p['cleaner_name']} will complete "
        "your cleaning. Normal cancellation fees now apply.",
    )


def _edge_case_cleaner_confirmed(p):
    return (
        "You're confirmed as the sole cleaner",
        f"You're confirmed to clean {p['address']} on {p['date']}. You'll receive the full cleaning pay. "
        "A second cleaner may still join before the appointment.",
    )


def _edge_case_cancelled(p):
    return (
        "Your cleaning has been cancelled",
        f"Your cleaning on {p['date']} has been cancelled due to insufficient cleaners. "
        "No cancellation fees apply.",
    )


def _edge_case_cleaner_cancelled(p):
    return (
        "Cleaning cancelled - no second cleaner",
        f"The cleaning on {p['date']} at {p['address']} has been cancelled because no second cleaner "
        "was found. The homeowner has cancelled with no fees.",
    )


def _urgent_fill(p):
    days = p["days_until"]
    if days <= 1:
        prefix = "🚨 URGENT: "
    elif days <= 3:
        prefix = "⚠️ "
    else:
        prefix = ""
    slots = p["slots_remaining"]
    return (
        f"{prefix}Multi-cleaner job needs you!",
        f"{format_cents(p['earnings'])} for {'one of ' if slots > 1 else ''}{slots} open slot(s) - "
        f"{days} day{'' if days == 1 else 's'} away",
    )


def _final_warning(p):
    if p["confirmed"] == 0:
        body = (
            f"Your {p['date']} appointment still needs {p['slots_remaining']} cleaner(s). "
            "You can proceed with fewer cleaners, reschedule, or cancel without penalty."
        )
    else:
        body = (
            f"Your {p['date']} appointment has {p['confirmed']} cleaner(s) assigned but still needs "
            f"{p['slots_remaining']} more. You can proceed with fewer cleaners or take other action."
        )
    return "Action needed for your cleaning", body


def _job_cancelled(p):
    return (
        "Cleaning cancelled",
        f"The multi-cleaner job on {p['date']} has been cancelled.",
    )


def _job_completed(p):
    return (
        "Your cleaning is complete",
        f"All rooms for your {p['date']} cleaning have been completed.",
    )


MESSAGE_BUILDERS = {
    NotificationContext.CO_CLEANER_JOINED: _co_cleaner_joined,
    NotificationContext.EDGE_CASE_SECOND_CLEANER_JOINED: _edge_case_second_cleaner_joined,
    NotificationContext.OFFER_EXPIRED: _offer_expired,
    NotificationContext.OFFER_WITHDRAWN: _offer_withdrawn,
    NotificationContext.JOIN_REQUEST_RECEIVED: _join_request_received,
    NotificationContext.JOIN_REQUEST_APPROVED: _join_request_approved,
    NotificationContext.JOIN_REQUEST_AUTO_APPROVED: _join_request_auto_approved,
    NotificationContext.JOIN_REQUEST_DECLINED: _join_request_declined,
    NotificationContext.JOIN_REQUEST_CANCELLED: _join_request_cancelled,
    NotificationContext.HOMEOWNER_CLEANER_AUTO_APPROVED: _homeowner_cleaner_auto_approved,
    NotificationContext.DROPOUT_SOLO_POSSIBLE: _dropout_solo_possible,
    NotificationContext.DROPOUT_EXTRA_ROOMS: _dropout_extra_rooms,
    NotificationContext.HOMEOWNER_SOLO_OPTION: _homeowner_solo_option,
    NotificationContext.HOMEOWNER_REDUCED_TEAM: _homeowner_reduced_team,
    NotificationContext.HOMEOWNER_ALL_UNAVAILABLE: _homeowner_all_unavailable,
    NotificationContext.SOLO_COMPLETION_OFFER: _solo_completion_offer,
    NotificationContext.SOLO_ACCEPTED_HOMEOWNER: _solo_accepted_homeowner,
    NotificationContext.EXTRA_WORK_OFFER: _extra_work_offer,
    NotificationContext.EDGE_CASE_DECISION_REQUIRED: _edge_case_decision_required,
    NotificationContext.EDGE_CASE_AUTO_PROCEEDED: _edge_case_auto_proceeded,
    NotificationContext.EDGE_CASE_CLEANER_CONFIRMED: _edge_case_cleaner_confirmed,
    NotificationContext.EDGE_CASE_CANCELLED: _edge_case_cancelled,
    NotificationContext.EDGE_CASE_CLEANER_CANCELLED: _edge_case_cleaner_cancelled,
    NotificationContext.URGENT_FILL: _urgent_fill,
    NotificationContext.FINAL_WARNING: _final_warning,
    NotificationContext.JOB_CANCELLED: _job_cancelled,
    NotificationContext.JOB_COMPLETED: _job_completed,
}


def build_message(context: NotificationContext, **params) -> tuple[str, str, str]:
    """Returns (type, title, body) for an event"""
    title, body = MESSAGE_BUILDERS[context](params)
    return context.value, title, body


# ==================== Delivery ====================


class NotificationGateway:
    """Delivers notifications; callers commit their state changes first"""

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        user_id: int,
        type: str,
        title: str,
        body: str,
        data: Optional[dict] = None,
        action_required: bool = False,
        expires_at: Optional[datetime] = None,
    ) -> Notification:
        """Persist an in-app notification in its own commit"""
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            data=data or {},
            action_required=action_required,
            expires_at=expires_at,
        )
        self.db.add(notification)
        self.db.commit()
        logger.info(f"🔔 Notification '{type}' created for user {user_id}")
        return notification

    def send_email(self, to: str, subject: str, mjml_content: str) -> dict:
        if not config.RESEND_API_KEY:
            logger.debug(f"⚠️ RESEND_API_KEY missing, skipping email '{subject}' to {to}")
            return {}

        try:
            result = mjml_to_html(mjml_content)
            html_content = result.html if hasattr(result, "html") else str(result)
            response = resend.Emails.send(
                {
                    "from": config.EMAIL_FROM_ADDRESS,
                    "to": [to],
                    "subject": subject,
                    "html": html_content,
                }
            )
            logger.info(f"✅ Email sent via Resend to {to}")
            return response
        except Exception as e:
            logger.error(f"❌ Email send error to {to}: {e}")
            raise UpstreamError(f"Failed to send email: {e}") from e

    def send_push(self, token: str, title: str, body: str, data: Optional[dict] = None) -> dict:
        """Send a push notification through the Expo push API"""
        payload = {"to": token, "title": title, "body": body, "sound": "default", "data": data or {}}
        try:
            with httpx.Client(timeout=config.EXPO_PUSH_TIMEOUT) as client:
                response = client.post(config.EXPO_PUSH_URL, json=payload)
                response.raise_for_status()
                logger.info(f"📱 Push sent: {title}")
                return response.json()
        except httpx.HTTPError as e:
            logger.error(f"❌ Push send error: {e}")
            raise UpstreamError(f"Failed to send push notification: {e}") from e

    def deliver(
        self,
        user: Union[User, int],
        context: NotificationContext,
        data: Optional[dict] = None,
        action_required: bool = False,
        expires_at: Optional[datetime] = None,
        email: bool = False,
        push: bool = False,
        mjml_content: Optional[str] = None,
        **params,
    ) -> Notification:
        """
        Build the message for ``context`` and send it on the requested channels.
        The in-app row is always written; email and push are attempted
        independently and any failure is raised after all channels ran.
        """
        recipient = user if isinstance(user, User) else self.db.query(User).filter(User.id == user).first()
        if recipient is None:
            raise UpstreamError(f"Notification recipient {user} not found")

        type_, title, body = build_message(context, **params)
        notification = self.notify(recipient.id, type_, title, body, data, action_required, expires_at)

        failures = []
        if email and recipient.email:
            try:
                self.send_email(
                    recipient.email,
                    title,
                    mjml_content
                    or notification_email_template(
                        recipient.first_name,
                        title,
                        body,
                        appointment_id=(data or {}).get("appointmentId"),
                        cta_label="View Appointment",
                    ),
                )
            except UpstreamError as e:
                failures.append(e.message)
        if push and recipient.expo_push_token:
            try:
                self.send_push(recipient.expo_push_token, title, body, data)
            except UpstreamError as e:
                failures.append(e.message)

        if failures:
            raise UpstreamError("; ".join(failures))
        return notification


def notify_safely(
    gateway: NotificationGateway,
    user: Union[User, int],
    context: NotificationContext,
    errors: Optional[list] = None,
    **kwargs,
) -> bool:
    """
    Deliver after the state change has been committed. A failure is logged and
    recorded in ``errors`` but never undoes the state change.
    """
    try:
        gateway.deliver(user, context, **kwargs)
        return True
    except Exception as e:
        user_id = user.id if isinstance(user, User) else user
        logger.error(f"❌ Failed to send {context.value} notification to user {user_id}: {e}")
        gateway.db.rollback()
        if errors is not None:
            errors.append({"userId": user_id, "type": context.value, "error": str(e)})
        return False
