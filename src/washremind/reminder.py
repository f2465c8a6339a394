from __future__ import annotations

from html import escape

from .config import BusinessConfig
from .models import BookingSnapshot, ReminderMessage

SUBJECT = "⏰ Reminder: Your Car Wash Appointment is Tomorrow 🚘"


def _extras_label(snapshot: BookingSnapshot) -> str:
    return ", ".join(snapshot.extras) if snapshot.extras else "None"


def render_reminder(snapshot: BookingSnapshot, business: BusinessConfig) -> ReminderMessage:
    """Build the reminder email from the snapshot taken at booking time."""
    vehicle = f"{snapshot.vehicle_make} {snapshot.vehicle_model}"
    when = f"{snapshot.date} at {snapshot.time}"
    extras = _extras_label(snapshot)

    location_html = "<br>\n".join(escape(line) for line in business.location_lines)
    html = "\n".join(
        [
            f"<h2>Hi {escape(snapshot.customer_name)},</h2>",
            "<p>Just a quick reminder that you’ve got a car wash booking with us tomorrow.</p>",
            "<p>Here are your appointment details:</p>",
            f"<p>📍 <strong>Location:</strong><br>\n{location_html}</p>",
            f"<p>🚗 <strong>Vehicle:</strong> {escape(vehicle)}</p>",
            f"<p>🧼 <strong>Package:</strong> {escape(snapshot.package_name)}</p>",
            f"<p>➕ <strong>Extras:</strong> {escape(extras)}</p>",
            f"<p>📅 <strong>Date &amp; Time:</strong> {escape(when)}</p>",
            f"<p>⏳ <strong>Estimated Duration:</strong> {escape(snapshot.estimated_time)}</p>",
            (
                "<p>If you need to cancel or reschedule, please give us a call on "
                f"<strong>{escape(business.phone)}</strong>.</p>"
            ),
            "<p>We’ll see you then – your car’s in good hands.</p>",
            f"<p>Best,<br>\n{escape(business.team_name)}</p>",
        ]
    )

    text = "\n".join(
        [
            f"Hi {snapshot.customer_name},",
            "",
            "Just a quick reminder that you’ve got a car wash booking with us tomorrow.",
            "",
            "Here are your appointment details:",
            "",
            "📍 Location:",
            *business.location_lines,
            "",
            f"🚗 Vehicle: {vehicle}",
            f"🧼 Package: {snapshot.package_name}",
            f"➕ Extras: {extras}",
            f"📅 Date & Time: {when}",
            f"⏳ Estimated Duration: {snapshot.estimated_time}",
            "",
            f"If you need to cancel or reschedule, please give us a call on {business.phone}.",
            "",
            "We’ll see you then – your car’s in good hands.",
            "",
            "Best,",
            business.team_name,
        ]
    )
    return ReminderMessage(subject=SUBJECT, html=html, text=text)
