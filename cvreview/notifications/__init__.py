"""Meeting e-mails: invitations, cancellations and reschedules via Resend."""

from cvreview.notifications.meetings import MeetingNotifier, meeting_notifier

__all__ = ["MeetingNotifier", "meeting_notifier"]
