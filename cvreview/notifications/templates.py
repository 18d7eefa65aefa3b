"""HTML bodies for meeting e-mails, rendered with Jinja2.

Every template extends `base.html`. Autoescaping is on: titles, names and
cancellation reasons are user input.
"""

from __future__ import annotations

from typing import Any

from jinja2 import DictLoader, Environment

_BASE = """\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ heading }}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
<div style="max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: {{ accent }};">{{ heading }}</h2>
  {% block content %}{% endblock %}
  <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 30px 0;">
  <p style="color: #6b7280; font-size: 14px;">Best regards,<br>CV Review Platform Team</p>
</div>
</body>
</html>
"""

_DETAILS = """\
<div style="background-color: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0; border-left: 4px solid {{ accent }};">
  <h3 style="margin-top: 0;">{{ meeting.title }}</h3>
  <p><strong>Date:</strong> {{ meeting.date }}</p>
  <p><strong>Time:</strong> {{ meeting.time }}</p>
  {% if counterpart %}<p><strong>{{ counterpart_label }}:</strong> {{ counterpart.name }} ({{ counterpart.email }})</p>{% endif %}
  {% if meeting.description %}<p><strong>Description:</strong> {{ meeting.description }}</p>{% endif %}
</div>
{% if meeting.link %}
<div style="text-align: center; margin: 30px 0;">
  <a href="{{ meeting.link }}" style="background-color: #4285f4; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block; font-weight: bold;">Join Meeting</a>
</div>
{% endif %}
"""

_INVITATION_EXPERT = """\
{% extends "base.html" %}
{% block content %}
<p>Dear {{ recipient.name }},</p>
<p>You have a new CV review meeting scheduled:</p>
{% include "details.html" %}
<p>Please be prepared to review the applicant's CV and provide constructive feedback.</p>
{% endblock %}
"""

_INVITATION_APPLICANT = """\
{% extends "base.html" %}
{% block content %}
<p>Dear {{ recipient.name }},</p>
<p>Your CV review meeting has been successfully scheduled:</p>
{% include "details.html" %}
<ul>
  <li>Have your CV ready to share</li>
  <li>Prepare specific questions about your industry</li>
  <li>Test your camera and microphone beforehand</li>
</ul>
{% endblock %}
"""

_CANCELLATION = """\
{% extends "base.html" %}
{% block content %}
<p>Dear {{ recipient.name }},</p>
<p>The following meeting has been cancelled by the {{ cancelled_by }}:</p>
{% include "details.html" %}
<p><strong>Reason:</strong> {{ reason or "No specific reason provided." }}</p>
<p>You can book a new meeting at your convenience through the platform.</p>
{% endblock %}
"""

_RESCHEDULED = """\
{% extends "base.html" %}
{% block content %}
<p>Dear {{ recipient.name }},</p>
<p>Your CV review meeting has moved{% if previous %} from {{ previous.date }}, {{ previous.time }}{% endif %}. The new time is:</p>
{% include "details.html" %}
{% endblock %}
"""

_env = Environment(
    loader=DictLoader({
        "base.html": _BASE,
        "details.html": _DETAILS,
        "invitation_expert.html": _INVITATION_EXPERT,
        "invitation_applicant.html": _INVITATION_APPLICANT,
        "cancellation.html": _CANCELLATION,
        "rescheduled.html": _RESCHEDULED,
    }),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def render(name: str, **context: Any) -> str:
    return _env.get_template(name).render(**context)
