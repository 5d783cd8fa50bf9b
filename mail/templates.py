"""
mail/templates.py -- Jinja2 rendering of transactional email bodies.

Each message has a subject plus an HTML and a plain-text body. Templates are
held in a DictLoader so they ship inside the module and need no package data.
Autoescaping is on for the .html templates: names come from user input.

Usage:
    msg = render("welcome", name="Ann")
    msg.subject, msg.html, msg.text
"""

from __future__ import annotations

from dataclasses import dataclass

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

_LAYOUT = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>{% block heading %}{% endblock %}</h2>
  {% block content %}{% endblock %}
  <p style="font-size: 12px; color: #777;">{{ app_name }}</p>
</body>
</html>
"""

_TEMPLATES = {
    "layout.html": _LAYOUT,
    "verification_code.html": """{% extends "layout.html" %}
{% block heading %}Verify your account{% endblock %}
{% block content %}
  <p>Use this code to verify your email address:</p>
  <p style="font-size: 28px; letter-spacing: 6px;"><strong>{{ code }}</strong></p>
  <p>The code expires in {{ minutes }} minutes.</p>
{% endblock %}
""",
    "verification_code.txt": """Your verification code is {{ code }}.
It expires in {{ minutes }} minutes.
""",
    "two_factor_code.html": """{% extends "layout.html" %}
{% block heading %}Your login verification code{% endblock %}
{% block content %}
  <p>Enter this code to finish signing in:</p>
  <p style="font-size: 28px; letter-spacing: 6px;"><strong>{{ code }}</strong></p>
  <p>The code expires in {{ minutes }} minutes. If you did not try to sign in, change your password.</p>
{% endblock %}
""",
    "two_factor_code.txt": """Your login verification code is {{ code }}.
It expires in {{ minutes }} minutes.
""",
    "welcome.html": """{% extends "layout.html" %}
{% block heading %}Welcome!{% endblock %}
{% block content %}
  <p>Hello {{ name }},</p>
  <p>Welcome to {{ app_name }}. We're glad to have you on board.</p>
{% endblock %}
""",
    "welcome.txt": """Hello {{ name }},

Welcome to {{ app_name }}. We're glad to have you on board.
""",
}

_SUBJECTS = {
    "verification_code": "Verify Your Account",
    "two_factor_code": "Your Login Verification Code",
    "welcome": "Welcome to Our Platform!",
}

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def render(template: str, /, app_name: str = "Gatehouse", **context) -> RenderedEmail:
    """Render the named message. Raises KeyError for an unknown template name.

    template is positional-only so templates are free to use a `name` variable.
    """
    subject = _SUBJECTS[template]
    html = _env.get_template(f"{template}.html").render(app_name=app_name, **context)
    text = _env.get_template(f"{template}.txt").render(app_name=app_name, **context)
    return RenderedEmail(subject=subject, html=html, text=text)
