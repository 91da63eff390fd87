from __future__ import annotations

import json
import logging
import urllib.request
from dataclasses import asdict, dataclass
from typing import Optional

from jinja2 import Environment, select_autoescape

from . import config
from .db import db_conn, queue_notification, users_with_role

logger = logging.getLogger("checklists.notify")

_env = Environment(autoescape=select_autoescape(default_for_string=True, default=True))

EMAIL_SUBJECT = _env.from_string("Novo Checklist Enviado - {{ event.template_title }}")
EMAIL_BODY = _env.from_string(
    """<h2>Novo Checklist Enviado</h2>
<p>Olá, <strong>{{ recipient_name }}</strong>!</p>
<p>Um novo checklist foi enviado na plataforma e está aguardando sua análise.</p>
<ul>
  <li><strong>Checklist:</strong> {{ event.template_title }}</li>
  <li><strong>Unidade:</strong> {{ event.unit_name }}</li>
  {%- if event.group_name %}
  <li><strong>Grupo:</strong> {{ event.group_name }}</li>
  {%- endif %}
  <li><strong>Supervisor:</strong> {{ event.supervisor_name }}{% if event.supervisor_email %} ({{ event.supervisor_email }}){% endif %}</li>
  <li><strong>Protocolo:</strong> <code>{{ event.protocol }}</code></li>
  <li><strong>Data de Envio:</strong> {{ event.submitted_at }}</li>
</ul>
<p><a href="{{ link }}">Ver Checklist no Sistema</a></p>
"""
)
WHATSAPP_TEXT = Environment(autoescape=False).from_string(
    "Checklist enviado com sucesso!\n"
    "{{ event.template_title }}\n"
    "Unidade: {{ event.unit_name }}{% if event.group_name %} ({{ event.group_name }}){% endif %}\n"
    "Protocolo: {{ event.protocol }}\n"
    "Enviado em: {{ event.submitted_at }}"
)


@dataclass(frozen=True)
class FinalizedEvent:
    submission_id: str
    protocol: str
    template_title: str
    unit_id: str
    unit_name: str
    group_id: Optional[str]
    group_name: Optional[str]
    supervisor_id: str
    supervisor_name: str
    supervisor_email: Optional[str]
    supervisor_phone: Optional[str]
    submitted_at: str


def _post_json(url: str, payload: dict, headers: Optional[dict] = None) -> tuple[bool, str]:
    data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    h = {"Content-Type": "application/json"}
    if headers:
        h.update(headers)
    req = urllib.request.Request(url, data=data, headers=h)
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            _ = resp.read()
        return True, ""
    except OSError as exc:
        return False, str(exc)


def _deliver(channel: str, url: str, recipient: str, payload: dict) -> bool:
    if not url:
        queue_notification(channel, recipient, payload)
        return False
    ok, err = _post_json(url, payload)
    if not ok:
        logger.warning("Notification %s to %s failed: %s", channel, recipient, err)
        queue_notification(channel, recipient, payload, error=err)
    return ok


def notify_operational_team(event: FinalizedEvent) -> int:
    """E-mail every OPERACIONAL user; returns the number of delivered messages."""
    with db_conn() as con:
        recipients = [r for r in users_with_role(con, "OPERACIONAL") if (r["email"] or "").strip()]
    if not recipients:
        logger.info("No OPERACIONAL user with e-mail for checklist %s", event.protocol)
        return 0

    link = f"{config.APP_BASE_URL}/operacional/checklists/visualizar/{event.submission_id}"
    subject = EMAIL_SUBJECT.render(event=event)
    sent = 0
    for user in recipients:
        payload = {
            "event": "CHECKLIST_FINALIZED",
            "to": user["email"],
            "subject": subject,
            "html": EMAIL_BODY.render(event=event, recipient_name=user["name"], link=link),
            "submission": asdict(event),
        }
        if _deliver("email", config.EMAIL_WEBHOOK_URL, user["email"], payload):
            sent += 1
    return sent


def notify_supervisor(event: FinalizedEvent) -> bool:
    phone = (event.supervisor_phone or "").strip()
    if not phone:
        logger.info("Supervisor %s has no phone; skipping WhatsApp", event.supervisor_id)
        return False
    payload = {
        "event": "CHECKLIST_FINALIZED",
        "recipient": phone,
        "message": WHATSAPP_TEXT.render(event=event),
        "submission": asdict(event),
    }
    return _deliver("whatsapp", config.WHATSAPP_WEBHOOK_URL, phone, payload)


def dispatch_finalized(event: FinalizedEvent) -> None:
    """Fire-and-forget fan-out after a finalization has committed. Never raises."""
    try:
        notify_operational_team(event)
    except Exception:
        logger.exception("Failed to notify operational team: %s", event.protocol)
    try:
        notify_supervisor(event)
    except Exception:
        logger.exception("Failed to notify supervisor %s: %s", event.supervisor_id, event.protocol)
