"""
WhatsAppService — envoi de messages via l'API WhatsApp Cloud (Meta Graph API).

PRINCIPES :
  - Identifiants manquants → False, aucun appel réseau
  - Échec amont → False, loggé ; aucune exception ne remonte à l'appelant
  - Numéro réduit aux chiffres (pas de +, espaces ni tirets)
  - Message tronqué si trop long (WhatsApp limite à 4096 chars)
"""

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from agrilo.core.settings import settings

logger = logging.getLogger("Agrilo.WhatsApp")

MAX_MESSAGE_LENGTH = 4096
REQUEST_TIMEOUT_SECONDS = 15


def format_phone(number: str) -> str:
    return re.sub(r"\D", "", number or "")


def truncate_message(message: str) -> str:
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH - 30] + "\n\n[Message truncated]"
    return message


class WhatsAppService:

    def __init__(self, access_token: Optional[str] = None, phone_number_id: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.access_token = access_token if access_token is not None else settings.FACEBOOK_ACCESS_TOKEN
        self.phone_number_id = phone_number_id if phone_number_id is not None else settings.FACEBOOK_PHONE_NUMBER_ID
        self.base_url = f"https://graph.facebook.com/{settings.FACEBOOK_GRAPH_VERSION}"
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _post(self, to: str, payload: Dict[str, Any], kind: str) -> bool:
        if not self.configured:
            logger.warning("WhatsApp credentials not found. Skipping %s.", kind)
            return False

        formatted = format_phone(to)
        body = {"messaging_product": "whatsapp", "to": formatted, **payload}
        try:
            response = self.session.request(
                "POST",
                f"{self.base_url}/{self.phone_number_id}/messages",
                json=body,
                headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            message_id = (response.json().get("messages") or [{}])[0].get("id")
        except requests.RequestException as e:
            detail = e.response.text if getattr(e, "response", None) is not None else str(e)
            logger.error("[WHATSAPP] Failed to send %s to %s: %s", kind, formatted, detail)
            return False
        except ValueError as e:
            logger.error("[WHATSAPP] Invalid response sending %s to %s: %s", kind, formatted, e)
            return False

        logger.info("[WHATSAPP] %s sent successfully to %s. Message ID: %s", kind.capitalize(), formatted, message_id)
        return True

    def send_alert(self, to: str, text: str) -> bool:
        if not text or not text.strip():
            logger.warning("[WHATSAPP] Empty message, nothing to send")
            return False
        return self._post(to, {"type": "text", "text": {"body": truncate_message(text)}}, "alert")

    def send_template(self, to: str, template_name: str, language_code: str = "en_US",
                      components: Optional[List[Dict[str, Any]]] = None) -> bool:
        return self._post(to, {
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": components or [],
            },
        }, "template")


_whatsapp: Optional[WhatsAppService] = None


def get_whatsapp_service() -> WhatsAppService:
    global _whatsapp
    if _whatsapp is None:
        _whatsapp = WhatsAppService()
    return _whatsapp
