"""
Template Personalizer
Fills lead, property and organization placeholders in outreach templates.
"""
import logging
import re
from typing import Callable, Dict, Optional

from outreach_engine.core.config import Settings, get_settings
from outreach_engine.domain.models.lead import Lead, Organization, Property

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

DEFAULT_NAME = "there"
DEFAULT_PROPERTY = "our available properties"

# Templates used when neither the task nor the campaign supplies one
DEFAULT_SMS_TEMPLATE = (
    "Hi {name}, thanks for your interest in {property}. "
    "Reply here or call {org_phone} to schedule a showing. - {org_name}"
)
DEFAULT_EMAIL_SUBJECT = "Following up on {property}"
DEFAULT_EMAIL_BODY = (
    "Hi {name},\n\n"
    "Thanks for your interest in {property}. We'd love to help you find your next home.\n\n"
    "Reply to this email or call {org_phone} to schedule a showing.\n\n"
    "{org_name}"
)
DEFAULT_VOICE_SCRIPT = (
    "You are calling {name} on behalf of {org_name} about {property}. "
    "Confirm they are still looking and offer to schedule a showing."
)


def _name_tokens(lead: Lead) -> list:
    return (lead.full_name or "").split()


class TemplatePersonalizer:
    """
    Renders templates against a lead, its organization and its property.

    Placeholders are matched case-insensitively. Unknown placeholders are
    left in the output untouched. Rendering never raises.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build_values(
        self,
        lead: Lead,
        organization: Optional[Organization] = None,
        property: Optional[Property] = None
    ) -> Dict[str, str]:
        """Resolve every known placeholder to its value with fallbacks."""
        tokens = _name_tokens(lead)

        first_name = lead.first_name or (tokens[0] if tokens else None)
        if lead.last_name:
            last_name = lead.last_name
        else:
            last_name = " ".join(tokens[1:])

        org_name = (organization.name if organization else None) or self.settings.default_org_name
        org_phone = (organization.phone if organization else None) or self.settings.default_org_phone

        return {
            "name": first_name or DEFAULT_NAME,
            "first_name": first_name or DEFAULT_NAME,
            "last_name": last_name,
            "property": (property.address if property else None) or DEFAULT_PROPERTY,
            "org_name": org_name,
            "org_phone": org_phone,
        }

    def render(
        self,
        template: Optional[str],
        lead: Lead,
        organization: Optional[Organization] = None,
        property: Optional[Property] = None
    ) -> str:
        """
        Render a template.

        Args:
            template: Text with {placeholder} markers
            lead: Recipient lead
            organization: Sending organization (optional)
            property: Property the lead is interested in (optional)

        Returns:
            Rendered text
        """
        if not template:
            return ""

        values = self.build_values(lead, organization, property)
        return PLACEHOLDER_PATTERN.sub(self._replacer(values), template)

    def _replacer(self, values: Dict[str, str]) -> Callable[[re.Match], str]:
        def replace(match: re.Match) -> str:
            key = match.group(1).lower()
            if key in values:
                return values[key]
            logger.debug(f"Unknown template placeholder left as-is: {match.group(0)}")
            return match.group(0)
        return replace
