"""
Template Service - Review Request Rendering and Validation
==========================================================

ARCHITECTURAL DECISION:
- Placeholders use {{name}}; the single-brace {name} form is also accepted
  because older business templates were written that way
- Unknown placeholders are left as-is so a broken template is visible in
  the outgoing message instead of silently blanked
- Validation never blocks saving; it returns warnings the dashboard shows
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .sms_encoding import (
    ENCODING_UCS2,
    GSM7_MAX_LENGTH,
    UCS2_MAX_LENGTH,
    SmsEncodingInfo,
    calculate_sms_segments,
)

# ── Default Templates ──────────────────────────────────────────────
SMS_TEMPLATES = {
    "reviewRequest": (
        "Hi {{customerName}}! Thanks for your order at {{businessName}}. "
        "We'd love to hear about your experience: {{reviewLink}}"
    ),
    "reviewRequestShort": (
        "Thanks for visiting {{businessName}}! Share your experience: {{reviewLink}}"
    ),
}

EMAIL_TEMPLATES = {
    "reviewRequest": {
        "subject": "How was your experience at {{businessName}}?",
        "body": (
            "Hi {{customerName}},\n\n"
            "Thank you for choosing {{businessName}}!\n\n"
            "We really value your feedback and would love to hear about your experience.\n\n"
            "Share your thoughts here: {{reviewLink}}\n\n"
            "It only takes a minute, and your feedback helps us get better.\n\n"
            "Best regards,\n"
            "{{businessName}}"
        ),
    },
}

REQUIRED_VARIABLES = ("businessName", "reviewLink")
MAX_SMS_SEGMENTS = 3
MAX_EMAIL_LENGTH = 10000

SAMPLE_VARIABLES = {
    "customerName": "Anders",
    "businessName": "Cafe Hygge",
    "reviewLink": "https://reviewflow.app/r/abc123",
}

_PLACEHOLDER_PATTERN = re.compile(r"\{\{?\w+\}?\}")


@dataclass
class TemplateValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sms_info: Optional[SmsEncodingInfo] = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "sms_info": self.sms_info.to_dict() if self.sms_info else None,
        }


class TemplateService:
    """
    Renders and checks SMS / email templates.

    USAGE:
        templates = TemplateService()
        text = templates.render(
            "Hi {{customerName}}, rate us: {{reviewLink}}",
            {"customerName": "Anna", "reviewLink": "https://..."},
        )
    """

    def render(self, template: str, variables: Dict[str, Optional[str]]) -> str:
        result = template
        for key, value in variables.items():
            if value is None:
                continue
            result = result.replace("{{" + key + "}}", str(value))
            result = result.replace("{" + key + "}", str(value))
        return result

    def validate(
        self,
        template: str,
        type: str,
        variables: Optional[Dict[str, Optional[str]]] = None,
    ) -> TemplateValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        for name in REQUIRED_VARIABLES:
            if "{{" + name + "}}" not in template and "{" + name + "}" not in template:
                warnings.append(f"Template is missing {{{{{name}}}}} variable")

        rendered = self.render(template, variables) if variables else template
        unresolved = _PLACEHOLDER_PATTERN.findall(rendered)
        if unresolved:
            warnings.append(
                f"Template has variables that need to be resolved: {', '.join(unresolved)}"
            )

        if type == "sms":
            sms_info = calculate_sms_segments(rendered)
            if sms_info.segment_count > MAX_SMS_SEGMENTS:
                warnings.append(
                    f"SMS will be split into {sms_info.segment_count} segments "
                    f"({sms_info.character_count} characters). Consider shortening."
                )
            if sms_info.encoding == ENCODING_UCS2:
                warnings.append(
                    f"SMS uses UCS-2 encoding ({UCS2_MAX_LENGTH} chars/segment "
                    f"instead of {GSM7_MAX_LENGTH})"
                )
            return TemplateValidationResult(not errors, errors, warnings, sms_info)

        if type == "email":
            if len(rendered) > MAX_EMAIL_LENGTH:
                warnings.append("Email content is very long. Consider shortening.")
            if not rendered.strip():
                errors.append("Email content cannot be empty")

        return TemplateValidationResult(not errors, errors, warnings)

    # ── Defaults ───────────────────────────────────────────────────

    def get_default_sms_template(self, template_type: str = "reviewRequest") -> str:
        return SMS_TEMPLATES[template_type]

    def get_default_email_template(self, template_type: str = "reviewRequest") -> Dict[str, str]:
        return dict(EMAIL_TEMPLATES[template_type])

    def render_sms_review_request(
        self, variables: Dict[str, Optional[str]], template: Optional[str] = None
    ) -> str:
        """Business template if set, otherwise the default (short form when no name)."""
        if not template:
            template = SMS_TEMPLATES[
                "reviewRequest" if variables.get("customerName") else "reviewRequestShort"
            ]
        return self.render(template, variables)

    def render_email_review_request(
        self,
        variables: Dict[str, Optional[str]],
        body_template: Optional[str] = None,
        subject_template: Optional[str] = None,
    ) -> Dict[str, str]:
        default = EMAIL_TEMPLATES["reviewRequest"]
        return {
            "subject": self.render(subject_template or default["subject"], variables),
            "body": self.render(body_template or default["body"], variables),
        }

    def get_preview(self, template: str, type: str) -> dict:
        """Render with sample data, for the template editor."""
        return {
            "rendered": self.render(template, SAMPLE_VARIABLES),
            "validation": self.validate(template, type, SAMPLE_VARIABLES),
        }
