"""Tests for template rendering, validation and defaults."""

from src.domain.templates import SAMPLE_VARIABLES, SMS_TEMPLATES, TemplateService


class TestRender:

    def setup_method(self):
        self.templates = TemplateService()

    def test_double_and_single_brace_placeholders(self):
        result = self.templates.render(
            "Hi {{customerName}}, visit {businessName}",
            {"customerName": "Anna", "businessName": "Hygge"},
        )
        assert result == "Hi Anna, visit Hygge"

    def test_every_occurrence_is_replaced(self):
        result = self.templates.render("{{x}} and {{x}}", {"x": "y"})
        assert result == "y and y"

    def test_none_values_are_left_unexpanded(self):
        result = self.templates.render("Hi {{customerName}}!", {"customerName": None})
        assert result == "Hi {{customerName}}!"

    def test_unknown_placeholders_stay(self):
        result = self.templates.render("{{businessName}} {{unknown}}", {"businessName": "Hygge"})
        assert result == "Hygge {{unknown}}"


class TestValidate:

    def setup_method(self):
        self.templates = TemplateService()

    def test_default_sms_template_is_clean(self):
        result = self.templates.validate(SMS_TEMPLATES["reviewRequest"], "sms", SAMPLE_VARIABLES)

        assert result.valid
        assert result.warnings == []
        assert result.sms_info.segment_count == 1

    def test_missing_required_variables_warn(self):
        result = self.templates.validate("Thanks for visiting!", "sms")

        assert result.valid
        assert any("businessName" in w for w in result.warnings)
        assert any("reviewLink" in w for w in result.warnings)

    def test_unresolved_variables_warn(self):
        result = self.templates.validate(
            "{{businessName}} {{reviewLink}} {{voucher}}", "sms", SAMPLE_VARIABLES
        )
        assert any("{{voucher}}" in w for w in result.warnings)

    def test_long_sms_warns_about_segments(self):
        template = "{{businessName}} {{reviewLink}} " + "x" * 500
        result = self.templates.validate(template, "sms", SAMPLE_VARIABLES)

        assert result.sms_info.segment_count > 3
        assert any("segments" in w for w in result.warnings)

    def test_ucs2_sms_warns(self):
        result = self.templates.validate("{{businessName}} {{reviewLink}} 🎉", "sms", SAMPLE_VARIABLES)
        assert any("UCS-2" in w for w in result.warnings)

    def test_empty_email_is_an_error(self):
        result = self.templates.validate("   ", "email")

        assert not result.valid
        assert "Email content cannot be empty" in result.errors

    def test_very_long_email_warns(self):
        template = "{{businessName}} {{reviewLink}} " + "x" * 10001
        result = self.templates.validate(template, "email", SAMPLE_VARIABLES)

        assert result.valid
        assert any("very long" in w for w in result.warnings)


class TestReviewRequests:

    def setup_method(self):
        self.templates = TemplateService()

    def test_sms_uses_short_form_without_a_name(self):
        text = self.templates.render_sms_review_request(
            {"customerName": None, "businessName": "Hygge", "reviewLink": "https://x/r/t"}
        )
        assert text == "Thanks for visiting Hygge! Share your experience: https://x/r/t"

    def test_sms_greets_by_name(self):
        text = self.templates.render_sms_review_request(
            {"customerName": "Anna", "businessName": "Hygge", "reviewLink": "https://x/r/t"}
        )
        assert text.startswith("Hi Anna!")
        assert text.endswith("https://x/r/t")

    def test_business_template_wins(self):
        text = self.templates.render_sms_review_request(
            {"customerName": "Anna", "businessName": "Hygge", "reviewLink": "L"},
            template="{businessName}: {reviewLink}",
        )
        assert text == "Hygge: L"

    def test_email_subject_and_body(self):
        email = self.templates.render_email_review_request(
            {"customerName": "Anna", "businessName": "Hygge", "reviewLink": "https://x/r/t"}
        )
        assert email["subject"] == "How was your experience at Hygge?"
        assert "https://x/r/t" in email["body"]

    def test_preview_renders_sample_data(self):
        preview = self.templates.get_preview("{{businessName}}: {{reviewLink}}", "sms")

        assert preview["rendered"] == f"{SAMPLE_VARIABLES['businessName']}: {SAMPLE_VARIABLES['reviewLink']}"
        assert preview["validation"].valid
