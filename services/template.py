"""Service for handling email templates."""

from typing import Any, Dict

from pathlib import Path


TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class TemplateService:
    """Service for handling email templates."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.templates_dir = templates_dir

    def load_template(self, template_name: str) -> str:
        """Load email template from file.

        Args:
            template_name (str): The name of the template to load (without extension).

        Raises:
            FileNotFoundError: If the template file is not found.

        Returns:
            str: The content of the email template.
        """
        template_path = self.templates_dir / f"{template_name}.html"

        if not template_path.exists():
            raise FileNotFoundError(f"Template '{template_name}' not found")

        with open(template_path, "r", encoding="utf-8") as file:
            return file.read()

    def render_template(self, template_name: str, data: Dict[str, Any]) -> str:
        """Render email template with data by replacing `{{KEY}}` placeholders."""
        template = self.load_template(template_name)

        for key, value in data.items():
            placeholder = f"{{{{{key}}}}}"
            template = template.replace(placeholder, str(value))

        return template

    def render_verification_email(self, username: str, verification_url: str, expires_in_hours: int) -> str:
        return self.render_template(
            "verification_email",
            {
                "USERNAME": username,
                "VERIFICATION_URL": verification_url,
                "EXPIRES_IN_HOURS": expires_in_hours,
            },
        )
