"""paperpilot: OCR jobs and rule-based workflows for Paperless-ngx."""

__version__ = "0.1.0"
