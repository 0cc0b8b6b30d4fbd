"""Celery tasks for background invoice parsing."""

from datetime import datetime

from celery_app import celery_app
from services import parsing_service

# Stop walking the chain comfortably before the soft time limit
DEFAULT_JOB_TIMEOUT_SECONDS = 500


@celery_app.task(bind=True, time_limit=600, soft_time_limit=540)
def parse_invoice_task(self, user_id, text, page_count=1, options=None):
    """
    Celery task to parse one invoice through the user's fallback chain.

    Args:
        user_id: User identifier
        text: Extracted invoice text
        page_count: Number of pages the text came from
        options: Parse options dict (see ParseOptions.from_dict)

    Returns:
        dict: Parsing outcome plus completion timestamp
    """
    self.update_state(state='STARTED', meta={'status': 'parsing'})

    options = dict(options or {})
    options.setdefault('document_id', self.request.id)
    options.setdefault('timeout_seconds', DEFAULT_JOB_TIMEOUT_SECONDS)

    result = parsing_service.parse_invoice_text(
        user_id, text, page_count=page_count, options=options
    )

    result['completed_at'] = datetime.now().isoformat()
    return result
