# helpdesk_core/signals.py

from django.dispatch import Signal

# Sent (from the Celery worker) for every notification-type workflow action.
# Receivers get: ticket_id, action, from_status, to_status, executed_by_id.
workflow_action_requested = Signal()
