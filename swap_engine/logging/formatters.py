import json
import logging
from datetime import datetime, timezone

import coloredlogs

# Keys promoted ahead of free-form context so log lines for one order line up.
ORDER_KEYS = ("order_id", "job_id", "attempt", "transition")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, order identifiers first."""

    def format(self, record):
        context = dict(getattr(record, "extra_data", None) or {})
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ORDER_KEYS:
            if key in context:
                payload[key] = context.pop(key)
        payload.update(context)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class PrettyFormatter(coloredlogs.ColoredFormatter):
    """Colored console output with a trailing ``[order/job]`` tag and context pairs."""

    def format(self, record):
        line = super().format(record)
        context = dict(getattr(record, "extra_data", None) or {})
        order_id = context.pop("order_id", None)
        job_id = context.pop("job_id", None)
        if order_id or job_id:
            line += f" [{order_id or '-'}/{job_id or '-'}]"
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return line
